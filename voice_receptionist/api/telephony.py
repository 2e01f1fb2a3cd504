"""Twilio voice webhooks and the audio endpoint that backs ``<Play>``.

Call flow:
  POST /twilio/voice           greeting inside a speech <Gather>
  POST /twilio/process-speech  one dialogue turn per recognised utterance
  POST /twilio/status          call status callback (logged only)
  GET  /tts                    synthesized WAV for a piece of text

Rendered replies are played from ``/tts?text=...``.  The controller has
already rendered them into the speech cache, so Twilio's fetch is a cache
hit.  Static fallbacks (``synthesized=False``) use Twilio's own ``<Say>``.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Form, HTTPException, Query, Request, Response
from fastapi.responses import PlainTextResponse
from twilio.twiml.voice_response import VoiceResponse

from voice_receptionist.agent import DialogueState, TurnResult
from voice_receptionist.api.routes import get_controller
from voice_receptionist.config import PUBLIC_BASE_URL
from voice_receptionist.services.sessions import mask_caller
from voice_receptionist.services.speech_cache import clip_spoken_text

logger = logging.getLogger(__name__)

router = APIRouter()

PLATFORM_VOICE = "Polly.Ewa"
SPEECH_LANGUAGE = "pl-PL"
GATHER_OPTIONS = {
    "input": "speech",
    "language": SPEECH_LANGUAGE,
    "timeout": 10,
    "speech_timeout": "auto",
    "action": "/twilio/process-speech",
    "method": "POST",
    "action_on_empty_result": True,
    # ASR hints for Polish dental vocabulary
    "hints": "higienizacja, aparat, rentgen, wyrwanie zęba, nakładki, retencja, Kraków, termin, wizyta",
}


def _twiml_response(response: VoiceResponse) -> Response:
    return Response(content=str(response), media_type="application/xml")


def tts_url(request: Request, text: str, voice: str = "") -> str:
    """Absolute URL of ``/tts`` for *text*, honouring proxy headers."""
    if PUBLIC_BASE_URL:
        base = PUBLIC_BASE_URL.rstrip("/")
    else:
        host = request.headers.get("x-forwarded-host") or request.url.netloc
        proto = request.headers.get("x-forwarded-proto") or request.url.scheme or "https"
        base = f"{proto}://{host}"
    params = {"text": clip_spoken_text(text)}
    if voice:
        params["voice"] = voice
    return f"{base}/tts?{urlencode(params)}"


def _utter(target, request: Request, result: TurnResult) -> None:
    """Add *result*'s text to a <Response> or <Gather> as <Play> or <Say>."""
    if result.synthesized:
        target.play(tts_url(request, result.spoken_text, result.voice))
    else:
        target.say(result.spoken_text, voice=PLATFORM_VOICE, language=SPEECH_LANGUAGE)


# ── Webhooks ─────────────────────────────────────────────────────────


@router.post("/twilio/voice")
async def voice(request: Request, From: str = Form(""), To: str = Form("")):
    """Answer the call: greet inside a <Gather>, redirect here on silence."""
    controller = get_controller(request)
    logger.info("Incoming call from %s to %s", mask_caller(From), To)

    greeting = await asyncio.to_thread(controller.greet, From)
    response = VoiceResponse()
    gather = response.gather(**GATHER_OPTIONS)
    _utter(gather, request, greeting)
    response.redirect("/twilio/voice", method="POST")
    return _twiml_response(response)


@router.post("/twilio/process-speech")
async def process_speech(
    request: Request,
    From: str = Form(""),
    SpeechResult: str = Form(""),
):
    """Run one dialogue turn and answer with the next TwiML step."""
    controller = get_controller(request)
    request_id = getattr(request.state, "request_id", "?")
    logger.info("[%s] Speech from %s: %r", request_id, mask_caller(From), SpeechResult)

    result = await asyncio.to_thread(controller.handle_turn, From, SpeechResult)

    response = VoiceResponse()
    _utter(response, request, result)

    if not result.continue_listening:
        response.hangup()
        return _twiml_response(response)

    gather = response.gather(**GATHER_OPTIONS)
    if DialogueState.PROCESSING in result.path:
        follow_up = await asyncio.to_thread(controller.follow_up)
        _utter(gather, request, follow_up)
    return _twiml_response(response)


@router.post("/twilio/status")
async def call_status(
    From: str = Form(""),
    CallStatus: str = Form(""),
    CallDuration: str = Form("0"),
):
    logger.info(
        "Call from %s ended with status: %s, duration: %ss",
        mask_caller(From), CallStatus, CallDuration or 0,
    )
    return PlainTextResponse("OK")


# ── Audio ────────────────────────────────────────────────────────────


@router.get("/tts")
async def tts(request: Request, text: str = Query(..., min_length=1), voice: str = Query("")):
    """Serve the WAV for *text* from the speech cache (rendering on a miss)."""
    controller = get_controller(request)
    if controller.renderer is None:
        raise HTTPException(status_code=503, detail="Speech synthesis is not configured.")

    try:
        audio = await asyncio.to_thread(
            controller.cache.get_or_render,
            voice or controller.voice,
            text,
            controller.renderer,
        )
    except Exception as e:
        logger.exception("TTS rendering failed")
        raise HTTPException(
            status_code=503, detail="Speech synthesis is temporarily unavailable.",
        ) from e
    return Response(content=audio, media_type="audio/wav")

"""HTTP client for the Azure Cognitive Services text-to-speech REST API.

Renders Polish SSML to 8 kHz 8-bit mono µ-law WAV, the format Twilio plays
back without transcoding.

Azure TTS REST docs:
  https://learn.microsoft.com/azure/ai-services/speech-service/rest-text-to-speech
Requests authenticate with the ``Ocp-Apim-Subscription-Key`` header.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from xml.sax.saxutils import escape

import httpx

from voice_receptionist.config import (
    AZURE_SPEECH_KEY,
    AZURE_SPEECH_REGION,
    AZURE_VOICE_NAME,
    TTS_TIMEOUT_SECONDS,
)
from voice_receptionist.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 2
INITIAL_BACKOFF_SECONDS = 0.5

OUTPUT_FORMAT = "riff-8khz-8bit-mono-mulaw"
SPEECH_LANGUAGE = "pl-PL"
USER_AGENT = "voice-receptionist"

_MULTILINGUAL_RE = re.compile(r"multilingual|dragon|jenny", re.IGNORECASE)


class SpeechSynthesisError(Exception):
    """Raised when Azure TTS fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def build_ssml(text: str, voice: str) -> str:
    """Wrap *text* in SSML that forces Polish pronunciation.

    Multilingual voices (Jenny, Dragon, ...Multilingual...) default to
    English phonetics, so their text is wrapped in ``<lang xml:lang="pl-PL">``.
    Native Polish voices only need the ``<voice>`` element.
    """
    safe = escape((text or "").strip(), {"'": "&apos;", '"': "&quot;"})
    prosody = f'<prosody rate="+0%" pitch="+0%">{safe}</prosody>'

    if _MULTILINGUAL_RE.search(voice):
        return (
            f'<speak version="1.0" xml:lang="{SPEECH_LANGUAGE}" '
            f'xmlns="http://www.w3.org/2001/10/synthesis" '
            f'xmlns:mstts="https://www.w3.org/2001/mstts">'
            f'<voice name="{voice}"><lang xml:lang="{SPEECH_LANGUAGE}">'
            f'<mstts:express-as style="assistant">{prosody}</mstts:express-as>'
            f"</lang></voice></speak>"
        )

    return (
        f'<speak version="1.0" xml:lang="{SPEECH_LANGUAGE}" '
        f'xmlns="http://www.w3.org/2001/10/synthesis">'
        f'<voice name="{voice}">{prosody}</voice></speak>'
    )


class AzureSpeechClient:
    """Thin wrapper around the Azure TTS REST endpoint with bounded retries."""

    def __init__(
        self,
        key: str | None = None,
        region: str | None = None,
        *,
        default_voice: str | None = None,
        timeout: float | None = None,
    ):
        self._key = key or AZURE_SPEECH_KEY
        self._region = region or AZURE_SPEECH_REGION
        self.default_voice = default_voice or AZURE_VOICE_NAME
        self._client = httpx.Client(
            base_url=f"https://{self._region}.tts.speech.microsoft.com",
            headers={
                "Ocp-Apim-Subscription-Key": self._key,
                "Content-Type": "application/ssml+xml",
                "X-Microsoft-OutputFormat": OUTPUT_FORMAT,
                "User-Agent": USER_AGENT,
            },
            timeout=timeout or TTS_TIMEOUT_SECONDS,
        )
        logger.info("Azure TTS voice: %s (region %s)", self.default_voice, self._region)

    def synthesize(self, text: str, voice: str | None = None) -> bytes:
        """Render *text* and return the WAV payload.

        Timeouts, connection errors and 5xx responses are retried with
        exponential backoff; 4xx responses fail immediately.  Raises
        ``SpeechSynthesisError`` once the budget is spent.
        """
        voice = voice or self.default_voice
        ssml = build_ssml(text, voice)
        logger.info("TTS start voice=%s len=%d", voice, len(text or ""))

        last_error: Exception | None = None
        t0 = time.perf_counter()
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = self._client.post(
                    "/cognitiveservices/v1", content=ssml.encode("utf-8"),
                )
                if response.status_code >= 500:
                    raise SpeechSynthesisError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise SpeechSynthesisError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if not response.content:
                    raise SpeechSynthesisError("Azure TTS returned an empty body")

                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_success("azure_tts", "synthesize", latency_ms=elapsed)
                logger.info("TTS ok (%d bytes, %.0fms)", len(response.content), elapsed)
                return response.content

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                logger.warning(
                    "Azure TTS attempt %d/%d failed (%s).",
                    attempt, MAX_RETRIES, type(exc).__name__,
                )
            except SpeechSynthesisError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Azure TTS server error on attempt %d/%d.", attempt, MAX_RETRIES,
                    )
                else:
                    metrics.record_failure(
                        "azure_tts", "synthesize",
                        error_type=str(exc.status_code or "empty"),
                        latency_ms=(time.perf_counter() - t0) * 1000,
                    )
                    raise

            if attempt < MAX_RETRIES:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        metrics.record_failure(
            "azure_tts", "synthesize",
            error_type=type(last_error).__name__,
            latency_ms=(time.perf_counter() - t0) * 1000,
        )
        raise SpeechSynthesisError(
            f"Azure TTS failed after {MAX_RETRIES} attempts: {last_error}"
        )

    def __call__(self, text: str, voice: str) -> bytes:
        return self.synthesize(text, voice)


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: AzureSpeechClient | None = None
_client_lock = threading.Lock()


def get_speech_client() -> AzureSpeechClient:
    """Return a module-level AzureSpeechClient, created on first use."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = AzureSpeechClient()
    return _client

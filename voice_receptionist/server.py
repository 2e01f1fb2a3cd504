"""FastAPI server for the clinic voice receptionist.

Run with:
    uvicorn voice_receptionist.server:app --reload --host 0.0.0.0 --port 8000

Point the Twilio number's voice webhook at ``POST /twilio/voice`` and its
status callback at ``POST /twilio/status``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from voice_receptionist.agent import create_receptionist
from voice_receptionist.api import telephony
from voice_receptionist.api.routes import router
from voice_receptionist.config import (
    CLINIC_NAME,
    CORS_ORIGINS,
    SERVER_HOST,
    SERVER_PORT,
    TTS_PREWARM,
)
from voice_receptionist.prompts import PREWARM_PHRASES
from voice_receptionist.services.azure_tts import get_speech_client
from voice_receptionist.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the turn controller once and store it in app state.

    The stores it owns (sessions, appointments, speech cache) live for the
    whole process.  Prewarming runs in a worker thread so a slow or failing
    speech service never blocks start-up.
    """
    speech = get_speech_client()
    controller = create_receptionist(renderer=speech, voice=speech.default_voice)
    application.state.controller = controller
    logger.info("Receptionist ready.")

    prewarm_task = None
    if TTS_PREWARM:
        prewarm_task = asyncio.create_task(
            asyncio.to_thread(
                controller.cache.prewarm, PREWARM_PHRASES, controller.voice, speech,
            )
        )
    yield
    if prewarm_task is not None and not prewarm_task.done():
        prewarm_task.cancel()
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Clinic Voice Receptionist",
    description=(
        "Polish-language phone receptionist for a dental clinic: answers "
        "questions, books appointments and hands off to reception."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")
app.include_router(telephony.router)


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Clinic Voice Receptionist",
        "clinic": CLINIC_NAME,
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "voice_webhook": "/twilio/voice",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting voice receptionist on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "voice_receptionist.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )

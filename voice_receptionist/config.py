"""Centralized configuration for the clinic voice receptionist.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/voice-receptionist/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/voice-receptionist/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /voice-receptionist/{name} (AWS)."
    )


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-haiku-4-5")
LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "15"))
LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "1"))

# ── Azure Speech ────────────────────────────────────────────────────
AZURE_SPEECH_KEY: str = _require_env("AZURE_SPEECH_KEY")
AZURE_SPEECH_REGION: str = os.getenv("AZURE_SPEECH_REGION", "westeurope")
AZURE_VOICE_NAME: str = os.getenv("AZURE_VOICE_NAME", "en-US-JennyMultilingualNeural")
TTS_TIMEOUT_SECONDS: float = float(os.getenv("TTS_TIMEOUT_SECONDS", "10"))
TTS_CACHE_MAX_ENTRIES: int = int(os.getenv("TTS_CACHE_MAX_ENTRIES", "100"))
# Render the fixed phrases (greeting, reprompt, apologies) at startup
TTS_PREWARM: bool = os.getenv("TTS_PREWARM", "true").lower() == "true"

# ── Clinic ──────────────────────────────────────────────────────────
CLINIC_NAME: str = os.getenv("CLINIC_NAME", "Stomatologia Kraków")
CLINIC_TIMEZONE: str = os.getenv("CLINIC_TIMEZONE", "Europe/Warsaw")
RECEPTION_PHONE: str = os.getenv("RECEPTION_PHONE", "+48 123 456 789")
BOOKING_HORIZON_DAYS: int = int(os.getenv("BOOKING_HORIZON_DAYS", "14"))

# ── Conversation sessions ───────────────────────────────────────────
HISTORY_TURNS: int = int(os.getenv("HISTORY_TURNS", "10"))
MAX_STORED_TURNS: int = int(os.getenv("MAX_STORED_TURNS", "50"))
MAX_SESSIONS: int = int(os.getenv("MAX_SESSIONS", "1000"))
SESSION_TTL_SECONDS: float = float(os.getenv("SESSION_TTL_SECONDS", "3600"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
# Absolute base for <Play> URLs; derived from forwarded headers when empty
PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "")
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")

"""Shared test fixtures for the voice receptionist test suite."""

from __future__ import annotations

import os
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

WARSAW = ZoneInfo("Europe/Warsaw")
# Monday 19 October 2026, 09:00 clinic time, before opening
FIXED_NOW = datetime(2026, 10, 19, 9, 0, tzinfo=WARSAW)


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("AZURE_SPEECH_KEY", "test-azure-key-456")
    os.environ["TTS_PREWARM"] = "false"
    os.environ["METRICS_ENABLED"] = "false"


class FakeRenderer:
    """Stands in for the Azure client: ``(text, voice) -> bytes``."""

    def __init__(self, fail_when=None):
        self.calls: list[tuple[str, str]] = []
        self.fail_when = fail_when

    def __call__(self, text: str, voice: str) -> bytes:
        self.calls.append((text, voice))
        if self.fail_when is not None and self.fail_when(text):
            raise RuntimeError("synthesis unavailable")
        return f"audio:{voice}:{text}".encode()


class ScriptedCompletion:
    """Returns queued replies in order; a queued exception is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[tuple[str, list]] = []

    def __call__(self, system, history):
        self.calls.append((system, list(history)))
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def fixed_now():
    return lambda: FIXED_NOW


@pytest.fixture
def ledger(fixed_now):
    from voice_receptionist.services.appointments import AppointmentLedger

    return AppointmentLedger("Europe/Warsaw", now=fixed_now)


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def make_controller(ledger):
    """Factory: a TurnController with scripted model replies and a fake renderer."""
    from voice_receptionist.agent import TurnController
    from voice_receptionist.intent import IntentResolver
    from voice_receptionist.services.sessions import SessionStore
    from voice_receptionist.services.speech_cache import SpeechCache

    def _make(*replies, renderer=None, voice="pl-PL-AgnieszkaNeural"):
        completion = ScriptedCompletion(*replies)
        sessions = SessionStore(ttl_seconds=None)
        controller = TurnController(
            sessions=sessions,
            resolver=IntentResolver(sessions, completion, system_prompt=lambda: "system"),
            ledger=ledger,
            cache=SpeechCache(100),
            renderer=renderer,
            voice=voice,
        )
        return controller, completion

    return _make

"""Intent resolution on top of a chat-completion model.

The language model answers in free text and ends its reply with an action
marker (``ACTION: book_appointment``).  Everything that deals with that
free text lives here: ``parse_reply`` turns a raw reply into a typed
``IntentResult`` and is the only place that knows the marker syntax.  The
turn controller only ever branches on the ``Action`` enum.

``IntentResolver.resolve`` never raises.  Any failure of the completion
call (timeout, API error, empty or malformed reply) becomes the fixed
fallback result that transfers the caller to reception.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage

from voice_receptionist.config import (
    ANTHROPIC_API_KEY,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT_SECONDS,
    MODEL_NAME,
)
from voice_receptionist.prompts import RESOLVER_FALLBACK, get_system_prompt
from voice_receptionist.services.metrics import metrics
from voice_receptionist.services.sessions import Role, SessionStore, Turn, mask_caller

logger = logging.getLogger(__name__)


class Action(StrEnum):
    PROVIDE_INFO = "provide_info"
    BOOK_APPOINTMENT = "book_appointment"
    TRANSFER_TO_RECEPTION = "transfer_to_reception"


DEFAULT_ACTION = Action.PROVIDE_INFO


@dataclass(frozen=True)
class BookingDetails:
    """Slot and patient details the model extracted from the conversation."""

    date: str
    time: str
    name: str
    service: str = "wizyta"


@dataclass(frozen=True)
class IntentResult:
    message: str
    action: Action
    booking: BookingDetails | None = None


FALLBACK_RESULT = IntentResult(RESOLVER_FALLBACK, Action.TRANSFER_TO_RECEPTION)


class CompletionError(Exception):
    """The completion collaborator returned something unusable."""


CompletionFn = Callable[[str, Sequence[Turn]], str]


# ── Reply parsing ───────────────────────────────────────────────────

_ACTION_RE = re.compile(r"\[?\s*\bACTION\b\s*[:=]\s*([A-Za-z_]+)\s*\]?", re.IGNORECASE)
_BOOKING_RE = re.compile(r"^\s*BOOKING\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)


def _parse_booking(raw: str) -> BookingDetails | None:
    match = _BOOKING_RE.search(raw)
    if not match:
        return None
    fields: dict[str, str] = {}
    for part in match.group(1).split(";"):
        key, sep, value = part.partition("=")
        if sep and value.strip():
            fields[key.strip().lower()] = value.strip()
    if not {"date", "time", "name"} <= fields.keys():
        logger.warning("Ignoring incomplete booking line: %r", match.group(0))
        return None
    return BookingDetails(
        date=fields["date"],
        time=fields["time"],
        name=fields["name"],
        service=fields.get("service", "wizyta"),
    )


def parse_reply(raw: str) -> IntentResult:
    """Split a raw model reply into the spoken message, action and booking.

    The last ``ACTION: <token>`` marker wins.  A missing marker or an
    unknown token maps to ``provide_info``.  Marker and booking lines are
    removed from the spoken message.
    """
    raw = raw or ""
    markers = _ACTION_RE.findall(raw)
    action = DEFAULT_ACTION
    if markers:
        token = markers[-1].lower()
        try:
            action = Action(token)
        except ValueError:
            logger.warning("Unknown action marker %r, using %s", token, DEFAULT_ACTION)

    booking = _parse_booking(raw)
    message = _BOOKING_RE.sub(" ", raw)
    message = _ACTION_RE.sub(" ", message)
    message = " ".join(message.split())
    return IntentResult(message=message, action=action, booking=booking)


# ── Default completion collaborator (Anthropic) ─────────────────────


def _build_llm() -> ChatAnthropic:
    """Build the chat model used for intent resolution (no tools)."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.2,
        max_tokens=300,  # replies are spoken, keep them short
        timeout=LLM_TIMEOUT_SECONDS,
        max_retries=LLM_MAX_RETRIES,
    )


def _to_messages(system: str, history: Sequence[Turn]) -> list[AnyMessage]:
    messages: list[AnyMessage] = [SystemMessage(content=system)]
    for turn in history:
        if turn.role is Role.CALLER:
            messages.append(HumanMessage(content=turn.text))
        else:
            messages.append(AIMessage(content=turn.text))
    return messages


def _content_text(content: object) -> str:
    """Flatten a message ``content`` (string or list of blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    raise CompletionError(f"Unexpected completion content type: {type(content).__name__}")


class AnthropicCompletion:
    """``(system_instructions, history) -> raw text`` backed by Claude."""

    def __init__(self, llm: ChatAnthropic | None = None) -> None:
        self._llm = llm or _build_llm()

    def __call__(self, system: str, history: Sequence[Turn]) -> str:
        t0 = time.perf_counter()
        try:
            response = self._llm.invoke(_to_messages(system, history))
            text = _content_text(response.content)
            if not text.strip():
                raise CompletionError("Completion returned an empty reply")
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "complete",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "complete", latency_ms=elapsed)
        logger.debug("Completion (%s) in %.0fms", MODEL_NAME, elapsed)
        return text


# ── Resolver ────────────────────────────────────────────────────────


class IntentResolver:
    """Records the caller's words, asks the model, and types its answer."""

    def __init__(
        self,
        sessions: SessionStore,
        complete: CompletionFn | None = None,
        *,
        system_prompt: Callable[[], str] = get_system_prompt,
    ) -> None:
        self._sessions = sessions
        self._complete = complete or AnthropicCompletion()
        self._system_prompt = system_prompt

    def resolve(self, caller_id: str, transcript: str) -> IntentResult:
        history = self._sessions.append_turn(caller_id, Role.CALLER, transcript)
        try:
            raw = self._complete(self._system_prompt(), history)
            if not isinstance(raw, str) or not raw.strip():
                raise CompletionError(f"Malformed completion reply: {raw!r}")
        except Exception as exc:
            logger.warning(
                "Intent resolution failed for %s, transferring: %s",
                mask_caller(caller_id), exc,
            )
            return FALLBACK_RESULT

        self._sessions.append_turn(caller_id, Role.ASSISTANT, raw)
        result = parse_reply(raw)
        logger.info(
            "Intent for %s: %s%s",
            mask_caller(caller_id), result.action,
            " (with booking details)" if result.booking else "",
        )
        return result

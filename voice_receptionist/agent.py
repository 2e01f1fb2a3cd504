"""Dialogue turn controller for the clinic phone line.

Architecture:
  Each inbound voice event is one *turn*.  The call-control layer hands the
  controller ``(caller_id, transcript)`` and gets back a ``TurnResult``
  saying what to speak and whether to keep listening.

  The decision logic is a LangGraph StateGraph:

    START → (empty transcript?) → reprompt → END
    START → resolve → (action?) → inform   → END
                                 → book     → END
                                 → transfer → END

  Nodes only produce text and the next dialogue state.  Speech synthesis
  happens afterwards in ``TurnController._speak`` so that synthesis
  failures can be told apart from processing failures:

    - any exception inside the graph → spoken apology, keep listening;
    - synthesis of a normal reply fails → static apology spoken by the
      platform voice, keep listening (no second synthesis attempt);
    - synthesis of the apology itself (or of a closing line) fails →
      terminal: static apology with the reception number, end the call.

  Memory:
    Conversation history lives in an explicit ``SessionStore`` shared with
    the ``IntentResolver``, not in a LangGraph checkpointer, so the
    eviction policy and the per-caller reset stay under our control.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from voice_receptionist.config import (
    BOOKING_HORIZON_DAYS,
    CLINIC_TIMEZONE,
    HISTORY_TURNS,
    MAX_SESSIONS,
    MAX_STORED_TURNS,
    SESSION_TTL_SECONDS,
    TTS_CACHE_MAX_ENTRIES,
)
from voice_receptionist.intent import Action, IntentResolver, IntentResult
from voice_receptionist.prompts import (
    BOOKING_CONFIRMED,
    BOOKING_CONFLICT,
    FOLLOW_UP,
    GREETING,
    NO_SLOTS,
    PROCESSING_APOLOGY,
    RECEPTION_NUMBER,
    REPROMPT,
    SLOTS_INTRO,
    STATIC_APOLOGY,
    TERMINAL_APOLOGY,
    TRANSFER,
)
from voice_receptionist.services.appointments import AppointmentLedger, Slot
from voice_receptionist.services.sessions import Role, SessionStore, mask_caller
from voice_receptionist.services.speech_cache import RenderFn, SpeechCache, clip_spoken_text

logger = logging.getLogger(__name__)

SLOTS_OFFERED = 5


class DialogueState(StrEnum):
    AWAITING_SPEECH = "AwaitingSpeech"
    PROCESSING = "Processing"
    INFORMING = "Informing"
    BOOKING = "Booking"
    TRANSFERRING = "Transferring"
    ENDED = "Ended"


@dataclass(frozen=True)
class TurnResult:
    """What the call-control layer should do next.

    ``synthesized`` is False when ``spoken_text`` is a static utterance that
    must be spoken by the platform's own voice instead of rendered audio.
    """

    spoken_text: str
    continue_listening: bool
    state: DialogueState
    synthesized: bool = True
    voice: str = ""
    action: Action | None = None
    path: tuple[DialogueState, ...] = field(default=())


# ── Graph state ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """The state that flows through the graph for a single turn.

    ``path`` uses an additive reducer so every node can record the
    dialogue state it passed through.
    """

    caller_id: str
    transcript: str
    intent: IntentResult
    spoken_text: str
    continue_listening: bool
    state: DialogueState
    path: Annotated[list[DialogueState], operator.add]


def _join(*parts: str) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


def _slots_sentence(slots: list[str]) -> str:
    if not slots:
        return NO_SLOTS
    return SLOTS_INTRO.format(slots=", ".join(slots))


# ── Conditional edges ───────────────────────────────────────────────


def route_transcript(state: TurnState) -> str:
    """Skip intent resolution entirely when nothing was heard."""
    if not (state.get("transcript") or "").strip():
        return "reprompt"
    return "resolve"


def route_by_action(state: TurnState) -> str:
    action = state["intent"].action
    if action is Action.BOOK_APPOINTMENT:
        return "book"
    if action is Action.TRANSFER_TO_RECEPTION:
        return "transfer"
    return "inform"


# ── Controller ──────────────────────────────────────────────────────


class TurnController:
    """Decides what to say on each turn of a call."""

    def __init__(
        self,
        *,
        sessions: SessionStore,
        resolver: IntentResolver,
        ledger: AppointmentLedger,
        cache: SpeechCache | None = None,
        renderer: RenderFn | None = None,
        voice: str = "",
        horizon_days: int = 14,
    ) -> None:
        self.sessions = sessions
        self.resolver = resolver
        self.ledger = ledger
        self.cache = cache or SpeechCache()
        self.renderer = renderer
        self.voice = voice
        self._horizon_days = horizon_days
        self._graph = self._build_graph()

    # ── Nodes ────────────────────────────────────────────────────────

    def _reprompt_node(self, state: TurnState) -> dict:
        return {
            "spoken_text": REPROMPT,
            "continue_listening": True,
            "state": DialogueState.AWAITING_SPEECH,
            "path": [DialogueState.AWAITING_SPEECH],
        }

    def _resolve_node(self, state: TurnState) -> dict:
        intent = self.resolver.resolve(state["caller_id"], state["transcript"])
        return {"intent": intent, "path": [DialogueState.PROCESSING]}

    def _inform_node(self, state: TurnState) -> dict:
        return {
            "spoken_text": state["intent"].message or FOLLOW_UP,
            "continue_listening": True,
            "state": DialogueState.AWAITING_SPEECH,
            "path": [DialogueState.INFORMING, DialogueState.AWAITING_SPEECH],
        }

    def _book_node(self, state: TurnState) -> dict:
        caller_id = state["caller_id"]
        intent = state["intent"]
        details = intent.booking

        if details is None:
            slots = self.ledger.format_available_slots(SLOTS_OFFERED, self._horizon_days)
            text = _join(intent.message, _slots_sentence(slots))
        else:
            result = self.ledger.book(
                details.name, caller_id, details.service, details.date, details.time,
            )
            if result.success:
                appointment = result.appointment
                slot = Slot(date=appointment.appointment_date, time=appointment.appointment_time)
                confirmation = BOOKING_CONFIRMED.format(
                    name=appointment.patient_name,
                    service=appointment.service_type,
                    slot=slot.spoken(),
                )
                text = _join(intent.message, confirmation)
                self.sessions.append_turn(caller_id, Role.ASSISTANT, confirmation)
            else:
                # Never retry the same slot: offer what is actually free now
                logger.info(
                    "Booking for %s rejected (%s): %s",
                    mask_caller(caller_id), result.error_code, result.error,
                )
                slots = self.ledger.format_available_slots(SLOTS_OFFERED, self._horizon_days)
                text = _join(BOOKING_CONFLICT, _slots_sentence(slots))
                self.sessions.append_turn(caller_id, Role.ASSISTANT, text)

        return {
            "spoken_text": text,
            "continue_listening": True,
            "state": DialogueState.AWAITING_SPEECH,
            "path": [DialogueState.BOOKING, DialogueState.AWAITING_SPEECH],
        }

    def _transfer_node(self, state: TurnState) -> dict:
        return {
            "spoken_text": _join(state["intent"].message or TRANSFER, RECEPTION_NUMBER),
            "continue_listening": False,
            "state": DialogueState.ENDED,
            "path": [DialogueState.TRANSFERRING, DialogueState.ENDED],
        }

    def _build_graph(self):
        graph = StateGraph(TurnState)

        graph.add_node("reprompt", self._reprompt_node)
        graph.add_node("resolve", self._resolve_node)
        graph.add_node("inform", self._inform_node)
        graph.add_node("book", self._book_node)
        graph.add_node("transfer", self._transfer_node)

        graph.add_conditional_edges(
            START, route_transcript, {"reprompt": "reprompt", "resolve": "resolve"},
        )
        graph.add_conditional_edges(
            "resolve",
            route_by_action,
            {"inform": "inform", "book": "book", "transfer": "transfer"},
        )
        for node in ("reprompt", "inform", "book", "transfer"):
            graph.add_edge(node, END)

        return graph.compile()

    # ── Speech ───────────────────────────────────────────────────────

    def _speak(
        self,
        text: str,
        continue_listening: bool,
        state: DialogueState,
        *,
        apology: bool = False,
        action: Action | None = None,
        path: tuple[DialogueState, ...] = (),
    ) -> TurnResult:
        """Render *text* through the cache and package the turn result."""
        text = clip_spoken_text(text)
        if self.renderer is None:
            return TurnResult(
                text, continue_listening, state,
                synthesized=False, action=action, path=path,
            )

        try:
            self.cache.get_or_render(self.voice, text, self.renderer)
        except Exception as exc:
            if apology or not continue_listening:
                logger.error("Speech synthesis failed on a closing line, ending call: %s", exc)
                return TurnResult(
                    TERMINAL_APOLOGY, False, DialogueState.ENDED,
                    synthesized=False, action=action, path=path + (DialogueState.ENDED,),
                )
            logger.warning("Speech synthesis failed, using static apology: %s", exc)
            return TurnResult(
                STATIC_APOLOGY, True, DialogueState.AWAITING_SPEECH,
                synthesized=False, action=action, path=path,
            )

        return TurnResult(
            text, continue_listening, state,
            synthesized=True, voice=self.voice, action=action, path=path,
        )

    # ── Public API ───────────────────────────────────────────────────

    def _prompt(self, text: str) -> TurnResult:
        """Render a listening prompt; fall back to the platform voice for it."""
        if self.renderer is not None:
            try:
                self.cache.get_or_render(self.voice, text, self.renderer)
                return TurnResult(
                    text, True, DialogueState.AWAITING_SPEECH,
                    voice=self.voice, path=(DialogueState.AWAITING_SPEECH,),
                )
            except Exception as exc:
                logger.warning("Speech synthesis failed for prompt: %s", exc)
        return TurnResult(
            text, True, DialogueState.AWAITING_SPEECH,
            synthesized=False, path=(DialogueState.AWAITING_SPEECH,),
        )

    def greet(self, caller_id: str) -> TurnResult:
        """Opening line of a call.  Never fails."""
        logger.info("Greeting caller %s", mask_caller(caller_id))
        return self._prompt(GREETING)

    def follow_up(self) -> TurnResult:
        """The "anything else?" prompt played while listening again."""
        return self._prompt(FOLLOW_UP)

    def handle_turn(self, caller_id: str, transcript: str | None) -> TurnResult:
        """Run one turn of the dialogue for *caller_id*."""
        transcript = (transcript or "").strip()
        try:
            final = self._graph.invoke({"caller_id": caller_id, "transcript": transcript})
        except Exception:
            logger.exception("Error processing turn for %s", mask_caller(caller_id))
            return self._speak(
                PROCESSING_APOLOGY, True, DialogueState.AWAITING_SPEECH,
                apology=True, path=(DialogueState.PROCESSING, DialogueState.AWAITING_SPEECH),
            )

        intent = final.get("intent")
        return self._speak(
            final["spoken_text"],
            final["continue_listening"],
            final["state"],
            action=intent.action if intent else None,
            path=tuple(final.get("path", [])),
        )

    def reset(self, caller_id: str) -> bool:
        """Forget the caller's conversation so the next turn starts fresh."""
        return self.sessions.clear(caller_id)


# ── Assembly ────────────────────────────────────────────────────────


def create_receptionist(
    *,
    renderer: RenderFn | None = None,
    voice: str = "",
) -> TurnController:
    """Build a TurnController wired with the configured stores.

    Pass ``renderer=None`` for a text-only controller (CLI, tests).
    """
    sessions = SessionStore(
        history_turns=HISTORY_TURNS,
        max_stored_turns=MAX_STORED_TURNS,
        max_sessions=MAX_SESSIONS,
        ttl_seconds=SESSION_TTL_SECONDS,
    )
    controller = TurnController(
        sessions=sessions,
        resolver=IntentResolver(sessions),
        ledger=AppointmentLedger(CLINIC_TIMEZONE),
        cache=SpeechCache(TTS_CACHE_MAX_ENTRIES),
        renderer=renderer,
        voice=voice,
        horizon_days=BOOKING_HORIZON_DAYS,
    )
    logger.debug(
        "Receptionist ready — history %d turns, cache %d entries, voice %s",
        HISTORY_TURNS, TTS_CACHE_MAX_ENTRIES, voice or "(text only)",
    )
    return controller

"""Per-caller conversation history.

The store maps a caller's phone number to the ordered turns of their
conversation.  It is an explicit object (injected into the resolver and the
turn controller) rather than a module-level dict, so tests can build a
fresh one and the lifetime policy is part of its contract:

* at most ``max_sessions`` callers are held; adding one more evicts the
  least-recently-seen caller;
* a session idle for longer than ``ttl_seconds`` is treated as gone and is
  dropped the next time anybody touches it;
* each session keeps at most ``max_stored_turns`` turns (oldest dropped),
  while only the last ``history_turns`` are handed to the language model.

All mutations happen under one ``threading.Lock``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TURNS = 10
DEFAULT_MAX_STORED_TURNS = 50
DEFAULT_MAX_SESSIONS = 1000
DEFAULT_TTL_SECONDS = 3600.0


class Role(StrEnum):
    CALLER = "caller"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class CallerSession:
    caller_id: str
    turns: list[Turn] = field(default_factory=list)
    created_at: float = 0.0
    last_seen: float = 0.0


def mask_caller(caller_id: str) -> str:
    """Mask a phone number for logging — keep the last 3 digits only."""
    if not caller_id or len(caller_id) <= 3:
        return "***"
    return "***" + caller_id[-3:]


class SessionStore:
    """Caller id → conversation history, with LRU eviction and idle TTL."""

    def __init__(
        self,
        *,
        history_turns: int = DEFAULT_HISTORY_TURNS,
        max_stored_turns: int = DEFAULT_MAX_STORED_TURNS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.history_turns = history_turns
        self._max_stored_turns = max(max_stored_turns, history_turns)
        self._max_sessions = max_sessions
        self._ttl = ttl_seconds
        self._clock = clock
        # caller_id → session, least-recently-seen first
        self._sessions: OrderedDict[str, CallerSession] = OrderedDict()
        self._lock = threading.Lock()

    # ── Internal helpers (lock must be held) ─────────────────────────

    def _expired(self, session: CallerSession, now: float) -> bool:
        return self._ttl is not None and now - session.last_seen > self._ttl

    def _live(self, caller_id: str, now: float) -> CallerSession | None:
        session = self._sessions.get(caller_id)
        if session is not None and self._expired(session, now):
            del self._sessions[caller_id]
            logger.info("Session expired for %s", mask_caller(caller_id))
            return None
        return session

    def _view(self, session: CallerSession) -> list[Turn]:
        return list(session.turns[-self.history_turns:])

    # ── Public API ───────────────────────────────────────────────────

    def append_turn(self, caller_id: str, role: Role | str, text: str) -> list[Turn]:
        """Append a turn (creating the session if needed) and return the
        last ``history_turns`` turns.

        *role* must be a ``Role`` or one of its values; anything else raises
        ``ValueError`` before the store is touched.
        """
        now = self._clock()
        turn = Turn(role=Role(role), text=text or "")
        with self._lock:
            session = self._live(caller_id, now)
            if session is None:
                session = CallerSession(caller_id=caller_id, created_at=now)
                self._sessions[caller_id] = session
                logger.info("New session for %s", mask_caller(caller_id))
                while len(self._sessions) > self._max_sessions:
                    evicted_id, _ = self._sessions.popitem(last=False)
                    logger.info("Session evicted (LRU) for %s", mask_caller(evicted_id))

            session.turns.append(turn)
            if len(session.turns) > self._max_stored_turns:
                del session.turns[: len(session.turns) - self._max_stored_turns]
            session.last_seen = now
            self._sessions.move_to_end(caller_id)
            return self._view(session)

    def history(self, caller_id: str) -> list[Turn]:
        """Return the last ``history_turns`` turns, or ``[]`` for unknown callers."""
        with self._lock:
            session = self._live(caller_id, self._clock())
            return self._view(session) if session else []

    def get(self, caller_id: str) -> CallerSession | None:
        with self._lock:
            return self._live(caller_id, self._clock())

    def clear(self, caller_id: str) -> bool:
        """Forget a caller.  Idempotent; returns ``True`` if a session existed."""
        with self._lock:
            existed = self._sessions.pop(caller_id, None) is not None
        if existed:
            logger.info("Session cleared for %s", mask_caller(caller_id))
        return existed

    def clear_all(self) -> None:
        with self._lock:
            self._sessions.clear()

    def prune_expired(self) -> int:
        """Drop every idle session.  Returns the number removed."""
        now = self._clock()
        with self._lock:
            stale = [cid for cid, s in self._sessions.items() if self._expired(s, now)]
            for caller_id in stale:
                del self._sessions[caller_id]
        if stale:
            logger.info("Pruned %d expired session(s)", len(stale))
        return len(stale)

    def __contains__(self, caller_id: object) -> bool:
        with self._lock:
            return isinstance(caller_id, str) and self._live(caller_id, self._clock()) is not None

    @property
    def session_count(self) -> int:
        return len(self._sessions)

"""Thread-safe in-memory FIFO cache for synthesized speech.

Design decisions
────────────────
• Entries are keyed by ``(voice, normalized text)``.  Normalisation strips
  the ends and collapses inner whitespace, so "Dzień  dobry " and
  "Dzień dobry" share one rendering.
• Eviction is **strict insertion order** (FIFO), not access recency.  The
  order lives in an explicit ``deque`` of keys kept beside the store, so a
  read never reorders anything.
• ``threading.Lock`` guards the bookkeeping only.  Rendering happens
  outside the lock; two simultaneous first-time misses may both render the
  same phrase, and the second store simply overwrites the first.
• Render failures propagate unchanged and nothing is stored.

Usage
─────
>>> cache = SpeechCache(max_entries=100)
>>> audio = cache.get_or_render("pl-PL-AgnieszkaNeural", "Dzień dobry", synthesize)
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable

from voice_receptionist.services.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100
# Longest text placed in a <Play> URL
MAX_SPOKEN_CHARS = 700

CacheKey = tuple[str, str]
RenderFn = Callable[[str, str], bytes]


def normalize_text(text: str) -> str:
    """Collapse whitespace runs and strip the ends of *text*."""
    return " ".join((text or "").split())


def clip_spoken_text(text: str, limit: int = MAX_SPOKEN_CHARS) -> str:
    """Normalise *text* and cut it to *limit* characters at a word boundary.

    Rendered replies travel to Twilio inside a ``/tts?text=`` URL, so the
    controller renders and the route links exactly this clipped form.
    """
    text = normalize_text(text)
    if len(text) <= limit:
        return text
    head = text[:limit]
    cut = head.rsplit(" ", 1)[0] if " " in head else head
    return cut.rstrip(",;:")


def make_key(voice: str, text: str) -> CacheKey:
    return (voice.strip(), normalize_text(text))


class SpeechCache:
    """Bounded (voice, text) → audio cache with oldest-first eviction."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._store: dict[CacheKey, bytes] = {}
        self._order: deque[CacheKey] = deque()
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def get(self, voice: str, text: str) -> bytes | None:
        """Return the cached audio or ``None``.  Never changes eviction order."""
        with self._lock:
            return self._store.get(make_key(voice, text))

    def put(self, voice: str, text: str, audio: bytes) -> None:
        """Store *audio*, evicting the oldest-inserted entries if over capacity."""
        key = make_key(voice, text)
        with self._lock:
            if key not in self._store:
                self._order.append(key)
            self._store[key] = audio

            while len(self._order) > self._max_entries:
                evicted = self._order.popleft()
                self._store.pop(evicted, None)
                logger.debug("TTS cache: evicted %r", evicted)

    def get_or_render(self, voice: str, text: str, render_fn: RenderFn) -> bytes:
        """Return cached audio for (voice, text), rendering it on a miss.

        ``render_fn(text, voice)`` is the synthesis collaborator.  Any
        exception it raises reaches the caller untouched.
        """
        cached = self.get(voice, text)
        if cached is not None:
            logger.debug("TTS cache HIT: %s|%s", voice, normalize_text(text)[:40])
            metrics.record_cache("tts", hit=True)
            return cached

        metrics.record_cache("tts", hit=False)
        audio = render_fn(normalize_text(text), voice)
        self.put(voice, text, audio)
        return audio

    def prewarm(self, phrases: Iterable[str], voice: str, render_fn: RenderFn) -> int:
        """Render frequently used phrases ahead of the first call.

        Failures are logged and skipped.  Returns the number of phrases now
        resident in the cache.
        """
        warmed = 0
        for phrase in phrases:
            try:
                self.get_or_render(voice, phrase, render_fn)
                warmed += 1
            except Exception as exc:
                logger.warning("TTS prewarm failed for %r: %s", phrase[:40], exc)
        logger.info("TTS prewarm done: %d phrase(s)", warmed)
        return warmed

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._order.clear()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def entry_count(self) -> int:
        """Number of entries currently stored."""
        return len(self._store)

    def has(self, voice: str, text: str) -> bool:
        return make_key(voice, text) in self._store

    def keys(self) -> list[CacheKey]:
        """Resident keys, oldest insertion first."""
        with self._lock:
            return list(self._order)

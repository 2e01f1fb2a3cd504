"""CloudWatch custom metrics for the receptionist's collaborators.

Every call to Anthropic or Azure Speech produces one ``External/RequestCount``
point tagged with its outcome, an ``External/Latency`` point when a duration
is known, and on failure an ``External/ErrorCount`` point tagged with the
error type.  Speech cache lookups produce ``Cache/Hit`` or ``Cache/Miss``.

Points are buffered in memory (bounded; oldest dropped first) and pushed in
chunks of at most ``MAX_BATCH_SIZE`` by a daemon thread.  With
``METRICS_ENABLED`` unset the buffer is still filled and drained, but
nothing leaves the process.

>>> from voice_receptionist.services.metrics import metrics
>>> metrics.record_success("azure_tts", "synthesize", latency_ms=321.0)
>>> metrics.record_failure("anthropic", "complete", error_type="timeout")
>>> metrics.record_cache("tts", hit=True)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections import deque
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "VoiceReceptionist"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call
# Oldest points are dropped past this, so a disabled client stays bounded
MAX_BUFFERED = 10_000

REQUEST_COUNT = "External/RequestCount"
ERROR_COUNT = "External/ErrorCount"
LATENCY = "External/Latency"
CACHE_HIT = "Cache/Hit"
CACHE_MISS = "Cache/Miss"

Datum = dict[str, Any]


def datum(
    name: str,
    dimensions: dict[str, str],
    value: float = 1,
    unit: str = "Count",
    timestamp: datetime | None = None,
) -> Datum:
    """One ``MetricData`` entry in the shape ``put_metric_data`` expects."""
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": timestamp or datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


def _chunks(points: list[Datum], size: int) -> Iterator[list[Datum]]:
    for start in range(0, len(points), size):
        yield points[start : start + size]


def _enabled_from_env() -> bool:
    return os.getenv("METRICS_ENABLED", "false").lower() == "true"


class MetricsClient:
    """Buffers metric points and ships them to CloudWatch in batches."""

    def __init__(
        self,
        enabled: bool | None = None,
        *,
        namespace: str = NAMESPACE,
        background: bool = True,
    ) -> None:
        self.enabled = _enabled_from_env() if enabled is None else enabled
        self.namespace = namespace
        self._buffer: deque[Datum] = deque(maxlen=MAX_BUFFERED)
        self._lock = threading.Lock()
        self._cw_client = None  # lazy-init

        if self.enabled and background:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ────────────────────────────────────────────────────

    def record_call(
        self,
        service: str,
        operation: str,
        *,
        ok: bool,
        latency_ms: float = 0,
        error_type: str = "",
    ) -> None:
        """Record one collaborator call.  Latency is kept only when positive."""
        now = datetime.now(UTC)
        status = "success" if ok else "failure"
        points = [datum(REQUEST_COUNT, {"Service": service, "Status": status}, timestamp=now)]
        if not ok:
            points.append(
                datum(ERROR_COUNT, {"Service": service, "ErrorType": error_type or "unknown"},
                      timestamp=now)
            )
        if latency_ms > 0:
            points.append(
                datum(LATENCY, {"Service": service, "Operation": operation},
                      value=latency_ms, unit="Milliseconds", timestamp=now)
            )
        self._extend(points)
        logger.debug(
            "Metric: %s.%s %s %s latency=%.1fms",
            service, operation, status, error_type, latency_ms,
        )

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        self.record_call(service, operation, ok=True, latency_ms=latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        self.record_call(
            service, operation, ok=False, latency_ms=latency_ms, error_type=error_type,
        )

    def record_cache(self, cache: str, *, hit: bool) -> None:
        """Record a single cache lookup outcome."""
        self._extend([datum(CACHE_HIT if hit else CACHE_MISS, {"Cache": cache})])

    def pending(self) -> list[Datum]:
        """Copy of the points waiting for the next flush, oldest first."""
        with self._lock:
            return list(self._buffer)

    # ── Shipping ─────────────────────────────────────────────────────

    def flush(self) -> int:
        """Drain the buffer to CloudWatch.  Returns the number of points sent.

        The buffer is emptied either way; a failed ``put_metric_data`` loses
        the rest of that batch rather than retrying it.
        """
        with self._lock:
            batch = list(self._buffer)
            self._buffer.clear()
        if not batch:
            return 0
        if not self.enabled:
            logger.debug("Metrics disabled, discarded %d point(s)", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for chunk in _chunks(batch, MAX_BATCH_SIZE):
                cw.put_metric_data(Namespace=self.namespace, MetricData=chunk)
                sent += len(chunk)
        except Exception:
            logger.exception(
                "Failed to flush metrics to CloudWatch (%d of %d sent)", sent, len(batch),
            )
        else:
            logger.info("Flushed %d metrics to CloudWatch", sent)
        return sent

    def _extend(self, points: list[Datum]) -> None:
        with self._lock:
            self._buffer.extend(points)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()

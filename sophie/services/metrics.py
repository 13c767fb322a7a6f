"""CloudWatch custom metrics with background batching.

Two families of data points:

* ``ExternalAPI/*``: count, latency and errors for every call to an external
  service (``anthropic``, ``google_calendar``).
* ``Dialogue/*``: engine-level counters (turns per state, emergencies,
  replies rejected by the hallucination guard).

Data points are buffered in memory and pushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS`` when ``METRICS_ENABLED=true``. Locally they are
only logged at DEBUG level.

Usage
-----
>>> from sophie.services.metrics import metrics
>>> metrics.record_success("google_calendar", "POST freeBusy", latency_ms=84.2)
>>> with metrics.timed("anthropic", "extract_entities"):
...     llm.invoke(messages)
>>> metrics.record_dialogue_event("EmergencyDetected")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "Sophie"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        """Create the boto3 CloudWatch client on first use."""
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── External API calls ────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        now = datetime.now(UTC)
        self._append("ExternalAPI/RequestCount", _dims(Service=service, Status="success"), 1, "Count", now)
        self._append(
            "ExternalAPI/Latency", _dims(Service=service, Operation=operation), latency_ms, "Milliseconds", now,
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(self, service: str, operation: str, error_type: str, latency_ms: float = 0) -> None:
        now = datetime.now(UTC)
        self._append("ExternalAPI/RequestCount", _dims(Service=service, Status="failure"), 1, "Count", now)
        self._append("ExternalAPI/ErrorCount", _dims(Service=service, ErrorType=error_type), 1, "Count", now)
        if latency_ms > 0:
            self._append(
                "ExternalAPI/Latency", _dims(Service=service, Operation=operation), latency_ms, "Milliseconds", now,
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms", service, operation, error_type, latency_ms,
        )

    @contextmanager
    def timed(self, service: str, operation: str) -> Iterator[None]:
        """Record success or failure (with latency) around a block; re-raises."""
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.record_failure(
                service, operation,
                error_type=type(exc).__name__, latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise
        self.record_success(service, operation, latency_ms=(time.perf_counter() - t0) * 1000)

    # ── Dialogue engine ───────────────────────────────────────────────

    def record_dialogue_event(self, event: str, **dimensions: str) -> None:
        """Count one engine event, e.g. ``Turn`` with ``State=CONFIRMATION``."""
        self._append(f"Dialogue/{event}", _dims(**dimensions), 1, "Count", datetime.now(UTC))
        logger.debug("Metric: dialogue %s %s", event, dimensions)

    # ── Flushing ──────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _append(
        self,
        name: str,
        dimensions: list[dict[str, str]],
        value: float,
        unit: str,
        timestamp: datetime,
    ) -> None:
        datum = {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": timestamp,
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(datum)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()

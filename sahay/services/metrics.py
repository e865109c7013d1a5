"""CloudWatch custom metrics emitter with background batching.

Publishes per-call metrics for the two external dependencies of the
assistant: the Supabase store (one data point set per gateway outcome)
and the Anthropic reasoning service (one per reasoning pass).

* Data points are buffered in memory behind a lock.
* A daemon thread flushes the buffer every ``FLUSH_INTERVAL_SECONDS``.
* Unless ``METRICS_ENABLED=true`` nothing is pushed; points are only
  logged at DEBUG level.

>>> from sahay.services.metrics import metrics
>>> metrics.record_success("supabase", "select doctors", latency_ms=42.0)
>>> metrics.record_retry("supabase", "select doctors", attempt=1)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "Sahay"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _point(name: str, dims: dict[str, str], value: float, unit: str) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dims.items()],
        "Timestamp": datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


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

    # ── Public API ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a call that returned normally."""
        self._append(_point(
            "External/RequestCount", {"Service": service, "Status": "success"}, 1, "Count",
        ))
        self._append(_point(
            "External/Latency", {"Service": service, "Operation": operation},
            latency_ms, "Milliseconds",
        ))
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a call that ended in an error (after any retries)."""
        self._append(_point(
            "External/RequestCount", {"Service": service, "Status": "failure"}, 1, "Count",
        ))
        self._append(_point(
            "External/ErrorCount", {"Service": service, "ErrorType": error_type}, 1, "Count",
        ))
        if latency_ms > 0:
            self._append(_point(
                "External/Latency", {"Service": service, "Operation": operation},
                latency_ms, "Milliseconds",
            ))
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    def record_retry(self, service: str, operation: str, attempt: int) -> None:
        """Record that a transient failure is about to be retried."""
        self._append(_point(
            "External/RetryCount", {"Service": service, "Operation": operation}, 1, "Count",
        ))
        logger.debug("Metric: %s %s retry after attempt %d", service, operation, attempt)

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

    # ── Internal ──────────────────────────────────────────────────────

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

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


# Process-wide publisher; holds no request state.
metrics = MetricsClient()

"""Telemetry sinks for pipeline events (terminal failures, retries, halts)."""

import logging
import threading
import time
import uuid
from typing import Any, Dict, List, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = ("apikey", "key", "token", "password", "secret", "auth")
MAX_VALUE_LENGTH = 100


class TelemetrySink(Protocol):
    """Protocol for telemetry sinks."""

    def report(self, event: str, severity: str = "error", **context: Any) -> None:
        """Record one event.

        Args:
            event: Event name (e.g., "task_failed", "batch_halted")
            severity: "info", "warning", "error" or "critical"
            **context: Event fields (job_id, task_id, error kind, ...)
        """
        ...


def sanitize(context: Dict[str, Any]) -> Dict[str, Any]:
    """Redact sensitive keys and truncate long string values."""
    sanitized: Dict[str, Any] = {}
    for key, value in context.items():
        if any(sk in key.lower() for sk in SENSITIVE_KEYS):
            value = "[REDACTED]"
        if isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            value = value[:MAX_VALUE_LENGTH] + "...[truncated]"
        sanitized[key] = value
    return sanitized


class LoggingTelemetrySink:
    """Telemetry sink that writes events to the module logger."""

    _LEVELS = {
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def report(self, event: str, severity: str = "error", **context: Any) -> None:
        fields = ", ".join(f"{k}={v}" for k, v in sanitize(context).items())
        logger.log(self._LEVELS.get(severity, logging.ERROR), f"[{event}] {fields}")


class HttpTelemetrySink:
    """Buffered telemetry sink that POSTs batches to a log-error endpoint.

    Events are flushed once `flush_size` are buffered. If the endpoint is
    unreachable the batch goes back into the buffer; the buffer never holds
    more than `max_buffer` events (oldest are dropped first).
    """

    def __init__(
        self,
        url: str,
        flush_size: int = 10,
        max_buffer: int = 100,
        timeout_sec: int = 10,
    ):
        """Initialize HTTP telemetry sink.

        Args:
            url: Endpoint accepting {"errors": [...]}
            flush_size: Buffered events that trigger a flush
            max_buffer: Hard cap on buffered events
            timeout_sec: POST timeout
        """
        if flush_size < 1 or max_buffer < flush_size:
            raise ValueError(
                f"Need 1 <= flush_size <= max_buffer, got {flush_size}, {max_buffer}"
            )
        self.url = url
        self.flush_size = flush_size
        self.max_buffer = max_buffer
        self.timeout_sec = timeout_sec
        self.session_id = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        self._buffer: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    @property
    def buffered(self) -> int:
        with self._lock:
            return len(self._buffer)

    def report(self, event: str, severity: str = "error", **context: Any) -> None:
        record = {
            "message": event,
            "severity": severity,
            "category": "api",
            "context": sanitize(context),
            "tags": ["pipeline"],
            "environment": {
                "sessionId": self.session_id,
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            },
        }

        with self._lock:
            if len(self._buffer) >= self.max_buffer:
                self._buffer.pop(0)
            self._buffer.append(record)
            should_flush = len(self._buffer) >= self.flush_size

        if should_flush:
            self.flush()

    def flush(self) -> Optional[int]:
        """Send buffered events.

        Returns:
            Number of events sent, or None if the POST failed
        """
        with self._lock:
            if not self._buffer:
                return 0
            batch, self._buffer = self._buffer, []

        try:
            response = requests.post(self.url, json={"errors": batch}, timeout=self.timeout_sec)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            with self._lock:
                merged = batch + self._buffer
                dropped = max(0, len(merged) - self.max_buffer)
                self._buffer = merged[dropped:]
            logger.warning(f"Telemetry flush failed ({e}), {dropped} oldest events dropped")
            return None

        logger.debug(f"Telemetry flushed {len(batch)} events")
        return len(batch)

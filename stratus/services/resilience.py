"""Resilience utilities — bounded retry for transient upstream errors, error tracking."""

from __future__ import annotations

import asyncio
import logging
import time
from threading import Lock
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({502, 503})


# ---------------------------------------------------------------------------
# Retry with linear backoff
# ---------------------------------------------------------------------------


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    label: str,
    max_attempts: int = 5,
    backoff_seconds: float = 3.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> httpx.Response:
    """Call *send* until it returns something other than 502/503.

    Args:
        send: Zero-argument coroutine factory issuing one request.
        label: Text used in log lines, e.g. ``"POST /v1/apps"``.
        max_attempts: Total attempts including the first.
        backoff_seconds: Delay unit; attempt *n* waits ``n * backoff_seconds``.
        sleep: Awaitable sleep, replaceable in tests.

    The final response is returned as-is once attempts are exhausted, so the
    caller decides how a lingering 502/503 is reported.
    """
    attempt = 1
    while True:
        response = await send()
        if response.status_code not in TRANSIENT_STATUSES or attempt >= max_attempts:
            if response.status_code in TRANSIENT_STATUSES:
                logger.error("%s still %d after %d attempts", label, response.status_code, attempt)
            return response

        delay = attempt * backoff_seconds
        logger.warning(
            "%s returned %d (attempt %d/%d), retrying in %.1fs",
            label, response.status_code, attempt, max_attempts, delay,
        )
        await sleep(delay)
        attempt += 1


# ---------------------------------------------------------------------------
# Error Tracker — structured record of swallowed/best-effort failures
# ---------------------------------------------------------------------------


class ErrorTracker:
    """In-memory ring buffer for recent errors. Queryable via API."""

    def __init__(self, max_entries: int = 500):
        self._entries: list[dict[str, Any]] = []
        self._max = max_entries
        self._lock = Lock()

    def record(
        self,
        source: str,
        error: Exception,
        context: dict[str, Any] | None = None,
    ) -> None:
        entry = {
            "timestamp": time.time(),
            "source": source,
            "error_type": type(error).__name__,
            "message": str(error),
            "context": context or {},
        }
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._max:
                self._entries = self._entries[-self._max:]

    def get_errors(
        self,
        source: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Most recent first, optionally filtered by source."""
        with self._lock:
            entries = list(reversed(self._entries))
        if source:
            entries = [e for e in entries if e["source"] == source]
        return entries[:limit]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def count(self) -> int:
        return len(self._entries)


error_tracker = ErrorTracker()

"""Rate limiting utilities shared across Strava API helpers."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Mapping

from ..config import (
    RATE_LIMIT_MAX_CONCURRENT,
    RATE_LIMIT_NEAR_LIMIT_BUFFER,
    RATE_LIMIT_THROTTLE_SECONDS,
)

__all__ = ["RateLimiter"]


class RateLimiter:
    """Soft concurrency cap with a shared throttle after 429 or near-limit signals."""

    def __init__(
        self,
        max_concurrent: int = RATE_LIMIT_MAX_CONCURRENT,
        throttle_seconds: float = RATE_LIMIT_THROTTLE_SECONDS,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._max_allowed = max_concurrent
        self._in_flight = 0
        self._throttle_until: float = 0.0
        self._throttle_seconds = throttle_seconds
        self._near_limit_buffer = RATE_LIMIT_NEAR_LIMIT_BUFFER
        self._sleep = sleep
        self._clock = clock

    def before_request(self) -> None:
        with self._cond:
            while self._in_flight >= self._max_allowed:
                self._cond.wait()
            self._in_flight += 1
            wait_for = max(0.0, self._throttle_until - self._clock())
        if wait_for > 0:
            self._sleep(wait_for)

    def after_response(
        self, headers: Mapping[str, object] | None, status_code: int | None
    ) -> tuple[bool, str | None]:
        """Release the slot; return ``(throttled, usage)`` for caller logging."""

        throttle = False
        info: str | None = None
        if status_code == 429:
            throttle = True
            info = "429"
        elif headers:
            usage = headers.get("X-RateLimit-Usage")
            limit = headers.get("X-RateLimit-Limit")
            if usage and limit:
                try:
                    short_used = int(str(usage).split(",")[0])
                    short_limit = int(str(limit).split(",")[0])
                except (ValueError, TypeError) as exc:
                    logging.debug(
                        "Failed to parse rate limit headers usage=%s limit=%s: %s",
                        usage,
                        limit,
                        exc,
                    )
                else:
                    if short_used >= max(short_limit - self._near_limit_buffer, 0):
                        throttle = True
                        info = f"{short_used}/{short_limit}"
        with self._cond:
            if throttle:
                self._throttle_until = self._clock() + self._throttle_seconds
            self._in_flight = max(0, self._in_flight - 1)
            if self._in_flight < self._max_allowed:
                self._cond.notify()
        if throttle:
            logging.warning(
                "Rate limit signal %s. Throttling %ss.", info, self._throttle_seconds
            )
        return throttle, info

    def snapshot(self) -> dict[str, float | int]:
        """Return current limiter stats (used by tests and diagnostics)."""

        with self._lock:
            return {
                "max_allowed": self._max_allowed,
                "in_flight": self._in_flight,
                "throttle_until": self._throttle_until,
            }

"""Bounded retry schedule shared by the activity fetcher and the hider."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from ..config import (
    STRAVA_BACKOFF_BASE_SECONDS,
    STRAVA_BACKOFF_MAX_SECONDS,
    STRAVA_MAX_RETRIES,
)

__all__ = ["RetryPolicy"]


@dataclass(frozen=True)
class RetryPolicy:
    """Maximum attempts plus a capped exponential delay schedule.

    ``max_attempts`` counts the first try, so ``max_attempts=3`` allows two
    retries with delays ``base``, ``2 * base`` (each capped at ``max_delay``).
    """

    max_attempts: int = STRAVA_MAX_RETRIES
    base_delay: float = STRAVA_BACKOFF_BASE_SECONDS
    max_delay: float = STRAVA_BACKOFF_MAX_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    def can_retry(self, attempt: int) -> bool:
        """Return ``True`` when another attempt may follow ``attempt`` (1-based)."""

        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed ``attempt`` (1-based) before the next one."""

        if attempt < 1:
            return 0.0
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def delays(self) -> List[float]:
        return [self.delay_for(n) for n in range(1, self.max_attempts)]

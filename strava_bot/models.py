from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional


class ActivityType(str, Enum):
    RIDE = "Ride"
    VIRTUAL_RIDE = "VirtualRide"
    OTHER = "Other"


class Visibility(str, Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"


class Outcome(str, Enum):
    HIDDEN = "hidden"
    SKIPPED_NO_MATCH = "skipped-no-match"
    ERROR = "error"


class CycleState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    FETCHING = "fetching"
    MATCHING = "matching"
    FILTERING = "filtering"
    HIDING = "hiding"


@dataclass(frozen=True)
class Activity:
    id: int
    type: ActivityType
    distance: Optional[float]
    start_time: datetime
    visibility: Visibility = Visibility.VISIBLE
    name: str = ""


@dataclass
class Credential:
    access_token: str
    refresh_token: str
    # Epoch seconds (UTC). Zero forces a refresh on first use.
    expires_at: int = 0

    def __repr__(self) -> str:
        return f"Credential(expires_at={self.expires_at})"


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    @classmethod
    def ending_at(cls, end: datetime, lookback: timedelta) -> "TimeRange":
        return cls(start=end - lookback, end=end)


@dataclass(frozen=True)
class CandidatePair:
    indoor_activity_id: int
    virtual_activity_id: int
    time_delta: timedelta


@dataclass(frozen=True)
class ProcessedRecord:
    indoor_activity_id: int
    outcome: Outcome
    recorded_at: datetime
    virtual_activity_id: Optional[int] = None
    detail: Optional[str] = None


@dataclass
class CycleResult:
    """Summary of one resolution cycle."""

    started_at: datetime
    state: CycleState = CycleState.IDLE
    fetched: int = 0
    pairs: List[CandidatePair] = field(default_factory=list)
    hidden: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    # Recorded as hidden without a mutation call.
    already_hidden: List[int] = field(default_factory=list)
    errors: List[int] = field(default_factory=list)
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

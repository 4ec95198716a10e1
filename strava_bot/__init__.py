"""Strava bot that hides indoor rides duplicated by virtual rides."""

from .engine import DuplicateResolver
from .errors import (
    AuthError,
    ConfigError,
    StravaAPIError,
    StravaPermissionError,
    StravaResourceNotFoundError,
    TransientError,
)
from .matcher import match
from .models import Activity, CandidatePair, Outcome

__all__ = [
    "Activity",
    "AuthError",
    "CandidatePair",
    "ConfigError",
    "DuplicateResolver",
    "Outcome",
    "StravaAPIError",
    "StravaPermissionError",
    "StravaResourceNotFoundError",
    "TransientError",
    "match",
]

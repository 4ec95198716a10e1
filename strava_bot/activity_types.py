"""Utilities for classifying Strava activity types."""

from __future__ import annotations

from typing import Any, Mapping

from .models import Activity, ActivityType

__all__ = [
    "normalize_activity_type",
    "classify_activity_type",
    "is_indoor_ride",
    "is_virtual_ride",
]

_KNOWN_TYPES = {
    "ride": ActivityType.RIDE,
    "virtualride": ActivityType.VIRTUAL_RIDE,
}


def normalize_activity_type(value: Any) -> str | None:
    """Return a lowercase activity type string or ``None`` when missing.

    The Strava API can return either ``type`` or ``sport_type`` values, often
    with inconsistent casing. Normalising once keeps downstream comparisons
    cheap and deterministic.
    """

    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def classify_activity_type(activity: Mapping[str, Any]) -> ActivityType:
    """Map a Strava summary payload onto :class:`ActivityType`.

    ``type`` wins over ``sport_type`` because a stationary sensor upload keeps
    ``type=Ride`` even when the sport type is refined later.
    """

    for key in ("type", "sport_type"):
        normalized = normalize_activity_type(activity.get(key))
        if normalized:
            return _KNOWN_TYPES.get(normalized, ActivityType.OTHER)
    return ActivityType.OTHER


def is_indoor_ride(activity: Activity, epsilon: float) -> bool:
    """Return ``True`` for a ``Ride`` whose distance is zero within ``epsilon``.

    A missing distance never counts as zero.
    """

    if activity.type is not ActivityType.RIDE:
        return False
    if activity.distance is None:
        return False
    return activity.distance <= epsilon


def is_virtual_ride(activity: Activity) -> bool:
    return activity.type is ActivityType.VIRTUAL_RIDE

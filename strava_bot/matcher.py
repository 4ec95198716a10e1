"""Pair zero-distance indoor rides with the virtual rides that duplicate them.

Matching is pure: no I/O, no clock. The same activities in any input order
always yield the same pairs.

Rules:

* Indoor candidates are ``Ride`` activities with a distance of zero (within
  ``epsilon``). A missing distance never matches.
* Virtual candidates are visible ``VirtualRide`` activities. Hidden indoor
  rides still take part so that a ride hidden on an earlier cycle keeps
  claiming its virtual twin.
* A pair requires ``|indoor.start_time - virtual.start_time| <= window``.
* Assignment is greedy over all eligible edges in ascending time delta; ties
  fall back to the lower indoor id, then the lower virtual id. Each indoor and
  each virtual activity is used at most once.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, Iterable, List, Tuple

from .activity_types import is_indoor_ride, is_virtual_ride
from .config import MATCH_WINDOW_SECONDS, ZERO_DISTANCE_EPSILON
from .models import Activity, CandidatePair, Visibility

__all__ = ["match", "partition"]

_Edge = Tuple[timedelta, int, int]


def partition(
    activities: Iterable[Activity], *, epsilon: float = ZERO_DISTANCE_EPSILON
) -> Tuple[List[Activity], List[Activity]]:
    """Split ``activities`` into ``(indoor, virtual)`` candidate lists.

    Repeated ids keep the first occurrence. Both lists are sorted by id.
    """

    seen: Dict[int, Activity] = {}
    for activity in activities:
        seen.setdefault(activity.id, activity)
    indoor = [a for a in seen.values() if is_indoor_ride(a, epsilon)]
    virtual = [
        a
        for a in seen.values()
        if is_virtual_ride(a) and a.visibility is Visibility.VISIBLE
    ]
    indoor.sort(key=lambda a: a.id)
    virtual.sort(key=lambda a: a.id)
    return indoor, virtual


def _eligible_edges(
    indoor: List[Activity], virtual: List[Activity], window: timedelta
) -> List[_Edge]:
    edges: List[_Edge] = []
    for ride in indoor:
        for twin in virtual:
            delta = abs(ride.start_time - twin.start_time)
            if delta <= window:
                edges.append((delta, ride.id, twin.id))
    edges.sort()
    return edges


def match(
    activities: Iterable[Activity],
    *,
    window: timedelta = timedelta(seconds=MATCH_WINDOW_SECONDS),
    epsilon: float = ZERO_DISTANCE_EPSILON,
) -> List[CandidatePair]:
    """Return one :class:`CandidatePair` per indoor ride with a virtual twin.

    Pairs are ordered by ascending time delta (then indoor id). Unmatched
    indoor rides produce nothing.
    """

    indoor, virtual = partition(activities, epsilon=epsilon)
    if not indoor or not virtual:
        return []

    used_indoor: set[int] = set()
    used_virtual: set[int] = set()
    pairs: List[CandidatePair] = []
    for delta, indoor_id, virtual_id in _eligible_edges(indoor, virtual, window):
        if indoor_id in used_indoor or virtual_id in used_virtual:
            continue
        used_indoor.add(indoor_id)
        used_virtual.add(virtual_id)
        pairs.append(
            CandidatePair(
                indoor_activity_id=indoor_id,
                virtual_activity_id=virtual_id,
                time_delta=delta,
            )
        )
    return pairs

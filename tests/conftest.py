"""Global pytest fixtures & helpers.

Adds project root to path and provides activity factories plus in-memory
fakes for the resolver's collaborators.
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from strava_bot.models import Activity, ActivityType, Visibility


T0 = datetime(2025, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


# --- Factory helpers -------------------------------------------------
def indoor(activity_id, offset=timedelta(0), distance=0.0, hidden=False):
    return Activity(
        id=activity_id,
        type=ActivityType.RIDE,
        distance=distance,
        start_time=T0 + offset,
        visibility=Visibility.HIDDEN if hidden else Visibility.VISIBLE,
        name="Indoor Cycling",
    )


def virtual(activity_id, offset=timedelta(0), distance=25000.0, hidden=False):
    return Activity(
        id=activity_id,
        type=ActivityType.VIRTUAL_RIDE,
        distance=distance,
        start_time=T0 + offset,
        visibility=Visibility.HIDDEN if hidden else Visibility.VISIBLE,
        name="Zwift - Watopia",
    )


class FakeCredentials:
    def __init__(self, error=None):
        self.ensure_calls = 0
        self.invalidations = 0
        self.error = error

    def ensure_valid(self, now=None):
        self.ensure_calls += 1
        if self.error is not None:
            raise self.error
        return "token"

    def invalidate(self):
        self.invalidations += 1


class FakeSource:
    def __init__(self, activities=None):
        self.activities = list(activities or [])
        self.windows = []
        self.errors = []  # raised (in order) before returning activities

    def fetch_recent(self, window):
        self.windows.append(window)
        if self.errors:
            raise self.errors.pop(0)
        return list(self.activities)


class FakeHider:
    def __init__(self):
        self.calls = []
        self.errors = {}  # activity_id -> list of exceptions raised in order

    def hide(self, activity_id):
        self.calls.append(activity_id)
        pending = self.errors.get(activity_id)
        if pending:
            raise pending.pop(0)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def credentials():
    return FakeCredentials()


@pytest.fixture
def hider():
    return FakeHider()

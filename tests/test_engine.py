import threading
from datetime import timedelta

import pytest

from conftest import T0, FakeCredentials, FakeHider, FakeSource, indoor, virtual
from strava_bot.engine import DuplicateResolver
from strava_bot.errors import (
    AuthError,
    StravaPermissionError,
    StravaResourceNotFoundError,
    TransientError,
)
from strava_bot.models import (
    Activity,
    ActivityType,
    CandidatePair,
    CycleState,
    Outcome,
    TimeRange,
)
from strava_bot.processed_cache import ProcessedPairCache

NOW = T0 + timedelta(minutes=15)


@pytest.fixture
def cache():
    return ProcessedPairCache(clock=lambda: NOW)


def _resolver(credentials, source, hider, cache, **kwargs):
    kwargs.setdefault("unmatched_settle", None)
    kwargs.setdefault("hide_enabled", True)
    return DuplicateResolver(credentials, source, hider, cache, clock=lambda: NOW, **kwargs)


def test_pair_is_hidden_and_recorded(credentials, hider, cache):
    source = FakeSource([indoor(101), virtual(201, timedelta(minutes=2))])
    result = _resolver(credentials, source, hider, cache).run_cycle()

    assert result.ok
    assert result.state is CycleState.IDLE
    assert result.pairs == [CandidatePair(101, 201, timedelta(seconds=120))]
    assert result.hidden == [101]
    assert hider.calls == [101]
    assert cache.is_processed(101)
    assert cache.get(101).virtual_activity_id == 201


def test_fetch_window_ends_at_cycle_time(credentials, hider, cache):
    source = FakeSource([])
    _resolver(credentials, source, hider, cache, lookback=timedelta(hours=48)).run_cycle(NOW)
    assert source.windows == [TimeRange(NOW - timedelta(hours=48), NOW)]


def test_next_cycle_does_not_rehide_processed_activity(credentials, hider, cache):
    source = FakeSource([indoor(101), virtual(201, timedelta(minutes=2))])
    resolver = _resolver(credentials, source, hider, cache)
    resolver.run_cycle(NOW)

    # B2 starts 1h5m after B1: outside the window regardless.
    source.activities.append(virtual(202, timedelta(hours=1, minutes=7)))
    result = resolver.run_cycle(NOW + timedelta(minutes=15))

    assert hider.calls == [101]
    assert result.hidden == []
    assert all(p.virtual_activity_id != 202 for p in result.pairs)


@pytest.mark.parametrize("now_hidden", [True, False])
def test_processed_activity_ignores_new_in_window_virtual(credentials, hider, cache, now_hidden):
    source = FakeSource([indoor(101), virtual(201, timedelta(minutes=2))])
    resolver = _resolver(credentials, source, hider, cache)
    resolver.run_cycle(NOW)

    # A closer virtual ride appears next to the already processed indoor ride.
    source.activities = [
        indoor(101, hidden=now_hidden),
        virtual(201, timedelta(minutes=2)),
        virtual(203, timedelta(minutes=1)),
    ]
    result = resolver.run_cycle(NOW + timedelta(minutes=15))

    assert [p.virtual_activity_id for p in result.pairs] == [203]
    assert hider.calls == [101]
    assert result.hidden == [] and result.already_hidden == []


def test_overlapping_windows_hide_each_activity_once(credentials, hider, cache):
    activities = [
        indoor(1),
        virtual(11, timedelta(minutes=1)),
        indoor(2, timedelta(hours=3)),
        virtual(12, timedelta(hours=3, minutes=4)),
        indoor(3, timedelta(hours=6)),
        virtual(13, timedelta(hours=6, minutes=-2)),
    ]
    source = FakeSource(activities[:4])
    resolver = _resolver(credentials, source, hider, cache)
    resolver.run_cycle(NOW)
    source.activities = activities[2:]
    resolver.run_cycle(NOW + timedelta(minutes=15))
    source.activities = activities
    resolver.run_cycle(NOW + timedelta(minutes=30))

    assert sorted(hider.calls) == [1, 2, 3]


def test_null_distance_is_never_hidden(credentials, hider, cache):
    ride = Activity(id=101, type=ActivityType.RIDE, distance=None, start_time=T0)
    result = _resolver(credentials, FakeSource([ride, virtual(201)]), hider, cache).run_cycle()
    assert result.pairs == [] and hider.calls == []


def test_not_found_records_error_without_retry(credentials, hider, cache):
    hider.errors[101] = [StravaResourceNotFoundError("hide activity=101 not found")]
    source = FakeSource([indoor(101), virtual(201)])
    resolver = _resolver(credentials, source, hider, cache)

    result = resolver.run_cycle()
    assert result.errors == [101]
    assert cache.get(101).outcome is Outcome.ERROR
    assert cache.is_processed(101)

    resolver.run_cycle(NOW + timedelta(minutes=15))
    assert hider.calls == [101]


def test_permission_denied_records_error(credentials, hider, cache):
    hider.errors[101] = [StravaPermissionError("forbidden")]
    result = _resolver(credentials, FakeSource([indoor(101), virtual(201)]), hider, cache).run_cycle()
    assert result.errors == [101]
    assert cache.get(101).detail.startswith("StravaPermissionError")


def test_transient_hide_failure_is_retried_next_cycle(credentials, hider, cache):
    hider.errors[101] = [TransientError("still 503")]
    source = FakeSource([indoor(101), virtual(201)])
    resolver = _resolver(credentials, source, hider, cache)

    first = resolver.run_cycle()
    assert first.hidden == [] and first.errors == []
    assert not cache.is_processed(101)

    second = resolver.run_cycle(NOW + timedelta(minutes=15))
    assert second.hidden == [101]
    assert hider.calls == [101, 101]


def test_already_hidden_indoor_is_recorded_without_mutation(credentials, hider, cache):
    result = _resolver(
        credentials, FakeSource([indoor(101, hidden=True), virtual(201)]), hider, cache
    ).run_cycle()
    assert hider.calls == []
    assert result.already_hidden == [101]
    assert result.skipped == [] and result.hidden == []
    assert cache.get(101).outcome is Outcome.HIDDEN


def test_fetch_auth_error_refreshes_and_retries_once(credentials, hider, cache):
    source = FakeSource([indoor(101), virtual(201)])
    source.errors = [AuthError("activities unauthorized")]
    result = _resolver(credentials, source, hider, cache).run_cycle()
    assert result.ok
    assert credentials.invalidations == 1
    assert len(source.windows) == 2
    assert hider.calls == [101]


def test_repeated_fetch_auth_error_fails_cycle_without_raising(credentials, hider, cache):
    source = FakeSource([indoor(101), virtual(201)])
    source.errors = [AuthError("401"), AuthError("401")]
    result = _resolver(credentials, source, hider, cache).run_cycle()
    assert result.failure.startswith("AuthError")
    assert result.state is CycleState.IDLE
    assert hider.calls == []


def test_credential_failure_skips_fetch(hider, cache):
    credentials = FakeCredentials(error=AuthError("Token refresh failed with status 400"))
    source = FakeSource([indoor(101), virtual(201)])
    result = _resolver(credentials, source, hider, cache).run_cycle()
    assert not result.ok
    assert source.windows == []


def test_transient_fetch_failure_fails_cycle(credentials, hider, cache):
    source = FakeSource([indoor(101), virtual(201)])
    source.errors = [TransientError("activities page=1 still failing")]
    resolver = _resolver(credentials, source, hider, cache)
    assert resolver.run_cycle().failure.startswith("TransientError")
    assert resolver.run_cycle(NOW + timedelta(minutes=15)).hidden == [101]


def test_hide_auth_error_refreshes_and_retries(credentials, hider, cache):
    hider.errors[101] = [AuthError("401")]
    result = _resolver(credentials, FakeSource([indoor(101), virtual(201)]), hider, cache).run_cycle()
    assert result.hidden == [101]
    assert hider.calls == [101, 101]
    assert credentials.invalidations == 1


def test_repeated_hide_auth_error_releases_claims(credentials, hider, cache):
    hider.errors[101] = [AuthError("401"), AuthError("401")]
    source = FakeSource([indoor(101), virtual(201), indoor(102, timedelta(hours=3)), virtual(202, timedelta(hours=3))])
    result = _resolver(credentials, source, hider, cache).run_cycle()
    assert not result.ok
    assert not cache.is_processed(101)
    assert not cache.is_processed(102)


def test_stop_event_prevents_fetch(credentials, hider, cache):
    source = FakeSource([indoor(101), virtual(201)])
    resolver = _resolver(credentials, source, hider, cache)
    resolver.stop_event.set()
    result = resolver.run_cycle()
    assert result.ok
    assert source.windows == []
    assert credentials.ensure_calls == 0


def test_stop_during_hiding_leaves_remaining_pairs_unclaimed(credentials, cache):
    stop = threading.Event()

    class StoppingHider(FakeHider):
        def hide(self, activity_id):
            super().hide(activity_id)
            stop.set()

    hider = StoppingHider()
    source = FakeSource([indoor(101), virtual(201, timedelta(minutes=1)), indoor(102, timedelta(hours=3)), virtual(202, timedelta(hours=3, minutes=2))])
    result = _resolver(credentials, source, hider, cache, stop_event=stop).run_cycle()
    assert hider.calls == [101]
    assert result.hidden == [101]
    assert not cache.is_processed(102)


def test_dry_run_does_not_hide_or_record(credentials, hider, cache):
    result = _resolver(
        credentials, FakeSource([indoor(101), virtual(201)]), hider, cache, hide_enabled=False
    ).run_cycle()
    assert hider.calls == []
    assert result.hidden == []
    assert not cache.is_processed(101)


def test_settled_unmatched_indoor_is_recorded_as_skipped(credentials, hider, cache):
    source = FakeSource([indoor(101), indoor(102, timedelta(hours=20))])
    resolver = _resolver(credentials, source, hider, cache, unmatched_settle=timedelta(hours=24))
    result = resolver.run_cycle(T0 + timedelta(hours=25))
    assert result.skipped == [101]
    assert cache.get(101).outcome is Outcome.SKIPPED_NO_MATCH
    assert 102 not in cache


def test_overlapping_cycles_issue_a_single_hide(credentials, cache):
    entered = threading.Event()
    release = threading.Event()

    class BlockingHider(FakeHider):
        def hide(self, activity_id):
            super().hide(activity_id)
            entered.set()
            release.wait(2)

    hider = BlockingHider()
    source = FakeSource([indoor(101), virtual(201)])
    resolver = _resolver(credentials, source, hider, cache)

    first = threading.Thread(target=resolver.run_cycle)
    first.start()
    assert entered.wait(2)
    overlapping = resolver.run_cycle(NOW + timedelta(minutes=15))
    release.set()
    first.join(timeout=2)

    assert hider.calls == [101]
    assert overlapping.hidden == []
    assert cache.get(101).outcome is Outcome.HIDDEN

"""One duplicate-resolution cycle: authenticate, fetch, match, filter, hide.

The resolver holds no state of its own between cycles. Everything that must
survive lives in the credential store and the processed-pair cache, both of
which serialise their own mutations so an overrunning cycle and the next tick
can safely run side by side.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .config import (
    ACTIVITY_LOOKBACK_HOURS,
    HIDE_ENABLED,
    MATCH_WINDOW_SECONDS,
    UNMATCHED_SETTLE_HOURS,
    ZERO_DISTANCE_EPSILON,
)
from .errors import (
    AuthError,
    StravaAPIError,
    StravaPermissionError,
    StravaResourceNotFoundError,
    TransientError,
)
from .matcher import match, partition
from .models import (
    Activity,
    CandidatePair,
    CycleResult,
    CycleState,
    Outcome,
    TimeRange,
    Visibility,
)
from .processed_cache import ProcessedPairCache
from .utils import to_utc_aware, utc_now

LOGGER = logging.getLogger(__name__)


class Credentials(Protocol):
    def ensure_valid(self, now: Optional[float] = None) -> str: ...

    def invalidate(self) -> None: ...


class ActivitySource(Protocol):
    def fetch_recent(self, window: TimeRange) -> List[Activity]: ...


class Hider(Protocol):
    def hide(self, activity_id: int) -> None: ...


class DuplicateResolver:
    def __init__(
        self,
        credentials: Credentials,
        source: ActivitySource,
        hider: Hider,
        cache: ProcessedPairCache,
        *,
        lookback: timedelta = timedelta(hours=ACTIVITY_LOOKBACK_HOURS),
        match_window: timedelta = timedelta(seconds=MATCH_WINDOW_SECONDS),
        epsilon: float = ZERO_DISTANCE_EPSILON,
        unmatched_settle: timedelta | None = timedelta(hours=UNMATCHED_SETTLE_HOURS),
        hide_enabled: bool = HIDE_ENABLED,
        stop_event: threading.Event | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._credentials = credentials
        self._source = source
        self._hider = hider
        self._cache = cache
        self._lookback = lookback
        self._match_window = match_window
        self._epsilon = epsilon
        self._unmatched_settle = (
            unmatched_settle
            if unmatched_settle and unmatched_settle > timedelta(0)
            else None
        )
        self._hide_enabled = hide_enabled
        self._stop_event = stop_event or threading.Event()
        self._clock = clock

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def run_cycle(self, now: datetime | None = None) -> CycleResult:
        """Run one cycle to completion; never raises for API failures."""

        current = to_utc_aware(now) if now is not None else self._clock()
        result = CycleResult(started_at=current)
        try:
            self._run(current, result)
        except (AuthError, TransientError, StravaAPIError) as exc:
            result.failure = f"{exc.__class__.__name__}: {exc}"
            LOGGER.error("Cycle aborted during %s: %s", result.state.value, result.failure)
        finally:
            result.state = CycleState.IDLE

        if result.hidden:
            LOGGER.info(
                "Hidden %s duplicate indoor bike activities", len(result.hidden)
            )
        LOGGER.info(
            "Cycle finished fetched=%s pairs=%s hidden=%s already_hidden=%s skipped=%s errors=%s ok=%s",
            result.fetched,
            len(result.pairs),
            len(result.hidden),
            len(result.already_hidden),
            len(result.skipped),
            len(result.errors),
            result.ok,
        )
        return result

    def _enter(self, result: CycleResult, state: CycleState) -> None:
        LOGGER.debug("Cycle state %s -> %s", result.state.value, state.value)
        result.state = state

    def _run(self, now: datetime, result: CycleResult) -> None:
        if self._stop_event.is_set():
            LOGGER.info("Shutdown requested; skipping cycle")
            return

        self._enter(result, CycleState.AUTHENTICATING)
        self._credentials.ensure_valid(now.timestamp())

        if self._stop_event.is_set():
            LOGGER.info("Shutdown requested; not starting activity fetch")
            return
        self._enter(result, CycleState.FETCHING)
        activities = self._fetch(TimeRange.ending_at(now, self._lookback), now)
        result.fetched = len(activities)

        self._enter(result, CycleState.MATCHING)
        pairs = match(activities, window=self._match_window, epsilon=self._epsilon)
        result.pairs = pairs

        self._enter(result, CycleState.FILTERING)
        self._cache.prune(now)
        claimed = [p for p in pairs if self._cache.try_claim(p.indoor_activity_id, now)]
        LOGGER.info(
            "Matched %s pairs, %s not yet processed", len(pairs), len(claimed)
        )
        self._record_settled_unmatched(activities, pairs, now, result)

        self._enter(result, CycleState.HIDING)
        by_id: Dict[int, Activity] = {a.id: a for a in activities}
        self._hide_pairs(claimed, by_id, now, result)

    def _fetch(self, window: TimeRange, now: datetime) -> List[Activity]:
        try:
            return self._source.fetch_recent(window)
        except AuthError:
            LOGGER.info("Activity fetch unauthorized; refreshing token and retrying once")
            self._credentials.invalidate()
            self._credentials.ensure_valid(now.timestamp())
            return self._source.fetch_recent(window)

    def _record_settled_unmatched(
        self,
        activities: Sequence[Activity],
        pairs: Sequence[CandidatePair],
        now: datetime,
        result: CycleResult,
    ) -> None:
        if self._unmatched_settle is None:
            return
        paired = {p.indoor_activity_id for p in pairs}
        indoor, _ = partition(activities, epsilon=self._epsilon)
        for ride in indoor:
            if ride.id in paired or now - ride.start_time < self._unmatched_settle:
                continue
            if not self._cache.try_claim(ride.id, now):
                continue
            self._cache.record(ride.id, Outcome.SKIPPED_NO_MATCH, now=now)
            result.skipped.append(ride.id)

    def _hide_pairs(
        self,
        claimed: List[CandidatePair],
        by_id: Dict[int, Activity],
        now: datetime,
        result: CycleResult,
    ) -> None:
        remaining = list(claimed)
        try:
            while remaining:
                if self._stop_event.is_set():
                    LOGGER.info(
                        "Shutdown requested; leaving %s pairs for the next run",
                        len(remaining),
                    )
                    return
                pair = remaining[0]
                self._resolve_pair(pair, by_id[pair.indoor_activity_id], now, result)
                remaining.pop(0)
        finally:
            for pair in remaining:
                self._cache.release(pair.indoor_activity_id)

    def _resolve_pair(
        self,
        pair: CandidatePair,
        indoor: Activity,
        now: datetime,
        result: CycleResult,
    ) -> None:
        indoor_id = pair.indoor_activity_id
        if indoor.visibility is Visibility.HIDDEN:
            self._cache.record(
                indoor_id,
                Outcome.HIDDEN,
                virtual_id=pair.virtual_activity_id,
                detail="already hidden",
                now=now,
            )
            result.already_hidden.append(indoor_id)
            return
        if not self._hide_enabled:
            LOGGER.info(
                "Would hide activity %s (duplicate of %s, delta=%ss)",
                indoor_id,
                pair.virtual_activity_id,
                int(pair.time_delta.total_seconds()),
            )
            self._cache.release(indoor_id)
            return

        try:
            self._hide_with_reauth(indoor_id, now)
        except (StravaResourceNotFoundError, StravaPermissionError) as exc:
            self._record_error(pair, exc, now, result)
            return
        except TransientError as exc:
            # Not recorded: the claim is released and the next tick tries again.
            LOGGER.warning("Hide of activity %s deferred: %s", indoor_id, exc)
            self._cache.release(indoor_id)
            return
        except AuthError:
            raise
        except StravaAPIError as exc:
            self._record_error(pair, exc, now, result)
            return
        self._cache.record(
            indoor_id,
            Outcome.HIDDEN,
            virtual_id=pair.virtual_activity_id,
            now=now,
        )
        result.hidden.append(indoor_id)

    def _hide_with_reauth(self, activity_id: int, now: datetime) -> None:
        try:
            self._hider.hide(activity_id)
        except AuthError:
            LOGGER.info("Hide unauthorized; refreshing token and retrying once")
            self._credentials.invalidate()
            self._credentials.ensure_valid(now.timestamp())
            self._hider.hide(activity_id)

    def _record_error(
        self,
        pair: CandidatePair,
        exc: StravaAPIError,
        now: datetime,
        result: CycleResult,
    ) -> None:
        LOGGER.warning(
            "Hide of activity %s failed permanently: %s",
            pair.indoor_activity_id,
            exc,
        )
        self._cache.record(
            pair.indoor_activity_id,
            Outcome.ERROR,
            virtual_id=pair.virtual_activity_id,
            detail=f"{exc.__class__.__name__}: {exc}",
            now=now,
        )
        result.errors.append(pair.indoor_activity_id)

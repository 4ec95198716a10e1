"""Processed-pair cache: remembers every hide decision across cycles.

Consecutive cycles fetch overlapping windows, so the same indoor ride is
matched again and again. The cache is keyed by indoor activity id and is the
single guard that keeps the bot at one hide call per activity.

Entries persist as JSON (``{"version": 1, "entries": {...}}``) with string
keys restored to ``int`` on load. ``try_claim`` gives overlapping cycles a
compare-and-set so only one of them can act on a given id.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Set

from .models import Outcome, ProcessedRecord
from .utils import parse_iso_datetime, read_json_file, utc_now, write_json_atomic

LOGGER = logging.getLogger(__name__)

FORMAT_VERSION = 1


def _record_to_json(record: ProcessedRecord) -> Dict[str, Any]:
    return {
        "outcome": record.outcome.value,
        "recorded_at": record.recorded_at.isoformat(),
        "virtual_id": record.virtual_activity_id,
        "detail": record.detail,
    }


def _record_from_json(key: str, value: Mapping[str, Any]) -> Optional[ProcessedRecord]:
    try:
        indoor_id = int(key)
        outcome = Outcome(value.get("outcome"))
    except (TypeError, ValueError):
        return None
    recorded_at = parse_iso_datetime(value.get("recorded_at"))
    if recorded_at is None:
        return None
    virtual_id = value.get("virtual_id")
    try:
        virtual_id = int(virtual_id) if virtual_id is not None else None
    except (TypeError, ValueError):
        virtual_id = None
    detail = value.get("detail")
    return ProcessedRecord(
        indoor_activity_id=indoor_id,
        outcome=outcome,
        recorded_at=recorded_at,
        virtual_activity_id=virtual_id,
        detail=str(detail) if detail is not None else None,
    )


class ProcessedPairCache:
    def __init__(
        self,
        path: Path | str | None = None,
        *,
        retention: timedelta | None = None,
        error_retry_after: timedelta | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._retention = retention if retention and retention > timedelta(0) else None
        self._error_retry_after = (
            error_retry_after
            if error_retry_after and error_retry_after > timedelta(0)
            else None
        )
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: Dict[int, ProcessedRecord] = {}
        self._claimed: Set[int] = set()
        self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, indoor_id: object) -> bool:
        with self._lock:
            return indoor_id in self._entries

    def get(self, indoor_id: int) -> Optional[ProcessedRecord]:
        with self._lock:
            return self._entries.get(indoor_id)

    def is_processed(self, indoor_id: int, now: datetime | None = None) -> bool:
        """Return ``True`` when ``indoor_id`` needs no further action.

        An ``error`` entry stops counting as processed once it is older than
        ``error_retry_after`` (never, when that is unset). Ids claimed by an
        in-flight cycle count as processed.
        """

        with self._lock:
            if indoor_id in self._claimed:
                return True
            record = self._entries.get(indoor_id)
            if record is None:
                return False
            if record.outcome is not Outcome.ERROR or self._error_retry_after is None:
                return True
            current = now or self._clock()
            return current - record.recorded_at < self._error_retry_after

    def try_claim(self, indoor_id: int, now: datetime | None = None) -> bool:
        """Atomically reserve ``indoor_id`` for this caller's decision."""

        with self._lock:
            if self.is_processed(indoor_id, now):
                return False
            self._claimed.add(indoor_id)
            return True

    def release(self, indoor_id: int) -> None:
        """Drop a claim without recording a decision."""

        with self._lock:
            self._claimed.discard(indoor_id)

    def record(
        self,
        indoor_id: int,
        outcome: Outcome,
        *,
        virtual_id: int | None = None,
        detail: str | None = None,
        now: datetime | None = None,
    ) -> ProcessedRecord:
        """Store the decision for ``indoor_id`` and release any claim on it.

        A ``hidden`` entry is final: later records for the same id are ignored
        and the existing entry is returned.
        """

        with self._lock:
            self._claimed.discard(indoor_id)
            existing = self._entries.get(indoor_id)
            if existing is not None and existing.outcome is Outcome.HIDDEN:
                LOGGER.warning(
                    "Ignoring %s for activity %s; already recorded as hidden",
                    outcome.value,
                    indoor_id,
                )
                return existing
            record = ProcessedRecord(
                indoor_activity_id=indoor_id,
                outcome=outcome,
                recorded_at=now or self._clock(),
                virtual_activity_id=virtual_id,
                detail=detail,
            )
            self._entries[indoor_id] = record
            self._save()
            return record

    def prune(self, now: datetime | None = None) -> int:
        """Remove entries older than the retention period; return the count."""

        if self._retention is None:
            return 0
        with self._lock:
            cutoff = (now or self._clock()) - self._retention
            stale = [
                key
                for key, record in self._entries.items()
                if record.recorded_at < cutoff
            ]
            for key in stale:
                del self._entries[key]
            if stale:
                LOGGER.info("Pruned %s processed entries older than %s", len(stale), cutoff)
                self._save()
            return len(stale)

    def _load(self) -> None:
        if self._path is None:
            return
        try:
            data = read_json_file(self._path)
        except (OSError, ValueError) as exc:
            LOGGER.error("Unreadable processed cache %s: %s; starting empty", self._path, exc)
            return
        if data is None:
            return
        entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            LOGGER.error("Processed cache %s has unexpected shape; starting empty", self._path)
            return
        for key, value in entries.items():
            record = _record_from_json(key, value) if isinstance(value, dict) else None
            if record is None:
                LOGGER.warning("Dropping malformed processed entry %r", key)
                continue
            self._entries[record.indoor_activity_id] = record
        LOGGER.info("Loaded %s processed entries from %s", len(self._entries), self._path)

    def _save(self) -> None:
        if self._path is None:
            return
        payload = {
            "version": FORMAT_VERSION,
            "entries": {
                str(key): _record_to_json(record)
                for key, record in sorted(self._entries.items())
            },
        }
        try:
            write_json_atomic(self._path, payload)
        except OSError as exc:
            LOGGER.error("Failed to persist processed cache %s: %s", self._path, exc)

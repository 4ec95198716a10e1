"""General utility helpers shared across modules."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_aware(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """Parse Strava ISO-8601 timestamps (``Z`` suffix allowed) into UTC."""

    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_utc_aware(parsed)


def read_json_file(path: Path) -> Any:
    """Return decoded JSON from ``path`` or ``None`` when the file is missing."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        return None


def write_json_atomic(path: Path, payload: Any, mode: Optional[int] = None) -> None:
    """Write ``payload`` next to ``path`` then swap it into place.

    When ``mode`` is given the temporary file is created with those
    permission bits.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    if mode is None:
        handle = temp_path.open("w", encoding="utf-8")
    else:
        if temp_path.exists():
            temp_path.unlink()
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        handle = os.fdopen(fd, "w", encoding="utf-8")
    with handle:
        json.dump(payload, handle, ensure_ascii=True, indent=2, sort_keys=True)
    temp_path.replace(path)

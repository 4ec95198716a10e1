"""Activity source: lists the athlete's recent activities as typed records."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..activity_types import classify_activity_type
from ..config import ACTIVITY_MAX_PAGES, ACTIVITY_PAGE_SIZE, STRAVA_BASE_URL
from ..models import Activity, TimeRange, Visibility
from ..utils import parse_iso_datetime
from .pagination import fetch_all_pages
from .resources import ResourceAPI

LOGGER = logging.getLogger(__name__)

TokenProvider = Callable[[], str]


def _coerce_distance(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        distance = float(value)
    except (TypeError, ValueError):
        return None
    if distance != distance or distance < 0:  # NaN or negative
        return None
    return distance


def parse_activity(payload: Mapping[str, Any]) -> Optional[Activity]:
    """Build an :class:`Activity` from a Strava summary, or ``None`` if unusable."""

    raw_id = payload.get("id")
    if isinstance(raw_id, bool):
        return None
    try:
        activity_id = int(raw_id)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    start_time = parse_iso_datetime(payload.get("start_date"))
    if start_time is None:
        return None
    hidden = bool(payload.get("hide_from_home"))
    return Activity(
        id=activity_id,
        type=classify_activity_type(payload),
        distance=_coerce_distance(payload.get("distance")),
        start_time=start_time,
        visibility=Visibility.HIDDEN if hidden else Visibility.VISIBLE,
        name=str(payload.get("name") or ""),
    )


class ActivitiesAPI:
    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        resources: ResourceAPI | None = None,
        base_url: str = STRAVA_BASE_URL,
        page_size: int = ACTIVITY_PAGE_SIZE,
        max_pages: Optional[int] = ACTIVITY_MAX_PAGES,
    ) -> None:
        self._token_provider = token_provider
        self._resources = resources or ResourceAPI()
        self._url = f"{base_url.rstrip('/')}/athlete/activities"
        self._page_size = max(1, min(page_size, 200))
        self._max_pages = max_pages if max_pages and max_pages > 0 else None

    def fetch_recent(self, window: TimeRange) -> List[Activity]:
        """Return every activity Strava lists for ``window``, in server order.

        Hidden activities are kept; callers decide what visibility means.

        Raises:
            AuthError: When Strava rejects the access token.
            TransientError: When a page cannot be fetched within the retry policy.
        """
        base_params: Dict[str, Any] = {
            "after": int(window.start.timestamp()),
            "before": int(window.end.timestamp()),
        }
        LOGGER.info(
            "Getting activities after=%s before=%s per_page=%s",
            window.start.isoformat(),
            window.end.isoformat(),
            self._page_size,
        )
        raw = fetch_all_pages(
            self._resources,
            url=self._url,
            token=self._token_provider(),
            base_params=base_params,
            page_size=self._page_size,
            context_label="activities",
            max_pages=self._max_pages,
        )
        activities: List[Activity] = []
        for payload in raw:
            activity = parse_activity(payload)
            if activity is None:
                LOGGER.debug("Skipping unparseable activity payload id=%s", payload.get("id"))
                continue
            activities.append(activity)
        LOGGER.info("Retrieved %s activities", len(activities))
        return activities

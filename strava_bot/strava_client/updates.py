"""Activity mutations: hiding a duplicate from the home feed."""

from __future__ import annotations

import logging
from typing import Callable

from ..config import STRAVA_BASE_URL
from .resources import ResourceAPI

LOGGER = logging.getLogger(__name__)

HIDE_PAYLOAD = {"hide_from_home": True}


class ActivityHider:
    """Issues ``PUT /activities/{id}`` with ``hide_from_home=true``.

    The call is idempotent on Strava's side, so a retry after an ambiguous
    network failure is safe.
    """

    def __init__(
        self,
        token_provider: Callable[[], str],
        *,
        resources: ResourceAPI | None = None,
        base_url: str = STRAVA_BASE_URL,
    ) -> None:
        self._token_provider = token_provider
        self._resources = resources or ResourceAPI()
        self._base_url = base_url.rstrip("/")

    def hide(self, activity_id: int) -> None:
        """Hide ``activity_id``.

        Raises:
            AuthError: When Strava rejects the access token.
            StravaResourceNotFoundError: When the activity no longer exists.
            StravaPermissionError: When the token lacks write access.
            TransientError: When retries are exhausted.
        """
        url = f"{self._base_url}/activities/{activity_id}"
        LOGGER.info("Hiding activity %s from home feed", activity_id)
        self._resources.request_json(
            "PUT",
            url,
            self._token_provider(),
            f"hide activity={activity_id}",
            json=dict(HIDE_PAYLOAD),
        )
        LOGGER.info("Update successful for activity %s", activity_id)

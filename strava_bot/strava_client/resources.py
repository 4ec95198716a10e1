"""Generic JSON request helper with bounded retry and rate limiting."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from ..config import REQUEST_TIMEOUT
from ..errors import TransientError
from .rate_limiter import RateLimiter
from .response_handling import classify_response_status
from .retry import RetryPolicy
from .session import create_default_session

LOGGER = logging.getLogger(__name__)


class ResourceAPI:
    """Sends authenticated Strava requests, retrying transient failures."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        limiter: RateLimiter | None = None,
        policy: RetryPolicy | None = None,
        timeout: int = REQUEST_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session or create_default_session()
        self._limiter = limiter or RateLimiter()
        self._policy = policy or RetryPolicy()
        self._timeout = timeout
        self._sleep = sleep

    def request_json(
        self,
        method: str,
        url: str,
        token: str,
        context: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Return the decoded JSON body of a successful response.

        A non-GET success whose body is not JSON (e.g. 204) returns ``None``;
        only GETs retry an undecodable body.

        Raises:
            AuthError: On HTTP 401.
            StravaPermissionError: On HTTP 403.
            StravaResourceNotFoundError: On HTTP 404.
            TransientError: When network errors, 429 or 5xx outlast the policy.
            StravaAPIError: On any other 4xx.
        """
        attempt = 0
        headers = {"Authorization": f"Bearer {token}"}
        while True:
            attempt += 1
            can_retry = self._policy.can_retry(attempt)
            backoff = self._policy.delay_for(attempt)
            self._limiter.before_request()
            try:
                response = self._session.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json,
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                self._limiter.after_response(None, None)
                if can_retry:
                    LOGGER.warning(
                        "%s network error attempt=%s err=%s; retrying in %.1fs",
                        context,
                        attempt,
                        exc.__class__.__name__,
                        backoff,
                    )
                    self._sleep(backoff)
                    continue
                message = f"{context} network error after {attempt} attempts: {exc.__class__.__name__}"
                LOGGER.error(message)
                raise TransientError(message) from exc
            self._limiter.after_response(response.headers, response.status_code)

            action, error = classify_response_status(
                response,
                context,
                attempt=attempt,
                can_retry=can_retry,
            )
            if action == "retry":
                self._sleep(backoff)
                continue
            if action == "raise" and error is not None:
                raise error

            try:
                return response.json()
            except ValueError as exc:
                if method.upper() != "GET":
                    LOGGER.debug(
                        "%s succeeded (status %s) without a JSON body",
                        context,
                        response.status_code,
                    )
                    return None
                if can_retry:
                    LOGGER.warning(
                        "Non-JSON response for %s attempt=%s; retrying in %.1fs",
                        context,
                        attempt,
                        backoff,
                    )
                    self._sleep(backoff)
                    continue
                message = f"{context} returned non-JSON payload"
                LOGGER.error(message)
                raise TransientError(message) from exc

"""OAuth token refresh for the Strava API.

Exchanges the long-lived refresh token for a short-lived access token. Adds
resiliency (HTTP retries on 429/5xx), safe logging that never leaks secrets,
and defensive JSON parsing. Strava may rotate the refresh token on every
exchange, so callers must persist ``TokenGrant.refresh_token``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import REQUEST_TIMEOUT, STRAVA_OAUTH_URL
from .errors import AuthError
from .strava_client.response_handling import extract_error

LOGGER = logging.getLogger(__name__)

# Reusable session with limited retry for transient network/server issues.
_token_retry = Retry(
    total=3,
    backoff_factor=1.0,
    status_forcelist=[429, 500, 502, 503, 504],
    allowed_methods=["POST"],
    raise_on_status=False,
)
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_token_retry))
_session.mount("http://", HTTPAdapter(max_retries=_token_retry))


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str
    expires_at: int

    def __repr__(self) -> str:
        return f"TokenGrant(expires_at={self.expires_at})"


def mask_tail(value: str | None, visible: int = 4) -> str:
    if not value:
        return ""
    tail = value[-visible:]
    return f"****{tail}" if len(value) > visible else "****" + tail


def _expires_at(data: Dict[str, Any], now: float) -> int:
    raw = data.get("expires_at")
    try:
        if raw is not None:
            return int(raw)
    except (TypeError, ValueError):
        pass
    try:
        return int(now + int(data.get("expires_in") or 0))
    except (TypeError, ValueError):
        return int(now)


def exchange_refresh_token(
    refresh_token: str,
    *,
    client_id: str,
    client_secret: str,
    now: Optional[float] = None,
) -> TokenGrant:
    """Exchange a refresh token for a new access (and possibly new refresh) token.

    Args:
        refresh_token: The current Strava refresh token.
        client_id: Strava application client id.
        client_secret: Strava application client secret.
        now: Epoch seconds used when the response only carries ``expires_in``.

    Returns:
        A :class:`TokenGrant`. ``refresh_token`` falls back to the token that was
        sent when Strava does not rotate it.

    Raises:
        AuthError: If the endpoint is unreachable after retries, rejects the
            token, or returns an unusable payload.
    """
    if not client_id or not client_secret:
        raise AuthError("Client credentials not configured")
    if not refresh_token:
        raise AuthError("Missing refresh token")

    payload = {
        "client_id": client_id,
        "client_secret": client_secret,
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    }
    LOGGER.info("Refreshing Strava token refresh_token=%s", mask_tail(refresh_token))
    LOGGER.debug("Token endpoint: %s", STRAVA_OAUTH_URL)

    try:
        resp = _session.post(STRAVA_OAUTH_URL, data=payload, timeout=REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as e:  # Network / connection / timeout
        LOGGER.error("Token request transport error: %s", e)
        raise AuthError("Transport failure during token refresh") from e

    status = resp.status_code
    LOGGER.debug("Token endpoint status=%s", status)
    if status >= 400:
        detail = extract_error(resp)
        LOGGER.error(
            "Token refresh failed status=%s%s",
            status,
            f" detail={detail}" if detail else "",
        )
        raise AuthError(f"Token refresh failed with status {status}")

    try:
        data = resp.json()
    except ValueError as e:
        LOGGER.error("Invalid JSON in token response: %s", e)
        raise AuthError("Invalid JSON in token response") from e

    if not isinstance(data, dict):
        LOGGER.error("Unexpected token response shape: %s", type(data).__name__)
        raise AuthError("Unexpected token response shape")

    access_token = data.get("access_token")
    new_refresh_token = data.get("refresh_token") or refresh_token
    if not access_token:
        LOGGER.error("No access_token in token response")
        raise AuthError("No access_token in response")

    expires_at = _expires_at(data, time.time() if now is None else now)
    LOGGER.info(
        "Token refreshed access_token_len=%s refresh_token_changed=%s expires_at=%s",
        len(access_token),
        new_refresh_token != refresh_token,
        expires_at,
    )
    return TokenGrant(
        access_token=access_token,
        refresh_token=new_refresh_token,
        expires_at=expires_at,
    )

"""Credential store: keeps one live Strava access token per process.

The store is the only writer of the credential. It refreshes the access token
when it is about to expire and persists every rotated refresh token to disk
before handing the new access token out, so a restart never resurrects a
refresh token Strava has already retired.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from .auth import TokenGrant, exchange_refresh_token, mask_tail
from .config import TOKEN_EXPIRY_MARGIN_SECONDS
from .errors import ConfigError
from .models import Credential
from .utils import read_json_file, write_json_atomic

LOGGER = logging.getLogger(__name__)

TokenExchange = Callable[..., TokenGrant]


class TokenStorage:
    """JSON file holding the latest access/refresh token pair."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> Optional[Credential]:
        try:
            data = read_json_file(self.path)
        except (OSError, ValueError) as exc:
            LOGGER.error("Unreadable token file %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict) or not data.get("refresh_token"):
            return None
        try:
            expires_at = int(data.get("expires_at") or 0)
        except (TypeError, ValueError):
            expires_at = 0
        return Credential(
            access_token=str(data.get("access_token") or ""),
            refresh_token=str(data["refresh_token"]),
            expires_at=expires_at,
        )

    def save(self, credential: Credential) -> None:
        write_json_atomic(
            self.path,
            {
                "access_token": credential.access_token,
                "refresh_token": credential.refresh_token,
                "expires_at": credential.expires_at,
            },
            mode=0o600,
        )


class CredentialStore:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        storage: TokenStorage,
        *,
        initial_refresh_token: str = "",
        margin_seconds: int = TOKEN_EXPIRY_MARGIN_SECONDS,
        exchange: TokenExchange = exchange_refresh_token,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._storage = storage
        self._margin = max(0, margin_seconds)
        self._exchange = exchange
        self._clock = clock
        self._lock = threading.Lock()
        self._unsaved = False

        credential = storage.load()
        if credential is None:
            if not initial_refresh_token:
                raise ConfigError(
                    "No persisted refresh token and STRAVA_INITIAL_REFRESH_TOKEN is empty"
                )
            LOGGER.info("Bootstrapping credential from initial refresh token")
            credential = Credential(access_token="", refresh_token=initial_refresh_token)
        else:
            LOGGER.info(
                "Loaded persisted credential refresh_token=%s expires_at=%s",
                mask_tail(credential.refresh_token),
                credential.expires_at,
            )
        self._credential = credential

    @property
    def expires_at(self) -> int:
        with self._lock:
            return self._credential.expires_at

    def _is_valid(self, now: float) -> bool:
        cred = self._credential
        return bool(cred.access_token) and now < cred.expires_at - self._margin

    def ensure_valid(self, now: Optional[float] = None) -> str:
        """Return a usable access token, refreshing it first when needed.

        Raises:
            AuthError: If the refresh exchange is rejected or unreachable.
        """

        with self._lock:
            current = self._clock() if now is None else now
            if self._unsaved:
                self._persist()
            if self._is_valid(current):
                return self._credential.access_token

            grant = self._exchange(
                self._credential.refresh_token,
                client_id=self._client_id,
                client_secret=self._client_secret,
                now=current,
            )
            rotated = grant.refresh_token != self._credential.refresh_token
            self._credential = Credential(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_at=grant.expires_at,
            )
            self._unsaved = True
            self._persist()
            if rotated:
                LOGGER.info(
                    "Refresh token rotated; now %s",
                    mask_tail(grant.refresh_token),
                )
            return self._credential.access_token

    def invalidate(self) -> None:
        """Force the next :meth:`ensure_valid` call to refresh."""

        with self._lock:
            self._credential.access_token = ""
            self._credential.expires_at = 0

    def _persist(self) -> None:
        try:
            self._storage.save(self._credential)
        except OSError as exc:
            # Kept in memory and retried on the next ensure_valid call.
            LOGGER.error("Failed to persist credential to %s: %s", self._storage.path, exc)
            return
        self._unsaved = False

"""Central error types used across the application."""

from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when required credentials or settings are missing at startup."""


class StravaAPIError(RuntimeError):
    """Base error for Strava API failures."""


class AuthError(StravaAPIError):
    """Raised when the credential is invalid, revoked, or cannot be refreshed."""


class TransientError(StravaAPIError):
    """Raised when network failures, 5xx, or 429s persist after retries."""


class StravaPermissionError(StravaAPIError):
    """Raised when Strava rejects a mutation (HTTP 403)."""


class StravaResourceNotFoundError(StravaAPIError):
    """Raised when an activity no longer exists (HTTP 404)."""


__all__ = [
    "AuthError",
    "ConfigError",
    "StravaAPIError",
    "StravaPermissionError",
    "StravaResourceNotFoundError",
    "TransientError",
]

"""Central configuration for the Strava duplicate-ride bot.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

from .errors import ConfigError


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env from the current directory or any parent folder.
load_dotenv()


# ---------------------------------------------------------------------------
# Strava settings
# ---------------------------------------------------------------------------
# Base Strava API URLs.
STRAVA_BASE_URL = os.getenv("STRAVA_BASE_URL", "https://www.strava.com/api/v3")
STRAVA_OAUTH_URL = os.getenv("STRAVA_OAUTH_URL", "https://www.strava.com/oauth/token")

# Client credentials pulled from the environment. Do not hardcode secrets.
CLIENT_ID = os.getenv("STRAVA_CLIENT_ID", "")
CLIENT_SECRET = os.getenv("STRAVA_CLIENT_SECRET", "")

# Only used when no rotated token has been persisted to STATE_DIR yet.
INITIAL_REFRESH_TOKEN = os.getenv("STRAVA_INITIAL_REFRESH_TOKEN", "")

# Refresh the access token when it expires within this many seconds.
TOKEN_EXPIRY_MARGIN_SECONDS = _env_int("TOKEN_EXPIRY_MARGIN_SECONDS", 5 * 60)


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------
# Directory (absolute or relative) holding token.json and processed.json.
STATE_DIR = os.getenv("STATE_DIR", "state")
TOKEN_FILE_NAME = "token.json"
PROCESSED_FILE_NAME = "processed.json"

# Drop processed entries older than this many days. Set to 0 to keep forever.
PROCESSED_RETENTION_DAYS = _env_int("PROCESSED_RETENTION_DAYS", 30)

# Error outcomes become eligible for another hide attempt after this many
# hours. Set to 0 to never retry automatically.
ERROR_RETRY_AFTER_HOURS = _env_float("ERROR_RETRY_AFTER_HOURS", 0.0)

# Unmatched indoor rides older than this are recorded as skipped-no-match so
# later cycles stop re-evaluating them. Set to 0 to never record them.
UNMATCHED_SETTLE_HOURS = _env_float("UNMATCHED_SETTLE_HOURS", 24.0)


# ---------------------------------------------------------------------------
# Activity window and matching
# ---------------------------------------------------------------------------
# Each cycle inspects activities started within the last N hours.
ACTIVITY_LOOKBACK_HOURS = _env_int("ACTIVITY_LOOKBACK_HOURS", 48)
ACTIVITY_PAGE_SIZE = _env_int("ACTIVITY_PAGE_SIZE", 50)
# Upper bound on listing pages per cycle. Set to 0 to disable the cap.
ACTIVITY_MAX_PAGES = _env_int("ACTIVITY_MAX_PAGES", 5)

# Indoor and virtual rides starting within this many seconds are duplicates.
MATCH_WINDOW_SECONDS = _env_int("MATCH_WINDOW_SECONDS", 3600)
# Distances at or below this (metres) count as zero.
ZERO_DISTANCE_EPSILON = _env_float("ZERO_DISTANCE_EPSILON", 1e-6)

# When False the bot logs what it would hide without calling Strava.
HIDE_ENABLED = _env_bool("HIDE_ENABLED", True)


# ---------------------------------------------------------------------------
# HTTP / retry behaviour
# ---------------------------------------------------------------------------
# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 10)

# HTTP session pool sizes.
HTTP_POOL_CONNECTIONS = 4
HTTP_POOL_MAXSIZE = 4

# STRAVA_MAX_RETRIES covers network failures, 5xx and 429 responses.
STRAVA_MAX_RETRIES = _env_int("STRAVA_MAX_RETRIES", 3)
# Delay before the second attempt; doubles per attempt.
STRAVA_BACKOFF_BASE_SECONDS = _env_float("STRAVA_BACKOFF_BASE_SECONDS", 1.0)
# STRAVA_BACKOFF_MAX_SECONDS caps the exponential backoff per attempt.
STRAVA_BACKOFF_MAX_SECONDS = _env_float("STRAVA_BACKOFF_MAX_SECONDS", 8.0)

# Rate limiter settings.
# RATE_LIMIT_MAX_CONCURRENT caps total in-flight requests.
RATE_LIMIT_MAX_CONCURRENT = 2
# RATE_LIMIT_NEAR_LIMIT_BUFFER starts throttling when this close to the short-window limit.
RATE_LIMIT_NEAR_LIMIT_BUFFER = 3
# RATE_LIMIT_THROTTLE_SECONDS is the pause applied on 429s or near-limit signals.
RATE_LIMIT_THROTTLE_SECONDS = _env_int("RATE_LIMIT_THROTTLE_SECONDS", 15)


# ---------------------------------------------------------------------------
# Scheduling / logging
# ---------------------------------------------------------------------------
# Cron minute expression; the default fires at :00, :15, :30 and :45.
SCHEDULE_CRON_MINUTE = os.getenv("SCHEDULE_CRON_MINUTE", "*/15")
# Seconds a tick may start late before APScheduler skips it.
SCHEDULE_MISFIRE_GRACE_SECONDS = _env_int("SCHEDULE_MISFIRE_GRACE_SECONDS", 120)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def load_credentials() -> tuple[str, str, str]:
    """Return ``(client_id, client_secret, initial_refresh_token)``.

    Raises:
        ConfigError: When the client id or secret is missing.
    """

    missing = [
        name
        for name, value in (
            ("STRAVA_CLIENT_ID", CLIENT_ID),
            ("STRAVA_CLIENT_SECRET", CLIENT_SECRET),
        )
        if not value.strip()
    ]
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")
    return CLIENT_ID.strip(), CLIENT_SECRET.strip(), INITIAL_REFRESH_TOKEN.strip()

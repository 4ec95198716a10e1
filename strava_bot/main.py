from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from .config import (
    ERROR_RETRY_AFTER_HOURS,
    LOG_LEVEL,
    PROCESSED_FILE_NAME,
    PROCESSED_RETENTION_DAYS,
    STATE_DIR,
    TOKEN_FILE_NAME,
    load_credentials,
)
from .credentials import CredentialStore, TokenStorage
from .engine import DuplicateResolver
from .errors import ConfigError
from .processed_cache import ProcessedPairCache
from .scheduler import run_forever, run_tick
from .strava_client import ActivitiesAPI, ActivityHider, RateLimiter, ResourceAPI


def _setup_logging() -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, LOG_LEVEL, logging.INFO),
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def build_resolver(state_dir: Path | str = STATE_DIR) -> DuplicateResolver:
    """Wire the stores and Strava clients together.

    Raises:
        ConfigError: When credentials are missing.
    """
    client_id, client_secret, initial_refresh_token = load_credentials()
    base = Path(state_dir)
    credentials = CredentialStore(
        client_id,
        client_secret,
        TokenStorage(base / TOKEN_FILE_NAME),
        initial_refresh_token=initial_refresh_token,
    )
    cache = ProcessedPairCache(
        base / PROCESSED_FILE_NAME,
        retention=timedelta(days=PROCESSED_RETENTION_DAYS),
        error_retry_after=timedelta(hours=ERROR_RETRY_AFTER_HOURS),
    )
    resources = ResourceAPI(limiter=RateLimiter())
    return DuplicateResolver(
        credentials,
        ActivitiesAPI(credentials.ensure_valid, resources=resources),
        ActivityHider(credentials.ensure_valid, resources=resources),
        cache,
    )


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Hide zero-distance indoor rides that duplicate virtual rides on Strava."
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit instead of starting the scheduler.",
    )
    parser.add_argument(
        "--state-dir",
        default=STATE_DIR,
        help="Directory holding token.json and processed.json (default: %(default)s).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    _setup_logging()
    args = _parse_args(argv)
    try:
        resolver = build_resolver(args.state_dir)
    except ConfigError as exc:
        logging.error("Configuration error: %s", exc)
        return 2

    if args.once:
        result = run_tick(resolver)
        return 0 if result is not None and result.ok else 1
    run_forever(resolver)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

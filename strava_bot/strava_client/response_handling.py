"""Shared HTTP response helpers for Strava API interactions."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from ..errors import (
    AuthError,
    StravaAPIError,
    StravaPermissionError,
    StravaResourceNotFoundError,
    TransientError,
)

__all__ = [
    "classify_response_status",
    "extract_error",
]


def classify_response_status(
    response: requests.Response,
    context: str,
    *,
    attempt: int,
    can_retry: bool,
) -> Tuple[str, Optional[Exception]]:
    """Return action for a response status: ok, retry, or raise."""

    status = response.status_code
    if status < 400:
        return "ok", None
    detail = extract_error(response)

    def with_detail(message: str) -> str:
        return f"{message} | {detail}" if detail else message

    if status == 401:
        message = with_detail(f"{context} unauthorized")
        logging.warning(message)
        return "raise", AuthError(message)

    if status == 403:
        message = with_detail(f"{context} forbidden")
        logging.warning(message)
        return "raise", StravaPermissionError(message)

    if status == 404:
        message = with_detail(f"{context} not found")
        logging.info(message)
        return "raise", StravaResourceNotFoundError(message)

    if status == 429 or 500 <= status < 600:
        if can_retry:
            logging.warning(
                "%s transient status=%s attempt=%s", context, status, attempt
            )
            return "retry", None
        message = with_detail(
            f"{context} still failing (status {status}) after {attempt} attempts"
        )
        logging.error(message)
        return "raise", TransientError(message)

    message = with_detail(f"{context} request failed (status {status})")
    logging.error(message)
    return "raise", StravaAPIError(message)


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return compact string with Strava error info (message + codes) if present."""

    if resp is None:
        return None
    data = _safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    parts = _collect_error_parts(data)
    return " | ".join(parts) if parts else None


def _safe_json(resp: requests.Response) -> Optional[Any]:
    try:
        return resp.json()
    except ValueError as exc:  # requests' JSONDecodeError subclasses ValueError
        logging.debug(
            "Failed to decode JSON from %s: %s", getattr(resp, "url", "?"), exc
        )
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    """Best-effort plain-text extraction when JSON parsing fails."""

    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed


def _collect_error_parts(data: Dict[str, Any]) -> List[str]:
    """Build error snippets from the standard Strava error response."""

    parts: List[str] = []
    message = data.get("message")
    if message:
        parts.append(str(message))
    errors = data.get("errors")
    if isinstance(errors, list):
        for err in errors:
            if not isinstance(err, dict):
                continue
            resource = err.get("resource")
            field = err.get("field")
            code = err.get("code")
            spec = "/".join(filter(None, (resource, field)))
            if code and spec:
                parts.append(f"{spec}:{code}")
            elif code:
                parts.append(str(code))
    return parts

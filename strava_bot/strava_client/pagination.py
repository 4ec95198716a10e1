"""Shared pagination helper for Strava API list endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, TypeAlias

from .resources import ResourceAPI

JSONList: TypeAlias = List[Dict[str, Any]]

LOGGER = logging.getLogger(__name__)


def fetch_all_pages(
    resources: ResourceAPI,
    *,
    url: str,
    token: str,
    base_params: Dict[str, Any],
    page_size: int,
    context_label: str,
    max_pages: Optional[int] = None,
) -> JSONList:
    """GET ``url`` page by page and concatenate the results in server order.

    Stops on an empty or short page, or after ``max_pages`` pages.
    """

    items: JSONList = []
    page = 1
    while True:
        params = dict(base_params)
        params["page"] = page
        params["per_page"] = page_size
        data = resources.request_json(
            "GET",
            url,
            token,
            f"{context_label} page={page}",
            params=params,
        )
        if not isinstance(data, list):
            LOGGER.warning(
                "Unexpected JSON shape (not list) for %s page=%s type=%s",
                context_label,
                page,
                type(data).__name__,
            )
            break
        items.extend(item for item in data if isinstance(item, dict))
        if len(data) < page_size:
            break
        if max_pages is not None and page >= max_pages:
            LOGGER.info(
                "%s stopped at max_pages=%s; older activities not fetched",
                context_label,
                max_pages,
            )
            break
        page += 1
    return items

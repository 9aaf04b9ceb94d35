from __future__ import annotations

import json
import logging
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .config import UpstreamConfig
from .utils import log_event

PER_PAGE = 100


class UpstreamError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def build_page_url(
    config: UpstreamConfig,
    token: str,
    page: int = 0,
    per_page: int = PER_PAGE,
    since_id: int | None = None,
) -> str:
    params: dict[str, object] = {
        "token": token,
        "domain": config.domain,
        "per-page": per_page,
    }
    if page:
        params["page"] = page
    if since_id:
        params["since_id"] = since_id
    return f"{config.api_base}?{urlencode(params)}"


def fetch_page(
    config: UpstreamConfig,
    token: str,
    page: int = 0,
    per_page: int = PER_PAGE,
    since_id: int | None = None,
) -> list[dict[str, Any]]:
    """Fetch one page of JF2 entries. Any failure raises UpstreamError."""
    logger = logging.getLogger("mentionvault.fetcher")
    url = build_page_url(config, token, page=page, per_page=per_page, since_id=since_id)
    headers = {"Accept": "application/json", "User-Agent": config.user_agent}
    try:
        request = Request(url, headers=headers)
        with urlopen(request, timeout=config.timeout_seconds) as response:
            body = response.read()
    except HTTPError as exc:
        log_event(logger, logging.WARNING, "upstream_http_error", status=exc.code, page=page)
        raise UpstreamError(f"upstream returned {exc.code}", status=exc.code) from exc
    except (URLError, TimeoutError, OSError) as exc:
        log_event(logger, logging.WARNING, "upstream_unreachable", page=page, error=str(exc))
        raise UpstreamError(f"upstream unreachable: {exc}") from exc

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise UpstreamError("upstream returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise UpstreamError("upstream returned an unexpected payload")
    children = payload.get("children")
    if children is None:
        return []
    if not isinstance(children, list):
        raise UpstreamError("upstream children is not a list")
    return [item for item in children if isinstance(item, dict)]

"""Author photo discovery from a domain's homepage h-card.

The upstream feed often carries empty author photos for IndieWeb sites that
only publish an h-card on their homepage. Discovery fetches that homepage,
picks the first ``u-photo`` image and the first ``u-url``/``u-uid`` link, and
memoizes the answer in two cache tiers so each domain costs at most one
request per TTL window.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from http.client import HTTPException
from typing import Any, Callable, Iterable
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin
from urllib.request import Request, urlopen

from bs4 import BeautifulSoup

from ..models import AuthorData
from ..storage import list_domains_missing_photos, update_author_data_by_domain
from ..utils import log_event, utc_now
from .cache import AuthorCache, MemoryCache

DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_USER_AGENT = "mentionvault/0.1 (h-card discovery)"
MAX_HOMEPAGE_BYTES = 2_000_000

logger = logging.getLogger("mentionvault.hcard")


class DiscoveryError(RuntimeError):
    pass


def parse_hcard(html: str, base_url: str) -> AuthorData:
    soup = BeautifulSoup(html or "", "html.parser")
    photo_url = None
    author_url = None
    for img in soup.find_all("img"):
        if "u-photo" in (img.get("class") or []) and img.get("src"):
            photo_url = img["src"]
            break
    for anchor in soup.find_all("a"):
        classes = anchor.get("class") or []
        if ("u-url" in classes or "u-uid" in classes) and anchor.get("href"):
            author_url = anchor["href"]
            break
    return AuthorData(
        photo_url=_resolve(photo_url, base_url),
        author_url=_resolve(author_url, base_url),
    )


def _resolve(url: str | None, base_url: str) -> str | None:
    if not url:
        return None
    try:
        return urljoin(base_url, url.strip())
    except ValueError:
        return url


def fetch_hcard_data(
    domain: str,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    user_agent: str = DEFAULT_USER_AGENT,
) -> AuthorData:
    base_url = f"https://{domain}/"
    request = Request(base_url, headers={"Accept": "text/html", "User-Agent": user_agent})
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            content_type = response.headers.get("Content-Type") or ""
            if "text/html" not in content_type.lower():
                return AuthorData()
            final_url = response.geturl() or base_url
            charset = response.headers.get_content_charset() or "utf-8"
            html = response.read(MAX_HOMEPAGE_BYTES).decode(charset, errors="replace")
    except HTTPError as exc:
        log_event(logger, logging.DEBUG, "hcard_http_status", domain=domain, status=exc.code)
        return AuthorData()
    except (URLError, HTTPException, TimeoutError, OSError, LookupError, ValueError) as exc:
        raise DiscoveryError(str(exc)) from exc
    return parse_hcard(html, final_url)


class AuthorDiscovery:
    def __init__(
        self,
        memory: MemoryCache,
        persistent: AuthorCache | None = None,
        *,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.memory = memory
        self.persistent = persistent
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self._clock = clock

    def discover(self, domain: str | None) -> AuthorData:
        if not domain:
            return AuthorData()

        cached = self.memory.get(domain)
        if cached is not None:
            return cached

        if self.persistent is not None:
            try:
                stored = self.persistent.get(domain)
            except Exception as exc:  # noqa: BLE001
                log_event(logger, logging.WARNING, "hcard_cache_read_failed", domain=domain, error=str(exc))
                stored = None
            if stored is not None:
                self.memory.put(domain, stored, self._clock())
                return stored

        result = AuthorData()
        try:
            result = fetch_hcard_data(
                domain, timeout_seconds=self.timeout_seconds, user_agent=self.user_agent
            )
        except DiscoveryError as exc:
            log_event(logger, logging.INFO, "hcard_discovery_failed", domain=domain, error=str(exc))

        fetched_at = self._clock()
        self.memory.put(domain, result, fetched_at)
        if self.persistent is not None:
            try:
                self.persistent.put(domain, result, fetched_at)
            except Exception as exc:  # noqa: BLE001
                log_event(logger, logging.WARNING, "hcard_cache_write_failed", domain=domain, error=str(exc))
        return result


def enrich_missing_photos(
    conn: Any,
    discovery: AuthorDiscovery,
    candidate_domains: Iterable[str] | None = None,
    *,
    delay_seconds: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Backfill empty author fields for domains that lack a photo.

    Returns the number of stored mentions that gained data. Failures are
    logged and end enrichment early with the count so far.
    """
    total = 0
    try:
        missing = set(list_domains_missing_photos(conn))
        if candidate_domains is None:
            domains = sorted(missing)
        else:
            domains = [domain for domain in candidate_domains if domain in missing]
        for index, domain in enumerate(domains):
            if index and delay_seconds > 0:
                sleep(delay_seconds)
            data = discovery.discover(domain)
            if data.is_empty():
                continue
            updated = update_author_data_by_domain(conn, domain, data.photo_url, data.author_url)
            total += updated
            if updated:
                log_event(logger, logging.INFO, "hcard_enriched", domain=domain, updated=updated)
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "enrichment_failed", error=str(exc), enriched=total)
    return total

"""Cache tiers for h-card discovery results.

Both tiers store negative results too: an ``AuthorData`` with no fields means
the domain was looked up and nothing was found.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Protocol

from ..models import AuthorData, HCardCacheEntry
from ..storage import purge_expired_hcard_cache
from ..utils import log_event, parse_iso, utc_now

DEFAULT_TTL_DAYS = 7


class AuthorCache(Protocol):
    def get(self, key: str) -> AuthorData | None:
        ...

    def put(self, key: str, value: AuthorData, timestamp: datetime) -> None:
        ...


class MemoryCache:
    """Process-lifetime tier. Unbounded, never expires."""

    def __init__(self) -> None:
        self._items: dict[str, AuthorData] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> AuthorData | None:
        with self._lock:
            return self._items.get(key)

    def put(self, key: str, value: AuthorData, timestamp: datetime) -> None:
        with self._lock:
            self._items[key] = value

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class SqlHCardCache:
    """Persistent tier backed by the ``hcard_cache`` table."""

    def __init__(self, conn: Any, ttl_days: int = DEFAULT_TTL_DAYS) -> None:
        self._conn = conn
        self._ttl = timedelta(days=ttl_days)

    def get(self, key: str) -> AuthorData | None:
        entry = self.get_entry(key)
        if entry is None or self.is_expired(entry.fetched_at):
            return None
        return AuthorData(photo_url=entry.photo_url or None, author_url=entry.author_url or None)

    def put(self, key: str, value: AuthorData, timestamp: datetime) -> None:
        self._conn.execute(
            """
            INSERT INTO hcard_cache (domain, photo_url, author_url, fetched_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(domain) DO UPDATE SET
                photo_url = excluded.photo_url,
                author_url = excluded.author_url,
                fetched_at = excluded.fetched_at
            """,
            (key, value.photo_url, value.author_url, timestamp.isoformat()),
        )
        self._conn.commit()

    def get_entry(self, key: str) -> HCardCacheEntry | None:
        row = self._conn.execute(
            "SELECT domain, photo_url, author_url, fetched_at FROM hcard_cache WHERE domain = ?",
            (key,),
        ).fetchone()
        if not row:
            return None
        domain, photo_url, author_url, fetched_at = row
        return HCardCacheEntry(
            domain=domain, photo_url=photo_url, author_url=author_url, fetched_at=fetched_at
        )

    def is_expired(self, fetched_at: str | None, now: datetime | None = None) -> bool:
        fetched = parse_iso(fetched_at)
        if fetched is None:
            return True
        return (now or utc_now()) - fetched > self._ttl

    def purge_expired(self, now: datetime | None = None) -> int:
        removed = purge_expired_hcard_cache(self._conn, self._ttl.days, now)
        if removed:
            log_event(
                logging.getLogger("mentionvault.hcard"),
                logging.DEBUG,
                "hcard_cache_purged",
                removed=removed,
            )
        return removed

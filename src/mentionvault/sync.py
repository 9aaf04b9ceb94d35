"""Pull webmentions from upstream into the local store.

One orchestrator instance is shared by the scheduler, the admin API and the
CLI. It owns the in-process ``SyncState`` and guarantees that at most one run
is active at a time. Runs never raise: every failure comes back as a
``SyncResult`` with ``ok=False`` and a stable ``error_code``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable

from . import fetcher
from .blocklist import load_blocked_set
from .config import Config, load_runtime_config
from .db import StoreUnavailableError
from .enrichment.cache import MemoryCache, SqlHCardCache
from .enrichment.hcard import AuthorDiscovery, enrich_missing_photos
from .fetcher import UpstreamError
from .jf2 import source_domain_for
from .models import SyncResult, SyncState
from .scheduler import Scheduler
from .services.token_service import load_upstream_token
from .storage import (
    delete_all_webmentions,
    get_max_wm_id,
    init_db,
    list_domains_missing_photos,
    upsert_webmention,
)
from .utils import log_event, utc_now_iso

MODE_INCREMENTAL = "incremental"
MODE_FULL = "full"

logger = logging.getLogger("mentionvault.sync")


class SyncError(RuntimeError):
    code = "sync_failed"


class AlreadyRunning(SyncError):
    code = "already_running"


class StoreUnavailable(SyncError):
    code = "store_unavailable"


class NotConfigured(SyncError):
    code = "not_configured"


class SyncOrchestrator:
    def __init__(
        self,
        connect: Callable[[], Any] = init_db,
        *,
        memory_cache: MemoryCache | None = None,
        fetch_page: Callable[..., list[dict[str, Any]]] | None = None,
        token_loader: Callable[[Any], str | None] = load_upstream_token,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._connect = connect
        self.memory_cache = memory_cache if memory_cache is not None else MemoryCache()
        self._fetch_page = fetch_page
        self._token_loader = token_loader
        self._sleep = sleep
        self._state = SyncState()
        self._lock = threading.Lock()

    def get_status(self) -> SyncState:
        with self._lock:
            return replace(self._state)

    def run_incremental(self, config: Config | None = None) -> SyncResult:
        return self._run(MODE_INCREMENTAL, config)

    def run_full(self, config: Config | None = None) -> SyncResult:
        return self._run(MODE_FULL, config)

    def _claim(self) -> bool:
        with self._lock:
            if self._state.running:
                return False
            self._state.running = True
            self._state.added_count = 0
            self._state.filtered_count = 0
            self._state.last_error = None
            return True

    def _release(self, error: str | None, completed: bool) -> None:
        with self._lock:
            self._state.running = False
            self._state.last_error = error
            if completed:
                self._state.last_sync_at = utc_now_iso()

    def _count(self, *, added: int = 0, filtered: int = 0) -> None:
        with self._lock:
            self._state.added_count += added
            self._state.filtered_count += filtered

    def _run(self, mode: str, config: Config | None) -> SyncResult:
        if not self._claim():
            log_event(logger, logging.INFO, "sync_skipped", mode=mode, reason=AlreadyRunning.code)
            return SyncResult(
                ok=False,
                mode=mode,
                error="sync already in progress",
                error_code=AlreadyRunning.code,
            )

        log_event(logger, logging.INFO, "sync_started", mode=mode)
        started = time.monotonic()
        conn = None
        try:
            conn = self._open_store()
            cfg = config if config is not None else load_runtime_config(conn)
            result = self._execute(conn, cfg, mode)
        except Exception as exc:  # noqa: BLE001
            error_code = _error_code(exc)
            self._release(str(exc), completed=False)
            status = self.get_status()
            log_event(
                logger,
                logging.ERROR,
                "sync_failed",
                mode=mode,
                error_code=error_code,
                error=str(exc),
                added=status.added_count,
                filtered=status.filtered_count,
            )
            return SyncResult(
                ok=False,
                mode=mode,
                added_count=status.added_count,
                filtered_count=status.filtered_count,
                error=str(exc),
                error_code=error_code,
            )
        finally:
            if conn is not None:
                conn.close()

        self._release(None, completed=True)
        log_event(
            logger,
            logging.INFO,
            "sync_completed",
            mode=mode,
            added=result.added_count,
            filtered=result.filtered_count,
            enriched=result.enriched_count,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result

    def _open_store(self) -> Any:
        try:
            return self._connect()
        except StoreUnavailableError as exc:
            raise StoreUnavailable(str(exc)) from exc

    def _execute(self, conn: Any, cfg: Config, mode: str) -> SyncResult:
        token = self._token_loader(conn)
        if not token:
            raise NotConfigured("upstream token is not configured")
        if not cfg.upstream.domain:
            raise NotConfigured("upstream.domain is not configured")

        since_id: int | None = None
        extra: dict[str, object] = {}
        if mode == MODE_FULL:
            cleared = delete_all_webmentions(conn)
            extra["cleared"] = cleared
            log_event(logger, logging.INFO, "sync_cleared", deleted=cleared)
            delay_ms = cfg.sync.full_page_delay_ms
        else:
            since_id = get_max_wm_id(conn) or None
            delay_ms = cfg.sync.incremental_page_delay_ms

        blocked = load_blocked_set(conn)
        fetch_page = self._fetch_page or fetcher.fetch_page
        per_page = cfg.upstream.per_page
        added = 0
        filtered = 0
        touched_domains: set[str] = set()
        page = 0
        while True:
            items = fetch_page(cfg.upstream, token, page=page, per_page=per_page, since_id=since_id)
            log_event(logger, logging.DEBUG, "sync_page_fetched", mode=mode, page=page, items=len(items))
            if not items:
                break
            for item in items:
                if item.get("wm-id") is None:
                    raise UpstreamError("upstream entry without wm-id")
                domain = source_domain_for(item)
                if domain and domain in blocked:
                    filtered += 1
                    self._count(filtered=1)
                    continue
                if upsert_webmention(conn, item):
                    added += 1
                    self._count(added=1)
                    if domain:
                        touched_domains.add(domain)
            page += 1
            if len(items) < per_page:
                break
            if delay_ms > 0:
                self._sleep(delay_ms / 1000)

        enriched = 0
        if cfg.enrichment.enabled:
            enriched = self._enrich(conn, cfg)
        extra["pages"] = page
        extra["domains"] = len(touched_domains)
        return SyncResult(
            ok=True,
            mode=mode,
            added_count=added,
            filtered_count=filtered,
            enriched_count=enriched,
            extra=extra,
        )

    def _enrich(self, conn: Any, cfg: Config) -> int:
        persistent = SqlHCardCache(conn, ttl_days=cfg.enrichment.cache_ttl_days)
        try:
            persistent.purge_expired()
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.WARNING, "hcard_cache_purge_failed", error=str(exc))
        discovery = AuthorDiscovery(
            self.memory_cache,
            persistent,
            timeout_seconds=cfg.enrichment.timeout_seconds,
            user_agent=cfg.enrichment.user_agent,
        )
        return enrich_missing_photos(
            conn,
            discovery,
            delay_seconds=cfg.enrichment.lookup_delay_ms / 1000,
            sleep=self._sleep,
        )


def schedule_sync(scheduler: Scheduler, orchestrator: SyncOrchestrator, cfg: Config) -> None:
    """Register the startup run and the periodic incremental sync.

    Each tick reloads runtime config, so interval changes apply on restart
    and everything else applies on the next run.
    """
    if not cfg.sync.enabled:
        log_event(logger, logging.INFO, "sync_schedule_disabled")
        return
    scheduler.schedule_once(cfg.sync.initial_delay_seconds, orchestrator.run_incremental)
    interval = cfg.sync.interval_minutes * 60
    scheduler.schedule_repeating(interval, orchestrator.run_incremental, initial_delay_seconds=interval)
    log_event(
        logger,
        logging.INFO,
        "sync_scheduled",
        initial_delay_seconds=cfg.sync.initial_delay_seconds,
        interval_minutes=cfg.sync.interval_minutes,
    )


def _error_code(exc: Exception) -> str:
    if isinstance(exc, SyncError):
        return exc.code
    if isinstance(exc, UpstreamError):
        return "upstream_error"
    if isinstance(exc, StoreUnavailableError):
        return StoreUnavailable.code
    return SyncError.code

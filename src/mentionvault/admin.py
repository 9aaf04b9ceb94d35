from __future__ import annotations

import logging
import os
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Iterator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import blocklist
from .config import (
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    load_runtime_config,
    set_runtime_config,
)
from .db import StoreUnavailableError
from .jf2 import author_display_name, build_feed, mention_title, mention_type, record_to_jf2
from .models import Webmention
from .scheduler import Scheduler
from .services.moderation_service import (
    block_domain,
    hide_mention,
    privacy_remove,
    unblock_domain,
    unhide_mention,
)
from .services.token_service import (
    TOKEN_ENV,
    clear_upstream_token,
    has_stored_token,
    set_upstream_token,
)
from .storage import get_webmention_counts, init_db, list_webmentions
from .sync import SyncOrchestrator, schedule_sync
from .utils import configure_logging, log_event

app = FastAPI(title="MentionVault API")

logger = logging.getLogger("mentionvault.admin")

_orchestrator: SyncOrchestrator | None = None
_scheduler: Scheduler | None = None


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("MV_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


def _get_conn() -> Iterator[object]:
    try:
        conn = init_db()
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail="store_unavailable") from exc
    try:
        bootstrap_runtime_config(conn)
        yield conn
    finally:
        conn.close()


def get_orchestrator() -> SyncOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SyncOrchestrator()
    return _orchestrator


class DomainRequest(BaseModel):
    domain: str


class RuntimeConfigRequest(BaseModel):
    config: dict


class TokenRequest(BaseModel):
    token: str


@app.on_event("startup")
def _startup() -> None:
    global _scheduler
    orchestrator = get_orchestrator()
    try:
        conn = init_db()
        try:
            config = load_runtime_config(conn)
        finally:
            conn.close()
    except (ConfigError, StoreUnavailableError) as exc:
        log_event(logger, logging.ERROR, "startup_config_failed", error=str(exc))
        return
    _scheduler = Scheduler()
    schedule_sync(_scheduler, orchestrator, config)


@app.on_event("shutdown")
def _shutdown() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown()
        _scheduler = None


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/api/mentions")
def public_mentions(
    target: str | None = None,
    wm_property: str | None = Query(None, alias="wm-property"),
    per_page: int | None = Query(None, alias="per-page"),
    page: int = 0,
    conn=Depends(_get_conn),
) -> JSONResponse:
    try:
        config = load_runtime_config(conn)
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    size = per_page if per_page and per_page > 0 else config.api.default_per_page
    size = min(size, config.api.max_per_page)
    items, _ = list_webmentions(
        conn,
        target=target or None,
        wm_property=wm_property or None,
        show_hidden=False,
        page=max(page, 0),
        per_page=size,
    )
    return JSONResponse(
        build_feed(items),
        headers={"Cache-Control": f"public, max-age={config.api.cache_ttl_seconds}"},
    )


@app.get("/admin/status", dependencies=[Depends(_require_admin_token)])
def admin_status(conn=Depends(_get_conn)) -> dict[str, object]:
    return {
        "sync": asdict(get_orchestrator().get_status()),
        "counts": get_webmention_counts(conn),
        "blocked_domains": len(blocklist.list_entries(conn)),
        "token_configured": bool(os.environ.get(TOKEN_ENV)) or has_stored_token(conn),
    }


@app.post("/admin/sync", dependencies=[Depends(_require_admin_token)])
def admin_sync() -> dict[str, object]:
    return asdict(get_orchestrator().run_incremental())


@app.post("/admin/sync/full", dependencies=[Depends(_require_admin_token)])
def admin_sync_full() -> dict[str, object]:
    return asdict(get_orchestrator().run_full())


@app.get("/admin/mentions", dependencies=[Depends(_require_admin_token)])
def admin_mentions(
    filter_: str = Query("all", alias="filter"),
    type_: str = Query("all", alias="type"),
    page: int = 0,
    limit: int = 20,
    conn=Depends(_get_conn),
) -> dict[str, object]:
    if filter_ not in ("all", "hidden", "visible"):
        raise HTTPException(status_code=400, detail="invalid_filter")
    items, total = list_webmentions(
        conn,
        wm_property=None if type_ == "all" else type_,
        show_hidden=filter_ != "visible",
        hidden_only=filter_ == "hidden",
        page=max(page, 0),
        per_page=max(min(limit, 200), 1),
    )
    return {
        "items": [_mention_to_admin(item) for item in items],
        "total": total,
        "page": page,
        "counts": get_webmention_counts(conn),
    }


@app.post("/admin/mentions/{wm_id}/hide", dependencies=[Depends(_require_admin_token)])
def admin_hide(wm_id: int, conn=Depends(_get_conn)) -> dict[str, object]:
    if not hide_mention(conn, wm_id):
        raise HTTPException(status_code=404, detail="mention_not_found")
    return {"wm_id": wm_id, "hidden": True}


@app.post("/admin/mentions/{wm_id}/unhide", dependencies=[Depends(_require_admin_token)])
def admin_unhide(wm_id: int, conn=Depends(_get_conn)) -> dict[str, object]:
    if not unhide_mention(conn, wm_id):
        raise HTTPException(status_code=404, detail="mention_not_found")
    return {"wm_id": wm_id, "hidden": False}


@app.post("/admin/block", dependencies=[Depends(_require_admin_token)])
def admin_block(payload: DomainRequest, conn=Depends(_get_conn)) -> dict[str, object]:
    try:
        return block_domain(conn, payload.domain)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/admin/privacy-remove", dependencies=[Depends(_require_admin_token)])
def admin_privacy_remove(payload: DomainRequest, conn=Depends(_get_conn)) -> dict[str, object]:
    try:
        return privacy_remove(conn, payload.domain)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/admin/blocklist", dependencies=[Depends(_require_admin_token)])
def admin_blocklist(conn=Depends(_get_conn)) -> list[dict[str, object]]:
    return [asdict(entry) for entry in blocklist.list_entries(conn)]


@app.delete("/admin/blocklist/{domain}", dependencies=[Depends(_require_admin_token)])
def admin_unblock(domain: str, conn=Depends(_get_conn)) -> dict[str, object]:
    try:
        return unblock_domain(conn, domain)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_get(conn=Depends(_get_conn)) -> dict[str, object]:
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"config": cfg}


@app.put("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_set(payload: RuntimeConfigRequest, conn=Depends(_get_conn)) -> dict[str, object]:
    try:
        set_runtime_config(conn, payload.config)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "ok"}


@app.put("/admin/config/token", dependencies=[Depends(_require_admin_token)])
def token_set(payload: TokenRequest, conn=Depends(_get_conn)) -> dict[str, object]:
    try:
        return set_upstream_token(conn, payload.token)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/admin/config/token", dependencies=[Depends(_require_admin_token)])
def token_clear(conn=Depends(_get_conn)) -> dict[str, str]:
    clear_upstream_token(conn)
    return {"status": "cleared"}


def _mention_to_admin(item: Webmention) -> dict[str, object]:
    entry = record_to_jf2(item)
    return {
        "wm_id": item.wm_id,
        "wm_property": item.wm_property,
        "wm_target": item.wm_target,
        "type": mention_type(item.wm_property),
        "title": mention_title(entry),
        "author_name": author_display_name(entry),
        "author_url": item.author_url,
        "author_photo": item.author_photo,
        "url": item.source_url,
        "published": entry["published"],
        "content_html": item.content_html,
        "hidden": item.hidden,
        "hidden_reason": item.hidden_reason,
        "source_domain": item.source_domain,
    }


def _setup_logging() -> None:
    configure_logging("mentionvault.admin")


_setup_logging()


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("mentionvault")
    except Exception:  # noqa: BLE001
        return "unknown"

from __future__ import annotations

import logging
from typing import Any

from .. import blocklist
from ..storage import (
    delete_by_domain,
    hide_by_domain,
    hide_webmention,
    unhide_by_domain,
    unhide_webmention,
)
from ..utils import log_event

logger = logging.getLogger("mentionvault.moderation")


def hide_mention(conn: Any, wm_id: int) -> bool:
    return hide_webmention(conn, wm_id, "manual")


def unhide_mention(conn: Any, wm_id: int) -> bool:
    return unhide_webmention(conn, wm_id)


def block_domain(conn: Any, domain: str) -> dict[str, Any]:
    domain = blocklist.normalize_domain(domain)
    hidden = hide_by_domain(conn, domain, "blocklist")
    created = blocklist.block(conn, domain, "spam", hidden)
    log_event(logger, logging.INFO, "domain_blocked", domain=domain, hidden=hidden)
    return {"domain": domain, "hidden": hidden, "created": created}


def unblock_domain(conn: Any, domain: str) -> dict[str, Any]:
    domain = blocklist.normalize_domain(domain)
    blocklist.unblock(conn, domain)
    unhidden = unhide_by_domain(conn, domain, "blocklist")
    log_event(logger, logging.INFO, "domain_unblocked", domain=domain, unhidden=unhidden)
    return {"domain": domain, "unhidden": unhidden}


def privacy_remove(conn: Any, domain: str) -> dict[str, Any]:
    """Delete every mention from a domain and keep it out of future syncs."""
    domain = blocklist.normalize_domain(domain)
    deleted = delete_by_domain(conn, domain)
    blocklist.block(conn, domain, "privacy", deleted)
    log_event(logger, logging.INFO, "domain_privacy_removed", domain=domain, deleted=deleted)
    return {"domain": domain, "deleted": deleted}

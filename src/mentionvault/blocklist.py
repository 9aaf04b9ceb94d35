from __future__ import annotations

from typing import Any

from .models import BLOCK_REASONS, BlocklistEntry
from .utils import utc_now_iso


def normalize_domain(domain: str | None) -> str:
    value = (domain or "").strip().lower()
    if not value:
        raise ValueError("domain is required")
    return value


def is_blocked(conn: Any, domain: str | None) -> bool:
    if not domain:
        return False
    row = conn.execute(
        "SELECT 1 FROM blocklist WHERE domain = ?", (domain.strip().lower(),)
    ).fetchone()
    return row is not None


def load_blocked_set(conn: Any) -> set[str]:
    return {row[0] for row in conn.execute("SELECT domain FROM blocklist").fetchall()}


def block(conn: Any, domain: str, reason: str = "spam", hidden_count: int = 0) -> bool:
    """Add a domain, or merge into its existing entry.

    A repeat block keeps one row: the latest reason wins and the hidden
    count accumulates. Returns True when the domain was newly blocked.
    """
    domain = normalize_domain(domain)
    if reason not in BLOCK_REASONS:
        raise ValueError(f"Unsupported block reason: {reason}")
    existed = is_blocked(conn, domain)
    conn.execute(
        """
        INSERT INTO blocklist (domain, reason, blocked_at, mentions_hidden)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(domain) DO UPDATE SET
            reason = excluded.reason,
            mentions_hidden = blocklist.mentions_hidden + excluded.mentions_hidden
        """,
        (domain, reason, utc_now_iso(), int(hidden_count)),
    )
    conn.commit()
    return not existed


def unblock(conn: Any, domain: str) -> None:
    conn.execute("DELETE FROM blocklist WHERE domain = ?", (normalize_domain(domain),))
    conn.commit()


def get_entry(conn: Any, domain: str) -> BlocklistEntry | None:
    row = conn.execute(
        "SELECT domain, reason, blocked_at, mentions_hidden FROM blocklist WHERE domain = ?",
        (normalize_domain(domain),),
    ).fetchone()
    if not row:
        return None
    return _row_to_entry(row)


def list_entries(conn: Any) -> list[BlocklistEntry]:
    cursor = conn.execute(
        """
        SELECT domain, reason, blocked_at, mentions_hidden
        FROM blocklist
        ORDER BY blocked_at DESC, domain
        """
    )
    return [_row_to_entry(row) for row in cursor.fetchall()]


def _row_to_entry(row: tuple) -> BlocklistEntry:
    domain, reason, blocked_at, mentions_hidden = row
    return BlocklistEntry(
        domain=domain,
        reason=reason,
        blocked_at=blocked_at,
        mentions_hidden=int(mentions_hidden or 0),
    )

from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("mentionvault.migrations")
    conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS webmentions (
            wm_id INTEGER PRIMARY KEY,
            wm_received TEXT NOT NULL,
            wm_property TEXT NULL,
            wm_target TEXT NULL,
            author_name TEXT NULL,
            author_url TEXT NULL,
            author_photo TEXT NULL,
            source_url TEXT NULL,
            source_domain TEXT NULL,
            published TEXT NULL,
            content_html TEXT NULL,
            content_text TEXT NULL,
            name TEXT NULL,
            hidden INTEGER NOT NULL DEFAULT 0,
            hidden_at TEXT NULL,
            hidden_reason TEXT NULL,
            synced_at TEXT NOT NULL,
            raw_json TEXT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_webmentions_target ON webmentions(wm_target, hidden)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_webmentions_domain ON webmentions(source_domain)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_webmentions_received ON webmentions(wm_received DESC)"
    )


def _migration_blocklist(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS blocklist (
            domain TEXT PRIMARY KEY,
            reason TEXT NOT NULL,
            blocked_at TEXT NOT NULL,
            mentions_hidden INTEGER NOT NULL DEFAULT 0
        )
        """
    )


def _migration_hcard_cache(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS hcard_cache (
            domain TEXT PRIMARY KEY,
            photo_url TEXT NULL,
            author_url TEXT NULL,
            fetched_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_hcard_cache_fetched ON hcard_cache(fetched_at)"
    )


def _migration_api_secrets(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS api_secrets (
            name TEXT PRIMARY KEY,
            key_id TEXT NOT NULL,
            value_enc TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_blocklist", _migration_blocklist),
        ("003_hcard_cache", _migration_hcard_cache),
        ("004_api_secrets", _migration_api_secrets),
    ]

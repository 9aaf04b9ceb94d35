from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

from .db import connect_db, get_state_db_path
from .jf2 import jf2_to_record, load_raw
from .models import Webmention
from .utils import json_dumps, utc_now, utc_now_iso

_WEBMENTION_COLUMNS = (
    "wm_id",
    "wm_received",
    "wm_property",
    "wm_target",
    "author_name",
    "author_url",
    "author_photo",
    "source_url",
    "source_domain",
    "published",
    "content_html",
    "content_text",
    "name",
    "hidden",
    "hidden_at",
    "hidden_reason",
    "synced_at",
    "raw_json",
)
_SELECT_WEBMENTIONS = f"SELECT {', '.join(_WEBMENTION_COLUMNS)} FROM webmentions"


def init_db(path: str | None = None):
    return connect_db(path or get_state_db_path())


def get_setting(conn: Any, key: str, default: object) -> object:
    cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_setting(conn: Any, key: str, value: object) -> None:
    payload = json_dumps(value)
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, payload, now),
    )
    conn.commit()


def upsert_webmention(conn: Any, item: dict[str, Any]) -> bool:
    """Insert a JF2 entry unless its wm-id is already stored.

    Existing rows are never touched, so moderation state set after the first
    sync survives every later sync. Returns True only for a genuine insert.
    """
    record = jf2_to_record(item)
    placeholders = ", ".join("?" for _ in _WEBMENTION_COLUMNS)
    cursor = conn.execute(
        f"""
        INSERT OR IGNORE INTO webmentions ({', '.join(_WEBMENTION_COLUMNS)})
        VALUES ({placeholders})
        """,
        tuple(record[column] for column in _WEBMENTION_COLUMNS),
    )
    conn.commit()
    return cursor.rowcount > 0


def get_max_wm_id(conn: Any) -> int:
    row = conn.execute("SELECT MAX(wm_id) FROM webmentions").fetchone()
    if not row or row[0] is None:
        return 0
    return int(row[0])


def get_webmention(conn: Any, wm_id: int) -> Webmention | None:
    cursor = conn.execute(f"{_SELECT_WEBMENTIONS} WHERE wm_id = ?", (wm_id,))
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_webmention(row)


def list_webmentions(
    conn: Any,
    *,
    target: str | None = None,
    wm_property: str | None = None,
    show_hidden: bool = False,
    hidden_only: bool = False,
    page: int = 0,
    per_page: int = 20,
) -> tuple[list[Webmention], int]:
    clauses: list[str] = []
    params: list[object] = []
    if hidden_only:
        clauses.append("hidden = 1")
    elif not show_hidden:
        clauses.append("hidden = 0")
    if target:
        clean = target.rstrip("/")
        clauses.append("wm_target IN (?, ?)")
        params.extend([clean, clean + "/"])
    if wm_property:
        clauses.append("wm_property = ?")
        params.append(wm_property)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

    total = conn.execute(f"SELECT COUNT(*) FROM webmentions{where}", tuple(params)).fetchone()[0]
    cursor = conn.execute(
        f"{_SELECT_WEBMENTIONS}{where} ORDER BY wm_received DESC, wm_id DESC LIMIT ? OFFSET ?",
        tuple(params + [per_page, max(page, 0) * per_page]),
    )
    return [_row_to_webmention(row) for row in cursor.fetchall()], int(total)


def get_webmention_counts(conn: Any) -> dict[str, int]:
    total = conn.execute("SELECT COUNT(*) FROM webmentions").fetchone()[0]
    hidden = conn.execute("SELECT COUNT(*) FROM webmentions WHERE hidden = 1").fetchone()[0]
    return {"total": int(total), "hidden": int(hidden), "visible": int(total) - int(hidden)}


def hide_webmention(conn: Any, wm_id: int, reason: str = "manual") -> bool:
    cursor = conn.execute(
        "UPDATE webmentions SET hidden = 1, hidden_at = ?, hidden_reason = ? WHERE wm_id = ?",
        (utc_now_iso(), reason, wm_id),
    )
    conn.commit()
    return cursor.rowcount > 0


def unhide_webmention(conn: Any, wm_id: int) -> bool:
    cursor = conn.execute(
        "UPDATE webmentions SET hidden = 0, hidden_at = NULL, hidden_reason = NULL WHERE wm_id = ?",
        (wm_id,),
    )
    conn.commit()
    return cursor.rowcount > 0


def hide_by_domain(conn: Any, domain: str, reason: str = "blocklist") -> int:
    cursor = conn.execute(
        """
        UPDATE webmentions
        SET hidden = 1, hidden_at = ?, hidden_reason = ?
        WHERE source_domain = ? AND hidden = 0
        """,
        (utc_now_iso(), reason, domain),
    )
    conn.commit()
    return cursor.rowcount


def unhide_by_domain(conn: Any, domain: str, reason: str = "blocklist") -> int:
    # Only rows hidden for the given reason; manual and privacy hides stay.
    cursor = conn.execute(
        """
        UPDATE webmentions
        SET hidden = 0, hidden_at = NULL, hidden_reason = NULL
        WHERE source_domain = ? AND hidden_reason = ?
        """,
        (domain, reason),
    )
    conn.commit()
    return cursor.rowcount


def delete_by_domain(conn: Any, domain: str) -> int:
    cursor = conn.execute("DELETE FROM webmentions WHERE source_domain = ?", (domain,))
    conn.commit()
    return cursor.rowcount


def delete_all_webmentions(conn: Any) -> int:
    cursor = conn.execute("DELETE FROM webmentions")
    conn.commit()
    return cursor.rowcount


def list_domains_missing_photos(conn: Any) -> list[str]:
    cursor = conn.execute(
        """
        SELECT DISTINCT source_domain
        FROM webmentions
        WHERE source_domain IS NOT NULL AND source_domain <> ''
          AND (author_photo IS NULL OR author_photo = '')
        ORDER BY source_domain
        """
    )
    return [row[0] for row in cursor.fetchall()]


def purge_expired_hcard_cache(conn: Any, ttl_days: int, now: datetime | None = None) -> int:
    cutoff = ((now or utc_now()) - timedelta(days=ttl_days)).isoformat()
    cursor = conn.execute("DELETE FROM hcard_cache WHERE fetched_at < ?", (cutoff,))
    conn.commit()
    return cursor.rowcount


def update_author_data_by_domain(
    conn: Any,
    domain: str,
    photo_url: str | None,
    author_url: str | None,
) -> int:
    """Fill empty author fields for every row of a domain.

    Populated fields are left alone; the return value counts rows that had
    at least one field filled.
    """
    assignments: list[str] = []
    conditions: list[str] = []
    params: list[object] = []
    if photo_url:
        assignments.append(
            "author_photo = CASE WHEN author_photo IS NULL OR author_photo = '' "
            "THEN ? ELSE author_photo END"
        )
        params.append(photo_url)
        conditions.append("(author_photo IS NULL OR author_photo = '')")
    if author_url:
        assignments.append(
            "author_url = CASE WHEN author_url IS NULL OR author_url = '' "
            "THEN ? ELSE author_url END"
        )
        params.append(author_url)
        conditions.append("(author_url IS NULL OR author_url = '')")
    if not assignments:
        return 0
    params.append(domain)
    cursor = conn.execute(
        f"""
        UPDATE webmentions
        SET {', '.join(assignments)}
        WHERE source_domain = ? AND ({' OR '.join(conditions)})
        """,
        tuple(params),
    )
    conn.commit()
    return cursor.rowcount


def get_api_secret(conn: Any, name: str) -> tuple[str, str] | None:
    row = conn.execute(
        "SELECT key_id, value_enc FROM api_secrets WHERE name = ?", (name,)
    ).fetchone()
    if not row:
        return None
    return row[0], row[1]


def set_api_secret(conn: Any, name: str, key_id: str, value_enc: str) -> None:
    conn.execute(
        """
        INSERT INTO api_secrets (name, key_id, value_enc, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            key_id = excluded.key_id,
            value_enc = excluded.value_enc,
            updated_at = excluded.updated_at
        """,
        (name, key_id, value_enc, utc_now_iso()),
    )
    conn.commit()


def delete_api_secret(conn: Any, name: str) -> None:
    conn.execute("DELETE FROM api_secrets WHERE name = ?", (name,))
    conn.commit()


def _row_to_webmention(row: tuple) -> Webmention:
    (
        wm_id,
        wm_received,
        wm_property,
        wm_target,
        author_name,
        author_url,
        author_photo,
        source_url,
        source_domain,
        published,
        content_html,
        content_text,
        name,
        hidden,
        hidden_at,
        hidden_reason,
        synced_at,
        raw_json,
    ) = row
    return Webmention(
        wm_id=int(wm_id),
        wm_received=wm_received,
        wm_property=wm_property,
        wm_target=wm_target,
        author_name=author_name,
        author_url=author_url,
        author_photo=author_photo,
        source_url=source_url,
        source_domain=source_domain,
        published=published,
        content_html=content_html,
        content_text=content_text,
        name=name,
        hidden=bool(hidden),
        hidden_at=hidden_at,
        hidden_reason=hidden_reason,
        synced_at=synced_at,
        raw=load_raw(raw_json),
    )

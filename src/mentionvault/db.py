from __future__ import annotations

import os
import re
import sqlite3
from typing import Any

from .migrations import apply_migrations
from .migrations_pg import apply_migrations_pg

SQLITE = "sqlite"
POSTGRES = "postgres"

# Targets (file paths or URLs) whose schema is already current in this process.
_migrated: set[tuple[str, str]] = set()

_INSERT_OR_IGNORE = re.compile(r"\bINSERT\s+OR\s+IGNORE\b", re.IGNORECASE)
_QUOTED_OR_QMARK = re.compile(r"'(?:[^']|'')*'|\"[^\"]*\"|\?")


class StoreUnavailableError(RuntimeError):
    pass


def get_state_db_path() -> str:
    data_dir = os.environ.get("MV_DATA_DIR", "/data")
    return os.path.join(data_dir, "state.sqlite3")


def get_db_url() -> str | None:
    url = os.environ.get("MV_DB_URL", "").strip()
    return url or None


def is_postgres_url(url: str | None) -> bool:
    return bool(url) and url.split("://", 1)[0] in ("postgres", "postgresql")


class DBConn:
    """Thin wrapper so storage code can write sqlite-flavoured SQL once."""

    def __init__(self, conn: Any, backend: str) -> None:
        self._conn = conn
        self.backend = backend

    def execute(self, sql: str, params: tuple | list | None = None):
        cursor = self._conn.cursor()
        cursor.execute(_normalize_sql(sql, self.backend), params or ())
        return cursor

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def __getattr__(self, name: str):
        return getattr(self._conn, name)


def connect_db(path: str) -> DBConn:
    url = get_db_url()
    if is_postgres_url(url):
        return _connect_postgres(url)
    return _connect_sqlite(path)


def _connect_sqlite(path: str) -> DBConn:
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        raw = sqlite3.connect(path, check_same_thread=False)
        for pragma in ("journal_mode=WAL", "synchronous=NORMAL", "busy_timeout=5000"):
            raw.execute(f"PRAGMA {pragma}")
    except (OSError, sqlite3.Error) as exc:
        raise StoreUnavailableError(f"cannot open {path}: {exc}") from exc
    if (SQLITE, path) not in _migrated:
        apply_migrations(raw)
        _migrated.add((SQLITE, path))
    return DBConn(raw, SQLITE)


def _connect_postgres(url: str) -> DBConn:
    import psycopg

    try:
        raw = psycopg.connect(url)
    except psycopg.OperationalError as exc:
        raise StoreUnavailableError(str(exc)) from exc
    conn = DBConn(raw, POSTGRES)
    if (POSTGRES, url) not in _migrated:
        apply_migrations_pg(conn)
        _migrated.add((POSTGRES, url))
    return conn


def _normalize_sql(sql: str, backend: str) -> str:
    if backend != POSTGRES:
        return sql
    if _INSERT_OR_IGNORE.search(sql):
        sql = _INSERT_OR_IGNORE.sub("INSERT", sql, count=1)
        if "ON CONFLICT" not in sql.upper():
            sql = sql.rstrip().rstrip(";") + " ON CONFLICT DO NOTHING"
    sql = sql.replace("BEGIN IMMEDIATE", "BEGIN")
    # Placeholders inside string literals are left alone.
    return _QUOTED_OR_QMARK.sub(lambda m: "%s" if m.group(0) == "?" else m.group(0), sql)

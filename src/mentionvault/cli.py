from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn

from . import blocklist
from .config import (
    ConfigError,
    dump_config,
    get_runtime_config,
    load_config_file,
    load_runtime_config,
    set_runtime_config,
)
from .db import StoreUnavailableError, get_state_db_path
from .services.moderation_service import (
    block_domain,
    hide_mention,
    privacy_remove,
    unblock_domain,
    unhide_mention,
)
from .security.secrets import MASTER_KEY_ENV, generate_master_key
from .services.token_service import clear_upstream_token, set_upstream_token
from .storage import init_db
from .sync import SyncOrchestrator
from .utils import log_event


def _setup_logging() -> logging.Logger:
    level_name = os.environ.get("MV_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    return logging.getLogger("mentionvault")


def _open(args: argparse.Namespace):
    return init_db(args.db or get_state_db_path())


def _cmd_sync(args: argparse.Namespace, logger: logging.Logger) -> int:
    orchestrator = SyncOrchestrator(connect=lambda: _open(args))
    try:
        conn = _open(args)
        try:
            config = load_runtime_config(conn)
        finally:
            conn.close()
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    result = orchestrator.run_full(config) if args.full else orchestrator.run_incremental(config)
    if not result.ok:
        log_event(logger, logging.ERROR, "sync_result", error_code=result.error_code, error=result.error)
        return 1
    log_event(
        logger,
        logging.INFO,
        "sync_result",
        mode=result.mode,
        added=result.added_count,
        filtered=result.filtered_count,
        enriched=result.enriched_count,
    )
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    _open(args).close()
    log_event(logger, logging.INFO, "db_migrated", path=args.db or get_state_db_path())
    return 0


def _cmd_blocklist_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        entries = blocklist.list_entries(conn)
    finally:
        conn.close()
    for entry in entries:
        log_event(
            logger,
            logging.INFO,
            "blocked_domain",
            domain=entry.domain,
            reason=entry.reason,
            blocked_at=entry.blocked_at,
            mentions_hidden=entry.mentions_hidden,
        )
    log_event(logger, logging.INFO, "blocklist_listed", count=len(entries))
    return 0


def _cmd_blocklist_add(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        result = block_domain(conn, args.domain)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "blocklist_added", **result)
    return 0


def _cmd_blocklist_remove(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        result = unblock_domain(conn, args.domain)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "blocklist_removed", **result)
    return 0


def _cmd_mentions_hide(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        found = hide_mention(conn, args.wm_id)
    finally:
        conn.close()
    if not found:
        log_event(logger, logging.ERROR, "mention_not_found", wm_id=args.wm_id)
        return 1
    log_event(logger, logging.INFO, "mention_hidden", wm_id=args.wm_id)
    return 0


def _cmd_mentions_unhide(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        found = unhide_mention(conn, args.wm_id)
    finally:
        conn.close()
    if not found:
        log_event(logger, logging.ERROR, "mention_not_found", wm_id=args.wm_id)
        return 1
    log_event(logger, logging.INFO, "mention_unhidden", wm_id=args.wm_id)
    return 0


def _cmd_privacy_remove(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        result = privacy_remove(conn, args.domain)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "privacy_removed", **result)
    return 0


def _cmd_config_export(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    text = dump_config(cfg)
    if args.out:
        with open(args.out, "w", encoding="utf-8") as handle:
            handle.write(text)
        log_event(logger, logging.INFO, "config_exported", path=args.out)
    else:
        sys.stdout.write(text)
    return 0


def _cmd_config_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        cfg = load_config_file(args.path)
        set_runtime_config(conn, cfg)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "config_imported", path=args.path)
    return 0


def _cmd_token_set(args: argparse.Namespace, logger: logging.Logger) -> int:
    token = args.token if args.token is not None else sys.stdin.readline()
    conn = _open(args)
    try:
        result = set_upstream_token(conn, token)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "token_stored", key_id=result["key_id"])
    return 0


def _cmd_token_clear(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        clear_upstream_token(conn)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "token_cleared")
    return 0


def _cmd_token_keygen(args: argparse.Namespace, logger: logging.Logger) -> int:
    sys.stdout.write(f"{MASTER_KEY_ENV}={generate_master_key()}\n")
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    log_event(logger, logging.INFO, "api_starting", host=args.host, port=args.port)
    uvicorn.run("mentionvault.admin:app", host=args.host, port=args.port, proxy_headers=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mentionvault", description="MentionVault CLI")
    parser.add_argument(
        "--db",
        dest="db",
        default=None,
        help="Path to the state database (defaults to $MV_DATA_DIR/state.sqlite3)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Pull new webmentions from upstream")
    sync_parser.add_argument(
        "--full",
        action="store_true",
        help="Delete every stored webmention and re-import the whole feed",
    )
    sync_parser.set_defaults(func=_cmd_sync)

    serve_parser = subparsers.add_parser("serve", help="Run the public and admin HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.set_defaults(func=_cmd_serve)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    blocklist_parser = subparsers.add_parser("blocklist", help="Manage blocked domains")
    blocklist_subparsers = blocklist_parser.add_subparsers(dest="blocklist_command", required=True)
    blocklist_list = blocklist_subparsers.add_parser("list", help="List blocked domains")
    blocklist_list.set_defaults(func=_cmd_blocklist_list)
    blocklist_add = blocklist_subparsers.add_parser("add", help="Block a domain and hide its mentions")
    blocklist_add.add_argument("domain")
    blocklist_add.set_defaults(func=_cmd_blocklist_add)
    blocklist_remove = blocklist_subparsers.add_parser(
        "remove", help="Unblock a domain and restore blocklist-hidden mentions"
    )
    blocklist_remove.add_argument("domain")
    blocklist_remove.set_defaults(func=_cmd_blocklist_remove)

    mentions_parser = subparsers.add_parser("mentions", help="Moderate single webmentions")
    mentions_subparsers = mentions_parser.add_subparsers(dest="mentions_command", required=True)
    mentions_hide = mentions_subparsers.add_parser("hide", help="Hide a webmention")
    mentions_hide.add_argument("wm_id", type=int)
    mentions_hide.set_defaults(func=_cmd_mentions_hide)
    mentions_unhide = mentions_subparsers.add_parser("unhide", help="Restore a hidden webmention")
    mentions_unhide.add_argument("wm_id", type=int)
    mentions_unhide.set_defaults(func=_cmd_mentions_unhide)

    privacy_parser = subparsers.add_parser(
        "privacy-remove", help="Delete all mentions from a domain and block it"
    )
    privacy_parser.add_argument("domain")
    privacy_parser.set_defaults(func=_cmd_privacy_remove)

    config_parser = subparsers.add_parser("config", help="Runtime configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    config_export = config_subparsers.add_parser("export", help="Write runtime config as YAML")
    config_export.add_argument("--out", help="Output path (defaults to stdout)")
    config_export.set_defaults(func=_cmd_config_export)
    config_import = config_subparsers.add_parser("import", help="Validate and store a YAML config")
    config_import.add_argument("path")
    config_import.set_defaults(func=_cmd_config_import)

    token_parser = subparsers.add_parser("token", help="Upstream API token")
    token_subparsers = token_parser.add_subparsers(dest="token_command", required=True)
    token_set = token_subparsers.add_parser("set", help="Store the token encrypted")
    token_set.add_argument("token", nargs="?", help="Token value (read from stdin when omitted)")
    token_set.set_defaults(func=_cmd_token_set)
    token_clear = token_subparsers.add_parser("clear", help="Remove the stored token")
    token_clear.set_defaults(func=_cmd_token_clear)
    token_keygen = token_subparsers.add_parser("keygen", help="Print a new random master key")
    token_keygen.set_defaults(func=_cmd_token_keygen)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    try:
        return args.func(args, logger)
    except StoreUnavailableError as exc:
        log_event(logger, logging.ERROR, "store_unavailable", error=str(exc))
        return 1
    except ValueError as exc:
        log_event(logger, logging.ERROR, "invalid_argument", error=str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

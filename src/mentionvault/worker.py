from __future__ import annotations

import argparse
import logging
import signal
import threading

from .config import ConfigError, load_runtime_config
from .db import StoreUnavailableError
from .scheduler import Scheduler
from .storage import init_db
from .sync import SyncOrchestrator, schedule_sync
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("mentionvault.worker")


def run_once(orchestrator: SyncOrchestrator | None = None) -> int:
    logger = _setup_logging()
    orchestrator = orchestrator or SyncOrchestrator()
    result = orchestrator.run_incremental()
    if not result.ok:
        log_event(logger, logging.ERROR, "worker_sync_failed", error_code=result.error_code, error=result.error)
        return 1
    log_event(
        logger,
        logging.INFO,
        "worker_sync_done",
        added=result.added_count,
        filtered=result.filtered_count,
        enriched=result.enriched_count,
    )
    return 0


def run_loop(stop_event: threading.Event | None = None) -> int:
    logger = _setup_logging()
    try:
        conn = init_db()
        try:
            config = load_runtime_config(conn)
        finally:
            conn.close()
    except (ConfigError, StoreUnavailableError) as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    stop_event = stop_event or threading.Event()
    scheduler = Scheduler()
    schedule_sync(scheduler, SyncOrchestrator(), config)
    log_event(logger, logging.INFO, "worker_started", interval_minutes=config.sync.interval_minutes)
    try:
        stop_event.wait()
    finally:
        scheduler.shutdown()
    log_event(logger, logging.INFO, "worker_stopped")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mentionvault-worker")
    parser.add_argument("--once", action="store_true", help="Run a single incremental sync and exit")
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    if args.once:
        return run_once()
    stop_event = threading.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: stop_event.set())
    return run_loop(stop_event)


if __name__ == "__main__":
    raise SystemExit(main())

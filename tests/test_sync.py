import copy

from mentionvault import blocklist
from mentionvault.config import DEFAULT_CONFIG, build_config
from mentionvault.db import StoreUnavailableError
from mentionvault.enrichment import hcard
from mentionvault.fetcher import UpstreamError
from mentionvault.models import AuthorData
from mentionvault.services.moderation_service import privacy_remove
from mentionvault.storage import get_webmention, init_db, list_webmentions, upsert_webmention
from mentionvault.sync import SyncOrchestrator


class FakeFeed:
    def __init__(self, entries, fail_on_page=None):
        self.entries = list(entries)
        self.fail_on_page = fail_on_page
        self.calls = []

    def __call__(self, config, token, page=0, per_page=100, since_id=None):
        self.calls.append({"page": page, "per_page": per_page, "since_id": since_id})
        if self.fail_on_page is not None and page == self.fail_on_page:
            raise UpstreamError("upstream returned 502", status=502)
        newer = [entry for entry in self.entries if since_id is None or entry["wm-id"] > since_id]
        newer.sort(key=lambda entry: entry["wm-id"], reverse=True)
        return newer[page * per_page : (page + 1) * per_page]


def _config(per_page=100, enrichment=False):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["upstream"]["domain"] = "blog.example"
    cfg["upstream"]["per_page"] = per_page
    cfg["enrichment"]["enabled"] = enrichment
    return build_config(cfg)


def _orchestrator(db_path, feed, sleeps=None, token="secret"):
    return SyncOrchestrator(
        connect=lambda: init_db(str(db_path)),
        fetch_page=feed,
        token_loader=lambda conn: token,
        sleep=(sleeps.append if sleeps is not None else lambda seconds: None),
    )


def _stored_ids(db_path):
    conn = init_db(str(db_path))
    items, _ = list_webmentions(conn, show_hidden=True, per_page=100)
    return {item.wm_id for item in items}


def test_blocked_entries_are_filtered_before_storage(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    blocklist.block(init_db(str(db_path)), "spam.test", "spam", 0)
    feed = FakeFeed([make_entry(1), make_entry(2, "https://spam.test/"), make_entry(3)])

    orchestrator = _orchestrator(db_path, feed)
    result = orchestrator.run_incremental(_config())

    assert result.ok is True
    assert result.added_count == 2
    assert result.filtered_count == 1
    assert _stored_ids(db_path) == {1, 3}
    status = orchestrator.get_status()
    assert status.running is False
    assert status.last_error is None
    assert status.last_sync_at is not None
    assert (status.added_count, status.filtered_count) == (2, 1)


def test_incremental_uses_watermark(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    upsert_webmention(init_db(str(db_path)), make_entry(2))
    feed = FakeFeed([make_entry(1), make_entry(2), make_entry(3)])

    result = _orchestrator(db_path, feed).run_incremental(_config())

    assert feed.calls[0]["since_id"] == 2
    assert result.added_count == 1
    assert _stored_ids(db_path) == {2, 3}


def test_full_then_incremental_adds_nothing(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    upsert_webmention(init_db(str(db_path)), make_entry(9, **{"wm-id": 99}))
    feed = FakeFeed([make_entry(1), make_entry(2), make_entry(3)])
    orchestrator = _orchestrator(db_path, feed)

    full = orchestrator.run_full(_config())
    assert full.ok is True
    assert full.added_count == 3
    assert full.extra["cleared"] == 1
    assert feed.calls[0]["since_id"] is None
    assert _stored_ids(db_path) == {1, 2, 3}

    incremental = orchestrator.run_incremental(_config())
    assert incremental.ok is True
    assert incremental.added_count == 0


def test_privacy_removed_domain_does_not_come_back(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    feed = FakeFeed([make_entry(1), make_entry(2, "https://private.test/")])
    orchestrator = _orchestrator(db_path, feed)
    orchestrator.run_incremental(_config())

    privacy_remove(init_db(str(db_path)), "private.test")
    result = orchestrator.run_incremental(_config())

    assert result.added_count == 0
    assert result.filtered_count == 1
    assert _stored_ids(db_path) == {1}


def test_paginates_until_short_page_with_delay(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    sleeps = []
    feed = FakeFeed([make_entry(wm_id) for wm_id in range(1, 6)])

    result = _orchestrator(db_path, feed, sleeps).run_incremental(_config(per_page=2))

    assert result.added_count == 5
    assert [call["page"] for call in feed.calls] == [0, 1, 2]
    assert sleeps == [0.5, 0.5]


def test_full_sync_uses_longer_page_delay(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    sleeps = []
    feed = FakeFeed([make_entry(wm_id) for wm_id in range(1, 5)])

    _orchestrator(db_path, feed, sleeps).run_full(_config(per_page=2))

    assert [call["page"] for call in feed.calls] == [0, 1, 2]
    assert sleeps == [1.0, 1.0]


def test_upstream_failure_keeps_partial_progress(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    feed = FakeFeed([make_entry(wm_id) for wm_id in range(1, 6)], fail_on_page=1)
    orchestrator = _orchestrator(db_path, feed)

    result = orchestrator.run_incremental(_config(per_page=2))

    assert result.ok is False
    assert result.error_code == "upstream_error"
    assert result.added_count == 2
    assert _stored_ids(db_path) == {4, 5}
    status = orchestrator.get_status()
    assert status.running is False
    assert "502" in status.last_error
    assert status.last_sync_at is None


def test_concurrent_request_gets_already_running(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    nested = []

    def feed(config, token, page=0, per_page=100, since_id=None):
        nested.append(orchestrator.run_incremental(_config()))
        return [make_entry(1)]

    orchestrator = _orchestrator(db_path, feed)
    result = orchestrator.run_incremental(_config())

    assert result.ok is True
    assert nested[0].ok is False
    assert nested[0].error_code == "already_running"
    assert orchestrator.get_status().last_error is None


def test_missing_token_is_reported(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    orchestrator = _orchestrator(db_path, FakeFeed([make_entry(1)]), token=None)

    result = orchestrator.run_incremental(_config())

    assert result.ok is False
    assert result.error_code == "not_configured"
    assert orchestrator.get_status().last_error == "upstream token is not configured"


def test_unreachable_store_is_reported(make_entry):
    def connect():
        raise StoreUnavailableError("database is locked")

    orchestrator = SyncOrchestrator(
        connect=connect,
        fetch_page=FakeFeed([make_entry(1)]),
        token_loader=lambda conn: "secret",
        sleep=lambda seconds: None,
    )
    result = orchestrator.run_full(_config())

    assert result.ok is False
    assert result.error_code == "store_unavailable"
    assert orchestrator.get_status().running is False


def test_enrichment_runs_after_ingestion(tmp_path, monkeypatch, make_entry):
    db_path = tmp_path / "state.sqlite3"
    lookups = []

    def fake_fetch(domain, timeout_seconds=10, user_agent=""):
        lookups.append(domain)
        return AuthorData(photo_url=f"https://{domain}/photo.jpg")

    monkeypatch.setattr(hcard, "fetch_hcard_data", fake_fetch)
    feed = FakeFeed([make_entry(1), make_entry(2), make_entry(3, "https://bob.example/")])

    result = _orchestrator(db_path, feed).run_incremental(_config(enrichment=True))

    assert result.ok is True
    assert result.enriched_count == 3
    assert sorted(lookups) == ["alice.example", "bob.example"]
    assert get_webmention(init_db(str(db_path)), 3).author_photo == "https://bob.example/photo.jpg"


def test_new_run_clears_previous_error(tmp_path, make_entry):
    db_path = tmp_path / "state.sqlite3"
    seen = []

    class RecoveringFeed(FakeFeed):
        def __call__(self, config, token, page=0, per_page=100, since_id=None):
            if not self.calls:
                self.calls.append(page)
                raise UpstreamError("boom", status=500)
            seen.append(orchestrator.get_status())
            return super().__call__(config, token, page, per_page, since_id)

    feed = RecoveringFeed([make_entry(1)])
    orchestrator = _orchestrator(db_path, feed)

    assert orchestrator.run_incremental(_config()).ok is False
    assert orchestrator.get_status().last_error == "boom"

    assert orchestrator.run_incremental(_config()).ok is True
    assert seen[0].running is True
    assert seen[0].last_error is None
    assert orchestrator.get_status().last_error is None

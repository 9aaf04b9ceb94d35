from datetime import datetime, timedelta, timezone
from email.message import Message
from urllib.error import HTTPError, URLError

import pytest

from mentionvault.enrichment import hcard
from mentionvault.enrichment.cache import MemoryCache, SqlHCardCache
from mentionvault.enrichment.hcard import AuthorDiscovery, DiscoveryError, parse_hcard
from mentionvault.models import AuthorData
from mentionvault.storage import init_db

HOMEPAGE = """
<html><body>
  <div class="h-card">
    <img class="avatar" src="/not-this.png">
    <img class="u-photo" src="/images/me.jpg">
    <img class="u-photo" src="/images/second.jpg">
    <a class="p-name u-url" href="/about">Alice</a>
    <a class="u-uid" href="https://elsewhere.example/">uid</a>
  </div>
</body></html>
"""


def test_parse_hcard_picks_first_markers_and_resolves():
    data = parse_hcard(HOMEPAGE, "https://alice.example/")
    assert data.photo_url == "https://alice.example/images/me.jpg"
    assert data.author_url == "https://alice.example/about"


def test_parse_hcard_without_markup():
    data = parse_hcard("<p>hello</p>", "https://plain.example/")
    assert data == AuthorData()
    assert data.is_empty()


def test_discover_uses_memory_then_persistent_tiers(tmp_path, monkeypatch):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    calls = []

    def fake_fetch(domain, timeout_seconds=10, user_agent=""):
        calls.append(domain)
        return AuthorData(photo_url="https://alice.example/me.jpg")

    monkeypatch.setattr(hcard, "fetch_hcard_data", fake_fetch)
    persistent = SqlHCardCache(conn)

    first = AuthorDiscovery(MemoryCache(), persistent)
    assert first.discover("alice.example").photo_url == "https://alice.example/me.jpg"
    assert first.discover("alice.example").photo_url == "https://alice.example/me.jpg"
    assert calls == ["alice.example"]

    memory = MemoryCache()
    second = AuthorDiscovery(memory, persistent)
    assert second.discover("alice.example").photo_url == "https://alice.example/me.jpg"
    assert calls == ["alice.example"]
    assert memory.get("alice.example") is not None


def test_negative_results_are_cached(tmp_path, monkeypatch):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    calls = []

    def failing_fetch(domain, timeout_seconds=10, user_agent=""):
        calls.append(domain)
        raise DiscoveryError("connection refused")

    monkeypatch.setattr(hcard, "fetch_hcard_data", failing_fetch)
    persistent = SqlHCardCache(conn)
    discovery = AuthorDiscovery(MemoryCache(), persistent)

    assert discovery.discover("down.example").is_empty()
    assert discovery.discover("down.example").is_empty()
    assert calls == ["down.example"]
    assert persistent.get_entry("down.example") is not None
    assert AuthorDiscovery(MemoryCache(), persistent).discover("down.example").is_empty()
    assert calls == ["down.example"]


def test_persistent_entries_expire_after_ttl(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    persistent = SqlHCardCache(conn, ttl_days=7)
    old = datetime.now(tz=timezone.utc) - timedelta(days=8)
    fresh = datetime.now(tz=timezone.utc) - timedelta(days=1)
    persistent.put("old.example", AuthorData(photo_url="https://old.example/a.png"), old)
    persistent.put("fresh.example", AuthorData(photo_url="https://fresh.example/a.png"), fresh)

    assert persistent.get("old.example") is None
    assert persistent.get("fresh.example").photo_url == "https://fresh.example/a.png"
    assert persistent.purge_expired() == 1
    assert persistent.get_entry("old.example") is None


def test_cache_write_failure_does_not_change_result(monkeypatch):
    class BrokenCache:
        def get(self, key):
            return None

        def put(self, key, value, timestamp):
            raise RuntimeError("disk full")

    monkeypatch.setattr(
        hcard,
        "fetch_hcard_data",
        lambda domain, timeout_seconds=10, user_agent="": AuthorData(author_url="https://x.example/"),
    )
    discovery = AuthorDiscovery(MemoryCache(), BrokenCache())
    assert discovery.discover("x.example").author_url == "https://x.example/"


def test_enrich_missing_photos_sleeps_between_lookups(tmp_path, monkeypatch, make_entry):
    from mentionvault.storage import upsert_webmention

    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_webmention(conn, make_entry(1, "https://a.example/"))
    upsert_webmention(conn, make_entry(2, "https://b.example/"))
    upsert_webmention(conn, make_entry(3, "https://c.example/"))
    monkeypatch.setattr(
        hcard,
        "fetch_hcard_data",
        lambda domain, timeout_seconds=10, user_agent="": AuthorData()
        if domain == "b.example"
        else AuthorData(photo_url=f"https://{domain}/p.png"),
    )
    sleeps = []

    enriched = hcard.enrich_missing_photos(
        conn, AuthorDiscovery(MemoryCache()), delay_seconds=0.2, sleep=sleeps.append
    )

    assert enriched == 2
    assert sleeps == [0.2, 0.2]


class FakePage:
    def __init__(self, body, content_type="text/html; charset=utf-8", url="https://alice.example/"):
        self._body = body.encode("utf-8")
        self._url = url
        self.headers = Message()
        self.headers["Content-Type"] = content_type
        self.read_limits = []

    def read(self, amount=-1):
        self.read_limits.append(amount)
        return self._body

    def geturl(self):
        return self._url

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_live_fetch_resolves_against_final_url(monkeypatch):
    page = FakePage(HOMEPAGE, url="https://www.alice.example/home/")
    seen = {}

    def fake_urlopen(request, timeout):
        seen["url"] = request.full_url
        seen["timeout"] = timeout
        seen["agent"] = request.get_header("User-agent")
        return page

    monkeypatch.setattr(hcard, "urlopen", fake_urlopen)
    data = hcard.fetch_hcard_data("alice.example", timeout_seconds=3, user_agent="tester")

    assert seen == {"url": "https://alice.example/", "timeout": 3, "agent": "tester"}
    assert data.photo_url == "https://www.alice.example/images/me.jpg"
    assert data.author_url == "https://www.alice.example/about"
    assert page.read_limits == [hcard.MAX_HOMEPAGE_BYTES]


def test_non_html_response_is_a_cached_negative(tmp_path, monkeypatch):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    calls = []

    def fake_urlopen(request, timeout):
        calls.append(request.full_url)
        return FakePage('{"u-photo": "x"}', content_type="application/json")

    monkeypatch.setattr(hcard, "urlopen", fake_urlopen)
    discovery = AuthorDiscovery(MemoryCache(), SqlHCardCache(conn))

    assert discovery.discover("json.example").is_empty()
    assert discovery.discover("json.example").is_empty()
    assert len(calls) == 1
    assert SqlHCardCache(conn).get_entry("json.example") is not None


def test_http_error_status_is_a_cached_negative(tmp_path, monkeypatch):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    calls = []

    def fake_urlopen(request, timeout):
        calls.append(request.full_url)
        raise HTTPError(request.full_url, 404, "Not Found", Message(), None)

    monkeypatch.setattr(hcard, "urlopen", fake_urlopen)
    assert hcard.fetch_hcard_data("gone.example") == AuthorData()

    discovery = AuthorDiscovery(MemoryCache(), SqlHCardCache(conn))
    assert discovery.discover("gone.example").is_empty()
    assert discovery.discover("gone.example").is_empty()
    assert len(calls) == 2


def test_network_error_raises_discovery_error(monkeypatch):
    def fake_urlopen(request, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(hcard, "urlopen", fake_urlopen)
    with pytest.raises(DiscoveryError):
        hcard.fetch_hcard_data("down.example")
    assert AuthorDiscovery(MemoryCache()).discover("down.example").is_empty()

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolated_state(tmp_path, monkeypatch):
    monkeypatch.setenv("MV_DATA_DIR", str(tmp_path / "data"))
    for name in ("MV_DB_URL", "MV_ADMIN_TOKEN", "MV_WEBMENTION_IO_TOKEN", "MV_LOG_FILE", "MV_LOG_LEVELS"):
        monkeypatch.delenv(name, raising=False)


def _make_entry(wm_id: int, author_url: str = "https://alice.example/", **extra) -> dict:
    entry = {
        "type": "entry",
        "wm-id": wm_id,
        "wm-received": f"2024-01-{wm_id:02d}T10:00:00Z",
        "wm-property": "in-reply-to",
        "wm-target": "https://blog.example/post/",
        "author": {"type": "card", "name": "Alice", "url": author_url, "photo": ""},
        "url": f"{author_url.rstrip('/')}/reply/{wm_id}",
        "content": {"text": f"reply {wm_id}"},
    }
    entry.update(extra)
    return entry


@pytest.fixture
def make_entry():
    return _make_entry

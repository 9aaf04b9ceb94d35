import pytest

from mentionvault import blocklist
from mentionvault.services.moderation_service import (
    block_domain,
    hide_mention,
    privacy_remove,
    unblock_domain,
    unhide_mention,
)
from mentionvault.storage import get_webmention, hide_webmention, init_db, upsert_webmention


def test_repeat_block_keeps_one_entry_with_latest_reason(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    assert blocklist.block(conn, "spam.test", "spam", 0) is True
    assert blocklist.block(conn, "spam.test", "manual", 0) is False

    entries = blocklist.list_entries(conn)
    assert len(entries) == 1
    assert entries[0].domain == "spam.test"
    assert entries[0].reason == "manual"


def test_repeat_block_accumulates_hidden_count(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    blocklist.block(conn, "spam.test", "spam", 2)
    blocklist.block(conn, "spam.test", "spam", 3)
    assert blocklist.get_entry(conn, "spam.test").mentions_hidden == 5


def test_unblock_absent_domain_is_not_an_error(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    blocklist.unblock(conn, "never.test")
    assert blocklist.is_blocked(conn, "never.test") is False


def test_block_rejects_empty_domain_and_unknown_reason(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(ValueError):
        blocklist.block(conn, "  ", "spam")
    with pytest.raises(ValueError):
        blocklist.block(conn, "spam.test", "annoying")


def test_block_domain_hides_and_unblock_restores_only_blocklist_hides(tmp_path, make_entry):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_webmention(conn, make_entry(1, "https://spam.test/"))
    upsert_webmention(conn, make_entry(2, "https://spam.test/"))
    upsert_webmention(conn, make_entry(3, "https://spam.test/"))
    hide_mention(conn, 1)
    hide_webmention(conn, 3, "privacy")

    result = block_domain(conn, "Spam.Test")
    assert result == {"domain": "spam.test", "hidden": 1, "created": True}
    assert get_webmention(conn, 2).hidden_reason == "blocklist"
    assert blocklist.get_entry(conn, "spam.test").reason == "spam"

    result = unblock_domain(conn, "spam.test")
    assert result == {"domain": "spam.test", "unhidden": 1}
    assert blocklist.is_blocked(conn, "spam.test") is False
    assert get_webmention(conn, 1).hidden_reason == "manual"
    assert get_webmention(conn, 2).hidden is False
    assert get_webmention(conn, 3).hidden_reason == "privacy"


def test_privacy_remove_deletes_and_blocks(tmp_path, make_entry):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_webmention(conn, make_entry(1, "https://private.test/"))
    upsert_webmention(conn, make_entry(2, "https://private.test/"))
    upsert_webmention(conn, make_entry(3))

    result = privacy_remove(conn, "private.test")
    assert result == {"domain": "private.test", "deleted": 2}
    assert get_webmention(conn, 1) is None
    assert get_webmention(conn, 3) is not None
    entry = blocklist.get_entry(conn, "private.test")
    assert entry.reason == "privacy"
    assert entry.mentions_hidden == 2


def test_hide_and_unhide_single_mention(tmp_path, make_entry):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_webmention(conn, make_entry(1))
    assert hide_mention(conn, 1) is True
    assert get_webmention(conn, 1).hidden_at is not None
    assert unhide_mention(conn, 1) is True
    stored = get_webmention(conn, 1)
    assert stored.hidden is False
    assert stored.hidden_reason is None
    assert hide_mention(conn, 404) is False

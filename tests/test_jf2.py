from mentionvault.jf2 import (
    author_display_name,
    build_feed,
    jf2_to_record,
    mention_title,
    mention_type,
    record_to_jf2,
)
from mentionvault.storage import get_webmention, init_db, upsert_webmention


def test_record_round_trip_matches_public_shape(tmp_path, make_entry):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    entry = make_entry(7, name="A reply", content={"html": "<p>Hi <b>there</b></p>", "text": "Hi there"})
    upsert_webmention(conn, entry)

    public = record_to_jf2(get_webmention(conn, 7))

    assert public["type"] == "entry"
    assert public["wm-id"] == 7
    assert public["wm-property"] == "in-reply-to"
    assert public["author"] == {
        "type": "card",
        "name": "Alice",
        "url": "https://alice.example/",
        "photo": "",
    }
    assert public["published"] == public["wm-received"]
    assert public["name"] == "A reply"
    assert public["content"]["text"] == "Hi there"
    assert "<b>there</b>" in public["content"]["html"]


def test_text_only_content_is_wrapped_in_paragraph(make_entry):
    record = jf2_to_record(make_entry(1))
    assert record["content_html"] == "<p>reply 1</p>"
    assert record["content_text"] == "reply 1"
    assert record["source_domain"] == "alice.example"
    assert record["hidden"] == 0


def test_source_domain_falls_back_to_entry_url(make_entry):
    entry = make_entry(1)
    entry["author"] = {"type": "card", "name": "Anon"}
    entry["url"] = "https://Fallback.example/p/1"
    assert jf2_to_record(entry)["source_domain"] == "fallback.example"


def test_optional_fields_are_omitted(tmp_path, make_entry):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    entry = make_entry(2, **{"wm-property": "like-of"})
    entry.pop("content")
    upsert_webmention(conn, entry)

    public = record_to_jf2(get_webmention(conn, 2))
    assert "content" not in public
    assert "name" not in public


def test_build_feed_wrapper(tmp_path, make_entry):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_webmention(conn, make_entry(1))
    feed = build_feed([get_webmention(conn, 1)])
    assert feed["type"] == "feed"
    assert feed["name"] == "Webmentions"
    assert [child["wm-id"] for child in feed["children"]] == [1]


def test_mention_helpers():
    assert mention_type("in-reply-to") == "reply"
    assert mention_type("like-of") == "like"
    assert mention_type("mention-of") == "mention"
    assert mention_type(None) == "mention"
    assert mention_title({"wm-property": "rsvp"}) == "RSVP"
    assert mention_title({"wm-property": "repost-of"}) == "Repost"
    assert mention_title({"name": "Named", "wm-property": "like-of"}) == "Named"
    assert author_display_name({"author": {"name": "Bob"}}) == "Bob"
    assert author_display_name({"author": {"url": "https://bob.example/notes/"}}) == "bob.example/notes"
    assert author_display_name({}) == "Unknown"


def test_text_only_markup_is_escaped(make_entry):
    entry = make_entry(1, content={"text": "<img src=x onerror=alert(1)> & more"})
    record = jf2_to_record(entry)
    assert record["content_html"] == "<p>&lt;img src=x onerror=alert(1)&gt; &amp; more</p>"
    assert record["content_text"] == "<img src=x onerror=alert(1)> & more"

from __future__ import annotations

import html
import json
from typing import Any, Iterable
from urllib.parse import urlsplit

from .models import Webmention
from .sanitize import sanitize_html
from .utils import extract_domain, json_dumps, utc_now_iso

_PROPERTY_TYPES = {
    "in-reply-to": "reply",
    "like-of": "like",
    "repost-of": "repost",
    "bookmark-of": "bookmark",
    "rsvp": "rsvp",
}


def mention_type(wm_property: str | None) -> str:
    return _PROPERTY_TYPES.get(wm_property or "", "mention")


def mention_title(item: dict[str, Any]) -> str:
    if item.get("name"):
        return str(item["name"])
    label = mention_type(item.get("wm-property"))
    return "RSVP" if label == "rsvp" else label.capitalize()


def author_display_name(item: dict[str, Any]) -> str:
    author = item.get("author") or {}
    if author.get("name"):
        return str(author["name"])
    url = author.get("url") or item.get("url")
    if not url:
        return "Unknown"
    split = urlsplit(str(url))
    if not split.scheme or not split.hostname:
        return "Unknown"
    return split.hostname + split.path.rstrip("/")


def source_domain_for(item: dict[str, Any]) -> str | None:
    author = item.get("author") or {}
    return extract_domain(author.get("url") or item.get("url") or "")


def jf2_to_record(item: dict[str, Any], synced_at: str | None = None) -> dict[str, Any]:
    """Map an upstream JF2 entry onto a ``webmentions`` row."""
    author = item.get("author") or {}
    content = item.get("content") or {}
    content_html = None
    content_text = None
    if content.get("html"):
        content_html = sanitize_html(content["html"])
    elif content.get("text"):
        content_html = f"<p>{html.escape(content['text'])}</p>"
    if content.get("text"):
        content_text = content["text"]

    wm_id = item.get("wm-id")
    if wm_id is None:
        raise ValueError("entry is missing wm-id")
    now = synced_at or utc_now_iso()
    return {
        "wm_id": int(wm_id),
        "wm_received": item.get("wm-received") or now,
        "wm_property": item.get("wm-property"),
        "wm_target": item.get("wm-target"),
        "author_name": author.get("name") or None,
        "author_url": author.get("url") or None,
        "author_photo": author.get("photo") or None,
        "source_url": item.get("url") or None,
        "source_domain": source_domain_for(item),
        "published": item.get("published") or None,
        "content_html": content_html,
        "content_text": content_text,
        "name": item.get("name") or None,
        "hidden": 0,
        "hidden_at": None,
        "hidden_reason": None,
        "synced_at": now,
        "raw_json": json_dumps(item),
    }


def record_to_jf2(record: Webmention) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "type": "entry",
        "wm-id": record.wm_id,
        "wm-received": record.wm_received,
        "wm-property": record.wm_property,
        "wm-target": record.wm_target,
        "author": {
            "type": "card",
            "name": record.author_name or "",
            "url": record.author_url or "",
            "photo": record.author_photo or "",
        },
        "url": record.source_url or "",
        "published": record.published or record.wm_received,
    }
    if record.name:
        entry["name"] = record.name
    if record.content_html or record.content_text:
        content: dict[str, str] = {}
        if record.content_html:
            content["html"] = record.content_html
        if record.content_text:
            content["text"] = record.content_text
        entry["content"] = content
    return entry


def build_feed(records: Iterable[Webmention]) -> dict[str, Any]:
    return {
        "type": "feed",
        "name": "Webmentions",
        "children": [record_to_jf2(record) for record in records],
    }


def load_raw(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    try:
        loaded = json.loads(value)
    except ValueError:
        return None
    return loaded if isinstance(loaded, dict) else None

from __future__ import annotations

from dataclasses import dataclass, field

MENTION_TYPES = ("reply", "like", "repost", "mention", "bookmark", "rsvp")
HIDDEN_REASONS = ("manual", "blocklist", "privacy")
BLOCK_REASONS = ("spam", "privacy", "manual")


@dataclass(frozen=True)
class Webmention:
    wm_id: int
    wm_received: str
    wm_property: str | None
    wm_target: str | None
    author_name: str | None
    author_url: str | None
    author_photo: str | None
    source_url: str | None
    source_domain: str | None
    published: str | None
    content_html: str | None
    content_text: str | None
    name: str | None
    hidden: bool
    hidden_at: str | None
    hidden_reason: str | None
    synced_at: str
    raw: dict[str, object] | None


@dataclass(frozen=True)
class BlocklistEntry:
    domain: str
    reason: str
    blocked_at: str
    mentions_hidden: int


@dataclass(frozen=True)
class AuthorData:
    photo_url: str | None = None
    author_url: str | None = None

    def is_empty(self) -> bool:
        return not self.photo_url and not self.author_url


@dataclass(frozen=True)
class HCardCacheEntry:
    domain: str
    photo_url: str | None
    author_url: str | None
    fetched_at: str


@dataclass
class SyncState:
    last_sync_at: str | None = None
    running: bool = False
    last_error: str | None = None
    added_count: int = 0
    filtered_count: int = 0


@dataclass(frozen=True)
class SyncResult:
    ok: bool
    mode: str
    added_count: int = 0
    filtered_count: int = 0
    enriched_count: int = 0
    error: str | None = None
    error_code: str | None = None
    extra: dict[str, object] = field(default_factory=dict)

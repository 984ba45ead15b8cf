# Data types shared by the materialization pipeline and the status sync engine
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone

import constants


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value):
    """Parses an ISO-8601 timestamp (as sent by Miniflux) into an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Entry:
    id: int
    title: str
    url: str
    content: str
    published_at: str | None = None
    status: str = constants.STATUS_UNREAD
    starred: bool = False
    summary: str = ""
    changed_at: str | None = None
    feed_id: int | None = None
    feed_title: str | None = None
    category_id: int | None = None
    category_title: str | None = None

    @classmethod
    def from_api(cls, data):
        """Builds an Entry from a Miniflux entry JSON object."""
        feed = data.get("feed") or {}
        category = feed.get("category") or {}
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            url=data.get("url") or "",
            content=data.get("content") or "",
            published_at=data.get("published_at"),
            status=data.get("status") or constants.STATUS_UNREAD,
            starred=bool(data.get("starred", False)),
            summary=data.get("summary") or "",
            changed_at=data.get("changed_at"),
            feed_id=feed.get("id"),
            feed_title=feed.get("title"),
            category_id=category.get("id"),
            category_title=category.get("title"),
        )


@dataclass
class ImageRef:
    src: str
    filename: str
    width: int | None = None
    height: int | None = None
    src2x: str | None = None
    outcome: str = "pending" # pending | success | failed

    @property
    def download_url(self):
        return self.src2x or self.src

    @property
    def downloaded(self):
        return self.outcome == "success"


@dataclass
class MetadataRecord:
    entry_id: int
    title: str
    url: str
    status: str
    starred: bool
    published_at: str | None
    include_images: bool
    images_found: int = 0
    images_downloaded: int = 0
    sync_status: str = constants.SYNC_SYNCED
    previous_entry_id: int | None = None
    next_entry_id: int | None = None
    feed_id: int | None = None
    feed_title: str | None = None
    category_id: int | None = None
    category_title: str | None = None
    images: dict = field(default_factory=dict) # filename -> source URL
    last_updated: str | None = None

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        known = cls.__dataclass_fields__.keys()
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class QueueEntry:
    entry_id: int
    old_status: str
    new_status: str
    old_starred: bool
    new_starred: bool
    timestamp: float
    retry_count: int = 0

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(
            entry_id=int(data["entry_id"]),
            old_status=data["old_status"],
            new_status=data["new_status"],
            old_starred=bool(data.get("old_starred", False)),
            new_starred=bool(data.get("new_starred", False)),
            timestamp=float(data.get("timestamp", 0)),
            retry_count=int(data.get("retry_count", 0)),
        )


@dataclass(frozen=True)
class LocalBundle:
    entry_id: int
    directory: str
    html_path: str
    metadata: MetadataRecord


@dataclass(frozen=True)
class MaterializeOptions:
    include_images: bool = True
    ordering_context: tuple = () # Entry ids in the order the caller displays them


@dataclass(frozen=True)
class ProgressEvent:
    entry_id: int
    state: str
    current: int = 0
    total: int = 0
    message: str = ""


@dataclass
class MaterializeResult:
    entry_id: int
    state: str
    bundle: LocalBundle | None = None
    error: Exception | None = None
    already_existed: bool = False
    image_failures: list = field(default_factory=list)

    @property
    def ok(self):
        return self.bundle is not None and self.error is None

    @property
    def summary(self):
        if self.error is not None:
            return f"Failed to download entry {self.entry_id}: {self.error}"
        if self.bundle is None:
            return f"Download of entry {self.entry_id} was cancelled"
        metadata = self.bundle.metadata
        if not metadata.include_images or metadata.images_found == 0:
            return f"Entry {self.entry_id} downloaded"
        return (f"Entry {self.entry_id} downloaded "
                f"({metadata.images_downloaded} of {metadata.images_found} images downloaded)")


@dataclass(frozen=True)
class StatusChangeResult:
    entry_id: int
    status: str
    starred: bool
    sync_status: str
    superseded: bool = False

    @property
    def synced(self):
        return self.sync_status == constants.SYNC_SYNCED

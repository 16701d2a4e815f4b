from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as dt_parser

SOURCE_KINDS = ("feed", "social", "manual")
EVENT_KINDS = ("viewed", "favorited", "shared")
MEDIA_KINDS = ("photo", "video", "animated_gif")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(value: Any, default: datetime | None = None) -> datetime | None:
    """Coerce a datetime or date string into an aware UTC datetime."""
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = dt_parser.parse(str(value))
        except (ValueError, OverflowError):
            return default
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def item_id(identity: str) -> str:
    return hashlib.sha256(identity.encode("utf-8")).hexdigest()[:16]


@dataclass
class Media:
    kind: str = "photo"
    url: str = ""
    variants: list[dict[str, Any]] = field(default_factory=list)
    width: int | None = None
    height: int | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Media":
        return cls(
            kind=d.get("kind") or d.get("type") or "photo",
            url=d.get("url") or "",
            variants=list(d.get("variants") or []),
            width=d.get("width"),
            height=d.get("height"),
        )


@dataclass
class ContentItem:
    title: str
    url: str | None = None
    external_id: str | None = None
    summary: str = ""
    body: str = ""
    media: list[Media] = field(default_factory=list)
    image_url: str | None = None
    video_url: str | None = None
    source: str = ""
    source_kind: str = "manual"
    published_at: datetime = field(default_factory=utcnow)
    lang: str = "en"
    categories: list[str] = field(default_factory=list)
    top_category: str | None = None
    tags: list[str] = field(default_factory=list)
    is_published: bool = True
    is_breaking: bool = False
    pin_rank: int | None = None
    related: list[str] = field(default_factory=list)
    id: str = ""
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.source_kind not in SOURCE_KINDS:
            raise ValueError(f"unsupported_source_kind:{self.source_kind}")
        if self.url and self.external_id:
            raise ValueError("identity_conflict: url and external_id are mutually exclusive")
        if not self.url and not self.external_id:
            raise ValueError("identity_missing: url or external_id required")
        self.published_at = parse_ts(self.published_at, utcnow())
        self.media = [m if isinstance(m, Media) else Media.from_dict(m) for m in self.media]
        if not self.id:
            self.id = item_id(self.identity())

    def identity(self) -> str:
        return f"url:{self.url}" if self.url else f"ext:{self.external_id}"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["published_at"] = _iso(self.published_at)
        d["created_at"] = _iso(self.created_at)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ContentItem":
        data = dict(d)
        data["media"] = [Media.from_dict(m) for m in data.get("media") or []]
        data["published_at"] = parse_ts(data.get("published_at"), utcnow())
        data["created_at"] = parse_ts(data.get("created_at"))
        return cls(**data)


@dataclass
class Tag:
    id: str
    name: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "created_at": _iso(self.created_at)}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Tag":
        return cls(id=d["id"], name=d["name"], created_at=parse_ts(d.get("created_at"), utcnow()))


@dataclass
class InteractionEvent:
    id: str
    device_id: str
    item_id: str
    kind: str
    ts: datetime = field(default_factory=utcnow)
    dwell_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["ts"] = _iso(self.ts)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "InteractionEvent":
        data = dict(d)
        data["ts"] = parse_ts(data.get("ts"), utcnow())
        return cls(**data)


@dataclass
class DeviceProfile:
    device_id: str
    token: str | None = None
    subscribed_categories: list[str] = field(default_factory=list)
    interest: dict[str, float] = field(default_factory=dict)
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["updated_at"] = _iso(self.updated_at)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "DeviceProfile":
        data = dict(d)
        data["updated_at"] = parse_ts(data.get("updated_at"))
        return cls(**data)

from __future__ import annotations

import copy
import json
import os
import threading
import uuid
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from pipeline.config import ROOT
from pipeline.models import ContentItem, DeviceProfile, InteractionEvent, Tag, utcnow

STORE_FILE = ROOT / "data" / "store.json"

_UNSET: Any = object()


class DuplicateKeyError(Exception):
    """A write collided with a unique identity field (url, external id, tag name)."""

    def __init__(self, field: str, value: str):
        super().__init__(f"duplicate_key {field}={value}")
        self.field = field
        self.value = value


class NotFoundError(KeyError):
    pass


def _recency_key(it: ContentItem) -> tuple[float, str]:
    return (it.published_at.timestamp(), it.id)


class MemoryStore:
    """Repository for items, tags, devices and interaction events.

    Every read returns a copy, so callers must write back through the store.
    Unique indexes (item url, item external id, tag name) are checked under a
    single re-entrant lock, which is what makes the insert-if-absent calls atomic.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._items: dict[str, ContentItem] = {}
        self._by_url: dict[str, str] = {}
        self._by_external_id: dict[str, str] = {}
        self._tags: dict[str, Tag] = {}
        self._tag_by_name: dict[str, str] = {}
        self._devices: dict[str, DeviceProfile] = {}
        self._events: list[InteractionEvent] = []

    def _commit(self) -> None:
        pass

    # -- items -----------------------------------------------------------

    def _existing_id(self, item: ContentItem) -> str | None:
        if item.url:
            return self._by_url.get(item.url)
        return self._by_external_id.get(item.external_id or "")

    def insert_item(self, item: ContentItem) -> ContentItem:
        with self._lock:
            if item.url and item.url in self._by_url:
                raise DuplicateKeyError("url", item.url)
            if item.external_id and item.external_id in self._by_external_id:
                raise DuplicateKeyError("external_id", item.external_id)
            if item.id in self._items:
                raise DuplicateKeyError("id", item.id)
            stored = copy.deepcopy(item)
            stored.created_at = stored.created_at or utcnow()
            self._items[stored.id] = stored
            if stored.url:
                self._by_url[stored.url] = stored.id
            if stored.external_id:
                self._by_external_id[stored.external_id] = stored.id
            self._commit()
            return copy.deepcopy(stored)

    def insert_item_if_absent(self, item: ContentItem) -> tuple[ContentItem, bool]:
        with self._lock:
            existing = self._existing_id(item)
            if existing is not None:
                return copy.deepcopy(self._items[existing]), False
            return self.insert_item(item), True

    def get_item(self, item_id: str) -> ContentItem | None:
        with self._lock:
            it = self._items.get(item_id)
            return copy.deepcopy(it) if it else None

    def find_item_by_url(self, url: str) -> ContentItem | None:
        with self._lock:
            iid = self._by_url.get(url)
            return copy.deepcopy(self._items[iid]) if iid else None

    def find_item_by_external_id(self, external_id: str) -> ContentItem | None:
        with self._lock:
            iid = self._by_external_id.get(external_id)
            return copy.deepcopy(self._items[iid]) if iid else None

    def save_item(self, item: ContentItem) -> ContentItem:
        with self._lock:
            if item.id not in self._items:
                raise NotFoundError(item.id)
            self._items[item.id] = copy.deepcopy(item)
            self._commit()
            return copy.deepcopy(item)

    def update_item(self, item_id: str, **fields: Any) -> ContentItem:
        with self._lock:
            cur = self._items.get(item_id)
            if cur is None:
                raise NotFoundError(item_id)
            bad = [k for k in fields if k in {"id", "url", "external_id"} or not hasattr(cur, k)]
            if bad:
                raise ValueError(f"field_not_updatable:{','.join(bad)}")
            for k, v in fields.items():
                setattr(cur, k, copy.deepcopy(v))
            self._commit()
            return copy.deepcopy(cur)

    def all_items(self) -> list[ContentItem]:
        with self._lock:
            return [copy.deepcopy(it) for it in self._items.values()]

    def items_with_any_tag(self, tag_ids: Iterable[str]) -> list[ContentItem]:
        wanted = set(tag_ids)
        if not wanted:
            return []
        with self._lock:
            return [copy.deepcopy(it) for it in self._items.values() if wanted & set(it.tags)]

    def search_items(self, query: str, limit: int = 10, visible_only: bool = False) -> list[ContentItem]:
        """Case-insensitive substring match on title or summary, newest first."""
        q = (query or "").casefold()
        if not q:
            return []
        with self._lock:
            rows = [
                it
                for it in self._items.values()
                if (it.is_published or not visible_only)
                and (q in (it.title or "").casefold() or q in (it.summary or "").casefold())
            ]
            rows.sort(key=_recency_key, reverse=True)
            return [copy.deepcopy(it) for it in rows[: max(0, int(limit))]]

    def recent_items(
        self,
        since: datetime | None = None,
        before: datetime | None = None,
        limit: int | None = None,
        visible_only: bool = True,
    ) -> list[ContentItem]:
        """Items ordered most recent first, optionally bounded in time and count."""
        with self._lock:
            rows = []
            for it in self._items.values():
                if visible_only and not it.is_published:
                    continue
                if since is not None and it.published_at < since:
                    continue
                if before is not None and it.published_at >= before:
                    continue
                rows.append(it)
            rows.sort(key=_recency_key, reverse=True)
            if limit is not None:
                rows = rows[: max(0, int(limit))]
            return [copy.deepcopy(it) for it in rows]

    # -- tags ------------------------------------------------------------

    def upsert_tag(self, name: str) -> Tag:
        with self._lock:
            tid = self._tag_by_name.get(name)
            if tid is not None:
                return copy.deepcopy(self._tags[tid])
            tag = Tag(id=uuid.uuid4().hex[:12], name=name)
            self._tags[tag.id] = tag
            self._tag_by_name[name] = tag.id
            self._commit()
            return copy.deepcopy(tag)

    def find_tag(self, name: str) -> Tag | None:
        with self._lock:
            tid = self._tag_by_name.get(name)
            return copy.deepcopy(self._tags[tid]) if tid else None

    def get_tags(self, tag_ids: Iterable[str]) -> list[Tag]:
        with self._lock:
            return [copy.deepcopy(self._tags[t]) for t in tag_ids if t in self._tags]

    def tag_count(self, name: str | None = None) -> int:
        with self._lock:
            if name is None:
                return len(self._tags)
            return sum(1 for t in self._tags.values() if t.name == name)

    # -- devices ---------------------------------------------------------

    def upsert_device(
        self,
        device_id: str,
        token: str | None = _UNSET,
        subscribed_categories: Iterable[str] | None = _UNSET,
    ) -> DeviceProfile:
        with self._lock:
            dev = self._devices.get(device_id) or DeviceProfile(device_id=device_id)
            if token is not _UNSET:
                dev.token = token
            if subscribed_categories is not _UNSET:
                dev.subscribed_categories = list(dict.fromkeys(subscribed_categories or []))
            self._devices[device_id] = dev
            self._commit()
            return copy.deepcopy(dev)

    def get_device(self, device_id: str) -> DeviceProfile | None:
        with self._lock:
            dev = self._devices.get(device_id)
            return copy.deepcopy(dev) if dev else None

    def delete_device(self, device_id: str) -> bool:
        with self._lock:
            removed = self._devices.pop(device_id, None) is not None
            if removed:
                self._commit()
            return removed

    def device_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._devices)

    def devices_subscribed_to(self, categories: Iterable[str]) -> list[DeviceProfile]:
        wanted = set(categories)
        with self._lock:
            rows = [d for d in self._devices.values() if wanted & set(d.subscribed_categories)]
            return [copy.deepcopy(d) for d in sorted(rows, key=lambda d: d.device_id)]

    def set_interest_vector(self, device_id: str, vector: dict[str, float], updated_at: datetime | None = None) -> DeviceProfile:
        with self._lock:
            dev = self._devices.get(device_id)
            if dev is None:
                raise NotFoundError(device_id)
            dev.interest = dict(vector)
            dev.updated_at = updated_at or utcnow()
            self._commit()
            return copy.deepcopy(dev)

    # -- interaction events ----------------------------------------------

    def append_event(self, event: InteractionEvent) -> InteractionEvent:
        with self._lock:
            self._events.append(copy.deepcopy(event))
            self._commit()
            return event

    def events_for_device(self, device_id: str, since: datetime | None = None) -> list[InteractionEvent]:
        with self._lock:
            return [
                copy.deepcopy(e)
                for e in self._events
                if e.device_id == device_id and (since is None or e.ts >= since)
            ]

    def all_events(self) -> list[InteractionEvent]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._events]

    # -- serialization ---------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "items": [it.to_dict() for it in self._items.values()],
                "tags": [t.to_dict() for t in self._tags.values()],
                "devices": [d.to_dict() for d in self._devices.values()],
                "events": [e.to_dict() for e in self._events],
            }

    def restore(self, payload: dict[str, Any]) -> None:
        with self._lock:
            for row in payload.get("items", []) or []:
                it = ContentItem.from_dict(row)
                self._items[it.id] = it
                if it.url:
                    self._by_url[it.url] = it.id
                if it.external_id:
                    self._by_external_id[it.external_id] = it.id
            for row in payload.get("tags", []) or []:
                tag = Tag.from_dict(row)
                self._tags[tag.id] = tag
                self._tag_by_name[tag.name] = tag.id
            for row in payload.get("devices", []) or []:
                dev = DeviceProfile.from_dict(row)
                self._devices[dev.device_id] = dev
            self._events = [InteractionEvent.from_dict(row) for row in payload.get("events", []) or []]


class JsonStore(MemoryStore):
    """MemoryStore persisted to a single JSON file after every write."""

    def __init__(self, path: Path | str | None = None) -> None:
        super().__init__()
        self.path = Path(path or os.getenv("NEWSFEED_STORE_FILE") or STORE_FILE)
        if self.path.exists():
            self.restore(json.loads(self.path.read_text(encoding="utf-8")))

    def _commit(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self.snapshot(), ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)


def open_store(path: Path | str | None = None) -> JsonStore:
    return JsonStore(path)

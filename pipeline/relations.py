from __future__ import annotations

from typing import Any

from pipeline.config import load_config
from pipeline.models import ContentItem
from pipeline.tags import find_or_create_tags, tag_names

DEFAULTS: dict[str, Any] = {
    "link_prefix": "link:",
    "max_related": 3,
    "auto_tags": {
        "Sports": ["cricket", "ipl", "football", "t20", "virat kohli", "rohit sharma", "world cup"],
        "Entertainment": ["tollywood", "bollywood", "review", "prabhas", "allu arjun", "mahesh babu"],
        "Politics": ["election", "parliament", "narendra modi", "revanth reddy", "chandrababu naidu"],
        "Technology": ["iphone", "android", "google", "samsung", "ai", "meta", "whatsapp"],
    },
}


def load_cfg() -> dict[str, Any]:
    return load_config("relations", DEFAULTS)


def apply_category_tags(store: Any, item: ContentItem, cfg: dict[str, Any] | None = None) -> ContentItem:
    """Add the top category's auto-tag phrases found in title + summary.

    Only additive; the item is written back only when its tag list grew.
    """
    cfg = cfg or load_cfg()
    phrases = (cfg.get("auto_tags") or {}).get(item.top_category or "", []) or []
    text = f"{item.title or ''} {item.summary or ''}".lower()
    hits = [p for p in phrases if isinstance(p, str) and p.strip() and p.lower() in text]
    if not hits:
        return item

    new_ids = [tid for tid in find_or_create_tags(store, hits) if tid not in item.tags]
    if not new_ids:
        return item
    item.tags = list(item.tags) + new_ids
    return store.update_item(item.id, tags=item.tags)


def _related_order(rows: list[ContentItem]) -> list[ContentItem]:
    return sorted(rows, key=lambda x: (x.published_at.timestamp(), x.id), reverse=True)


def split_link_tags(names: dict[str, str], prefix: str) -> tuple[set[str], set[str]]:
    link = {tid for tid, name in names.items() if name.startswith(prefix)}
    ordinary = set(names) - link
    return link, ordinary


def link_tag_ids(store: Any, item: ContentItem, cfg: dict[str, Any] | None = None) -> set[str]:
    cfg = cfg or load_cfg()
    prefix = str(cfg.get("link_prefix", "link:")).casefold()
    return split_link_tags(tag_names(store, item.tags), prefix)[0]


def refresh_link_pools(store: Any, tag_ids: set[str], cfg: dict[str, Any] | None = None) -> dict[str, list[str]]:
    """Recompute every pool still reachable through ``tag_ids``.

    Used after an item leaves a pool, so the members it left stop listing it.
    """
    written: dict[str, list[str]] = {}
    for m in _related_order(store.items_with_any_tag(tag_ids)):
        if m.id not in written:
            written.update(update_related_items(store, m.id, cfg))
    return written


def update_related_items(store: Any, item_id: str, cfg: dict[str, Any] | None = None) -> dict[str, list[str]]:
    """Recompute related-item lists starting from ``item_id``.

    Link-tagged items: every member of the pool sharing one of this item's link
    tags gets the other pool members it directly shares a link tag with. One hop
    only, no transitive grouping. Otherwise the item alone gets the most recent
    items sharing an ordinary tag. Returns {item_id: related ids} for every write.
    """
    cfg = cfg or load_cfg()
    prefix = str(cfg.get("link_prefix", "link:")).casefold()
    max_related = int(cfg.get("max_related", 3))

    item = store.get_item(item_id)
    if item is None:
        print(f"related_skipped id={item_id} reason=missing")
        return {}

    link_ids, ordinary_ids = split_link_tags(tag_names(store, item.tags), prefix)

    if link_ids:
        pool = _related_order(store.items_with_any_tag(link_ids))
        pool_names = tag_names(store, sorted({t for m in pool for t in m.tags}))
        member_links = {m.id: split_link_tags({t: pool_names[t] for t in m.tags if t in pool_names}, prefix)[0] for m in pool}

        written: dict[str, list[str]] = {}
        for m in pool:
            related = [o.id for o in pool if o.id != m.id and member_links[o.id] & member_links[m.id]]
            try:
                store.update_item(m.id, related=related)
            except Exception as e:
                print(f"related_update_error id={m.id} err={e}")
                continue
            written[m.id] = related
        return written

    related: list[str] = []
    if ordinary_ids:
        candidates = [o for o in store.items_with_any_tag(ordinary_ids) if o.id != item.id]
        related = [o.id for o in _related_order(candidates)[:max_related]]
    store.update_item(item.id, related=related)
    return {item.id: related}

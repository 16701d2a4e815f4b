from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pipeline.config import load_config
from pipeline.models import ContentItem, parse_ts, utcnow

DEFAULTS: dict[str, Any] = {
    "personalization_weight": 0.7,
    "recency_weight": 0.3,
    "recency_hours": 72,
    "window_days": 3,
    "pool_cap": 300,
    "default_limit": 20,
}


@dataclass
class ScoredItem:
    item: ContentItem
    personalization: float
    recency: float
    relevance: float


def load_cfg() -> dict[str, Any]:
    return load_config("ranking", DEFAULTS)


def curated_feed(
    store: Any,
    limit: int = 20,
    categories: list[str] | None = None,
    source: str | None = None,
    before: datetime | None = None,
) -> tuple[list[ContentItem], datetime | None]:
    """Visible items, newest first, paged by publish time.

    ``next_cursor`` is the publish time of the last item when the page came
    back full; pass it as ``before`` to fetch the next page.
    """
    limit = max(0, int(limit))
    wanted = set(categories or [])
    src = (source or "").casefold()

    page: list[ContentItem] = []
    for it in store.recent_items(before=before):
        if len(page) >= limit:
            break
        if wanted and not wanted & set(it.categories):
            continue
        if src and (it.source or "").casefold() != src:
            continue
        page.append(it)

    next_cursor = page[-1].published_at if limit and len(page) == limit else None
    return page, next_cursor


def recency_feed(store: Any, limit: int = 20) -> list[ContentItem]:
    return curated_feed(store, limit)[0]


def search_items(store: Any, q: str, limit: int = 10) -> list[ContentItem]:
    """Title/summary search, newest first; a blank query returns nothing."""
    q = (q or "").strip()
    if not q:
        return []
    return store.search_items(q, limit=limit)


def personalization_score(item: ContentItem, vector: dict[str, float]) -> float:
    return sum(float(vector.get(cat, 0.0)) for cat in dict.fromkeys(item.categories))


def recency_score(item: ContentItem, now: datetime, horizon_hours: float = 72.0) -> float:
    hours_old = max((now - item.published_at).total_seconds() / 3600.0, 0.0)
    return max(0.0, 1.0 - hours_old / max(1.0, float(horizon_hours)))


def score_candidates(
    items: list[ContentItem],
    vector: dict[str, float],
    now: datetime | None = None,
    cfg: dict[str, Any] | None = None,
) -> list[ScoredItem]:
    """Blend interest match and freshness, best first; ties go to the newer item."""
    cfg = cfg or load_cfg()
    now = now or utcnow()
    pw = float(cfg.get("personalization_weight", 0.7))
    rw = float(cfg.get("recency_weight", 0.3))
    horizon = float(cfg.get("recency_hours", 72))

    out = []
    for it in items:
        p = personalization_score(it, vector)
        r = recency_score(it, now, horizon)
        out.append(ScoredItem(item=it, personalization=p, recency=r, relevance=pw * p + rw * r))
    out.sort(key=lambda s: (s.relevance, s.item.published_at, s.item.id), reverse=True)
    return out


def candidate_pool(store: Any, now: datetime, cfg: dict[str, Any]) -> list[ContentItem]:
    since = now - timedelta(days=float(cfg.get("window_days", 3)))
    return store.recent_items(since=since, limit=int(cfg.get("pool_cap", 300)))


def rank_feed(
    store: Any,
    device_id: str,
    limit: int | None = None,
    now: datetime | None = None,
    cfg: dict[str, Any] | None = None,
) -> list[ContentItem]:
    """Personalized feed for a device; falls back to the recency feed on cold start."""
    cfg = cfg or load_cfg()
    now = now or utcnow()
    limit = int(limit if limit is not None else cfg.get("default_limit", 20))

    dev = store.get_device(device_id)
    vector = dev.interest if dev is not None else {}
    if not vector:
        return recency_feed(store, limit)

    scored = score_candidates(candidate_pool(store, now, cfg), vector, now, cfg)
    return [s.item for s in scored[: max(0, limit)]]


def main() -> None:
    from pipeline.store import open_store

    ap = argparse.ArgumentParser()
    ap.add_argument("--device")
    ap.add_argument("--limit", type=int, default=None)
    ap.add_argument("--categories", default="")
    ap.add_argument("--source")
    ap.add_argument("--before")
    ap.add_argument("--search")
    args = ap.parse_args()

    store = open_store()
    cfg = load_cfg()
    limit = args.limit if args.limit is not None else int(cfg.get("default_limit", 20))
    if args.search:
        rows = search_items(store, args.search, args.limit if args.limit is not None else 10)
        cursor = None
    elif args.device:
        rows = rank_feed(store, args.device, limit, cfg=cfg)
        cursor = None
    else:
        cats = [c.strip() for c in args.categories.split(",") if c.strip()]
        before = parse_ts(args.before) if args.before else None
        if args.before and before is None:
            raise SystemExit(f"invalid_cursor:{args.before}")
        rows, cursor = curated_feed(store, limit, cats, args.source, before)

    for it in rows:
        print(f"{it.published_at.isoformat()} [{it.top_category}] {it.title} id={it.id}")
    print(f"feed_items={len(rows)} next_cursor={cursor.isoformat() if cursor else ''}")


if __name__ == "__main__":
    main()

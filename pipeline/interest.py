from __future__ import annotations

import argparse
import math
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta
from typing import Any

from pipeline.config import load_config
from pipeline.models import ContentItem, InteractionEvent, utcnow

DEFAULTS: dict[str, Any] = {
    "event_weights": {"viewed": 1.0, "favorited": 3.0, "shared": 5.0},
    "decay_per_day": 0.05,
    "lookback_days": 30,
    "workers": 4,
}


def load_cfg() -> dict[str, Any]:
    return load_config("interest", DEFAULTS)


def event_score(ev: InteractionEvent, now: datetime, cfg: dict[str, Any]) -> float:
    weight = float((cfg.get("event_weights") or {}).get(ev.kind, 0.0))
    age_days = max((now - ev.ts).total_seconds() / 86400.0, 0.0)
    return weight * math.exp(-float(cfg.get("decay_per_day", 0.05)) * age_days)


def build_interest_vector(
    events: list[InteractionEvent],
    items_by_id: dict[str, ContentItem],
    now: datetime | None = None,
    cfg: dict[str, Any] | None = None,
) -> dict[str, float]:
    """Decayed, normalized category weights; empty when nothing scores.

    Every category of the referenced item receives the full event score.
    Events pointing at items that are gone are ignored.
    """
    cfg = cfg or load_cfg()
    now = now or utcnow()
    raw: dict[str, float] = defaultdict(float)
    for ev in events:
        item = items_by_id.get(ev.item_id)
        if item is None:
            continue
        score = event_score(ev, now, cfg)
        for cat in item.categories:
            raw[cat] += score

    total = sum(raw.values())
    if total <= 0:
        return {}
    return {cat: v / total for cat, v in raw.items()}


def rebuild_device_profile(store: Any, device_id: str, now: datetime | None = None, cfg: dict[str, Any] | None = None) -> dict[str, float]:
    cfg = cfg or load_cfg()
    now = now or utcnow()
    since = now - timedelta(days=int(cfg.get("lookback_days", 30)))
    events = store.events_for_device(device_id, since=since)

    items_by_id: dict[str, ContentItem] = {}
    for ev in events:
        if ev.item_id not in items_by_id:
            it = store.get_item(ev.item_id)
            if it is not None:
                items_by_id[ev.item_id] = it

    vector = build_interest_vector(events, items_by_id, now, cfg) if events else {}
    store.set_interest_vector(device_id, vector, updated_at=now)
    return vector


def rebuild_all_profiles(store: Any, now: datetime | None = None, workers: int | None = None, cfg: dict[str, Any] | None = None) -> dict[str, int]:
    """Recompute every device's vector; one task per device, devices never share state."""
    cfg = cfg or load_cfg()
    now = now or utcnow()
    workers = max(1, int(workers or cfg.get("workers", 4)))
    stats = {"devices": 0, "cold": 0, "errors": 0}

    with ThreadPoolExecutor(max_workers=workers) as ex:
        futures = {ex.submit(rebuild_device_profile, store, did, now, cfg): did for did in store.device_ids()}
        for fut in as_completed(futures):
            did = futures[fut]
            try:
                vector = fut.result()
            except Exception as e:
                stats["errors"] += 1
                print(f"profile_rebuild_error device={did} err={e}")
                continue
            stats["devices"] += 1
            stats["cold"] += int(not vector)

    print(f"profiles_rebuilt devices={stats['devices']} cold={stats['cold']} errors={stats['errors']}")
    return stats


def report(store: Any, top_n: int = 3) -> None:
    for did in store.device_ids():
        dev = store.get_device(did)
        if dev is None:
            continue
        top = sorted(dev.interest.items(), key=lambda kv: kv[1], reverse=True)[:top_n]
        shown = ",".join(f"{k}:{v:.3f}" for k, v in top) or "cold"
        print(f"profile device={did} top={shown}")


def main() -> None:
    from pipeline.store import open_store

    ap = argparse.ArgumentParser()
    sub = ap.add_subparsers(dest="cmd", required=True)
    r = sub.add_parser("rebuild")
    r.add_argument("--workers", type=int, default=None)
    sub.add_parser("report")
    args = ap.parse_args()

    store = open_store()
    if args.cmd == "rebuild":
        rebuild_all_profiles(store, workers=args.workers)
    elif args.cmd == "report":
        report(store)


if __name__ == "__main__":
    main()

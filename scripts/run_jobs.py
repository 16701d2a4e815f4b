from __future__ import annotations

import argparse
import time
from typing import Any

from collectors import collect
from pipeline.classify import classify_unclassified
from pipeline.config import load_config
from pipeline.ingest import build_pipeline
from pipeline.interest import rebuild_all_profiles
from pipeline.ranking import curated_feed, rank_feed
from pipeline.scheduler import RecurringTask, Scheduler
from pipeline.store import open_store

DEFAULTS: dict[str, Any] = {
    "collect_minutes": 30,
    "profiles_minutes": 60,
    "classify_minutes": 360,
    "run_at_start": True,
}


def build_tasks(store: Any, cfg: dict[str, Any]) -> list[RecurringTask]:
    pipeline = build_pipeline(store)
    at_start = bool(cfg.get("run_at_start", True))
    return [
        RecurringTask("collect", float(cfg["collect_minutes"]) * 60, lambda: collect.run(pipeline), at_start),
        RecurringTask("rebuild-profiles", float(cfg["profiles_minutes"]) * 60, lambda: rebuild_all_profiles(store), at_start),
        RecurringTask("classify-all", float(cfg["classify_minutes"]) * 60, lambda: classify_unclassified(store), False),
    ]


def run_scheduler(store: Any, cfg: dict[str, Any]) -> None:
    sched = Scheduler(build_tasks(store, cfg))
    sched.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        sched.stop()


def main() -> None:
    ap = argparse.ArgumentParser()
    sub = ap.add_subparsers(dest="cmd", required=True)
    sub.add_parser("collect")
    r = sub.add_parser("rebuild-profiles")
    r.add_argument("--workers", type=int, default=None)
    sub.add_parser("classify-all")
    f = sub.add_parser("feed")
    f.add_argument("--device")
    f.add_argument("--limit", type=int, default=20)
    sub.add_parser("run-scheduler")
    args = ap.parse_args()

    store = open_store()
    cfg = load_config("jobs", DEFAULTS)

    if args.cmd == "collect":
        collect.run(build_pipeline(store))
    elif args.cmd == "rebuild-profiles":
        rebuild_all_profiles(store, workers=args.workers)
    elif args.cmd == "classify-all":
        classify_unclassified(store)
    elif args.cmd == "feed":
        rows = rank_feed(store, args.device, args.limit) if args.device else curated_feed(store, args.limit)[0]
        for it in rows:
            print(f"{it.published_at.isoformat()} [{it.top_category}] {it.title}")
        print(f"feed_items={len(rows)}")
    elif args.cmd == "run-scheduler":
        run_scheduler(store, cfg)


if __name__ == "__main__":
    main()

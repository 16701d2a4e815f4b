from __future__ import annotations

import argparse
import uuid
from collections import Counter
from datetime import datetime
from typing import Any

from pipeline.models import EVENT_KINDS, InteractionEvent, parse_ts, utcnow
from pipeline.store import NotFoundError


def record_event(
    store: Any,
    device_id: str,
    item_id: str,
    kind: str,
    dwell_seconds: float | None = None,
    ts: datetime | str | None = None,
) -> InteractionEvent:
    """Append one interaction signal. Events are write-once."""
    if kind not in EVENT_KINDS:
        raise ValueError(f"event kind must be one of {sorted(EVENT_KINDS)}")
    if not device_id:
        raise ValueError("device_id_required")
    if store.get_item(item_id) is None:
        raise NotFoundError(item_id)
    if dwell_seconds is not None and float(dwell_seconds) < 0:
        raise ValueError("dwell_seconds_negative")

    event = InteractionEvent(
        id=uuid.uuid4().hex,
        device_id=device_id,
        item_id=item_id,
        kind=kind,
        ts=parse_ts(ts, utcnow()),
        dwell_seconds=float(dwell_seconds) if dwell_seconds is not None else None,
    )
    store.append_event(event)
    print(f"event_added device={device_id} item={item_id} kind={kind}")
    return event


def summary(store: Any) -> dict[str, Any]:
    events = store.all_events()
    if not events:
        print("no_interaction_events")
        return {"events": 0, "kinds": {}, "items": {}}

    by_kind = Counter(e.kind for e in events)
    by_item = Counter(e.item_id for e in events)

    print("interaction_summary")
    print("kinds:")
    for k, v in by_kind.most_common():
        print(f"  - {k}: {v}")
    print("items:")
    for k, v in by_item.most_common(10):
        print(f"  - {k}: {v}")
    return {"events": len(events), "kinds": dict(by_kind), "items": dict(by_item.most_common(10))}


def main() -> None:
    from pipeline.store import open_store

    ap = argparse.ArgumentParser()
    sub = ap.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("add")
    a.add_argument("--device", required=True)
    a.add_argument("--item", required=True)
    a.add_argument("--kind", required=True, choices=sorted(EVENT_KINDS))
    a.add_argument("--dwell", type=float)

    sub.add_parser("summary")

    args = ap.parse_args()
    store = open_store()
    if args.cmd == "add":
        record_event(store, args.device, args.item, args.kind, args.dwell)
    elif args.cmd == "summary":
        summary(store)


if __name__ == "__main__":
    main()

from __future__ import annotations

from typing import Any

from pipeline.config import load_config
from pipeline.models import ContentItem, DeviceProfile
from publish.push import ERROR_INVALID_TOKEN, DeliveryClient, PushMessage, is_expo_push_token

DEFAULTS: dict[str, Any] = {
    "enabled": True,
    "body_chars": 120,
    "deep_link": "/post/{id}",
}


def load_cfg() -> dict[str, Any]:
    return load_config("notifications", DEFAULTS)


def clean(s: str, n: int = 120) -> str:
    s = (s or "").replace("\n", " ").strip()
    return s if len(s) <= n else s[: n - 1].rstrip() + "…"


def chunked(rows: list[Any], size: int) -> list[list[Any]]:
    size = max(1, int(size))
    return [rows[i : i + size] for i in range(0, len(rows), size)]


def register_device(store: Any, device_id: str, token: str, categories: list[str] | None = None) -> DeviceProfile:
    """Create or update a device, rotating its delivery token and subscriptions."""
    if not device_id or not token:
        raise ValueError("device_id_and_token_required")
    if not is_expo_push_token(token):
        raise ValueError(f"invalid_push_token:{token}")
    return store.upsert_device(device_id, token=token, subscribed_categories=categories or [])


def resolve_targets(store: Any, categories: list[str]) -> list[DeviceProfile]:
    out: dict[str, DeviceProfile] = {}
    for dev in store.devices_subscribed_to(categories):
        if dev.token and dev.device_id not in out:
            out[dev.device_id] = dev
    return list(out.values())


def build_message(item: ContentItem, dev: DeviceProfile, cfg: dict[str, Any]) -> PushMessage:
    top = item.top_category or (item.categories[0] if item.categories else "")
    return PushMessage(
        token=dev.token or "",
        title=f"[{top}] {item.title}" if top else item.title,
        body=clean(item.summary or item.title, int(cfg.get("body_chars", 120))),
        data={"postId": item.id, "url": str(cfg.get("deep_link", "/post/{id}")).format(id=item.id)},
        device_id=dev.device_id,
    )


def notify_for_item(store: Any, item: ContentItem, client: DeliveryClient | None, cfg: dict[str, Any] | None = None) -> dict[str, int]:
    """Push the item to every device subscribed to one of its categories.

    Devices whose delivery fails with an invalid-token error are deleted so they
    are never targeted again. Other failures are only counted; nothing is retried here.
    """
    cfg = cfg or load_cfg()
    stats = {"targeted": 0, "sent": 0, "failed": 0, "pruned": 0, "batches": 0}
    if client is None or not cfg.get("enabled", True) or not item.categories:
        return stats

    targets = resolve_targets(store, item.categories)
    stats["targeted"] = len(targets)
    if not targets:
        return stats

    messages = [build_message(item, dev, cfg) for dev in targets]
    for batch in chunked(messages, getattr(client, "max_batch_size", 100)):
        stats["batches"] += 1
        try:
            tickets = client.send_batch(batch)
        except Exception as e:
            stats["failed"] += len(batch)
            print(f"push_batch_error item={item.id} size={len(batch)} err={e}")
            continue

        for msg, ticket in zip(batch, tickets):
            if ticket.ok:
                stats["sent"] += 1
                continue
            stats["failed"] += 1
            if ticket.error == ERROR_INVALID_TOKEN and msg.device_id:
                # a token rotated since targeting belongs to a live install
                cur = store.get_device(msg.device_id)
                if cur is not None and cur.token == msg.token and store.delete_device(msg.device_id):
                    stats["pruned"] += 1

    print(
        f"push_stats item={item.id} targeted={stats['targeted']} sent={stats['sent']} "
        f"failed={stats['failed']} pruned={stats['pruned']} batches={stats['batches']}"
    )
    return stats


class NotificationTargeter:
    """Binds a store and delivery client so the ingest pipeline can call ``notify(item)``."""

    def __init__(self, store: Any, client: DeliveryClient | None, cfg: dict[str, Any] | None = None):
        self.store = store
        self.client = client
        self.cfg = cfg or load_cfg()

    def notify(self, item: ContentItem) -> dict[str, int]:
        return notify_for_item(self.store, item, self.client, self.cfg)

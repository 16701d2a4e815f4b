from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
EXPO_MAX_BATCH = 100

ERROR_INVALID_TOKEN = "invalid_token"
ERROR_TRANSIENT = "transient"

_UUID_TOKEN = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.I)
# Expo error codes that mean the token will never work again.
_INVALID_TOKEN_ERRORS = {"DeviceNotRegistered"}


@dataclass
class PushMessage:
    token: str
    title: str
    body: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    device_id: str | None = None


@dataclass
class PushTicket:
    token: str
    ok: bool
    error: str | None = None
    detail: str = ""


class DeliveryClient(Protocol):
    max_batch_size: int

    def send_batch(self, messages: list[PushMessage]) -> list[PushTicket]: ...


def is_expo_push_token(token: str) -> bool:
    t = token or ""
    if (t.startswith("ExponentPushToken[") or t.startswith("ExpoPushToken[")) and t.endswith("]"):
        return True
    return bool(_UUID_TOKEN.match(t))


def ticket_from_response(token: str, row: dict[str, Any]) -> PushTicket:
    if row.get("status") == "ok":
        return PushTicket(token=token, ok=True)
    code = str((row.get("details") or {}).get("error") or "")
    kind = ERROR_INVALID_TOKEN if code in _INVALID_TOKEN_ERRORS else ERROR_TRANSIENT
    return PushTicket(token=token, ok=False, error=kind, detail=code or str(row.get("message", "")))


class ExpoPushClient:
    """Sends push messages through the Expo push service, one HTTP call per batch."""

    max_batch_size = EXPO_MAX_BATCH

    def __init__(self, access_token: str | None = None, url: str = EXPO_PUSH_URL, timeout: int = 20):
        self.access_token = access_token if access_token is not None else os.getenv("EXPO_ACCESS_TOKEN")
        self.url = url
        self.timeout = timeout

    def send_batch(self, messages: list[PushMessage]) -> list[PushTicket]:
        if len(messages) > self.max_batch_size:
            raise ValueError(f"batch_too_large:{len(messages)}>{self.max_batch_size}")

        tickets: dict[int, PushTicket] = {}
        outgoing: list[tuple[int, PushMessage]] = []
        for i, m in enumerate(messages):
            if is_expo_push_token(m.token):
                outgoing.append((i, m))
            else:
                tickets[i] = PushTicket(token=m.token, ok=False, error=ERROR_INVALID_TOKEN, detail="malformed_token")

        if outgoing:
            headers = {"Accept": "application/json", "Content-Type": "application/json"}
            if self.access_token:
                headers["Authorization"] = f"Bearer {self.access_token}"
            payload = [
                {"to": m.token, "sound": "default", "title": m.title, "body": m.body, "data": m.data}
                for _, m in outgoing
            ]
            r = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            rows = r.json().get("data", []) or []
            for pos, (i, m) in enumerate(outgoing):
                row = rows[pos] if pos < len(rows) else {"status": "error", "message": "missing_ticket"}
                tickets[i] = ticket_from_response(m.token, row)

        return [tickets[i] for i in range(len(messages))]

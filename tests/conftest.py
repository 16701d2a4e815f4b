"""
Shared fixtures: an in-memory store, recording collaborators and fixed config.
"""

from datetime import datetime, timezone

import pytest

from pipeline.models import ContentItem
from pipeline.store import MemoryStore
from publish.push import ERROR_INVALID_TOKEN, PushTicket

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config lookups at an empty directory so in-code defaults apply."""
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    monkeypatch.setenv("NEWSFEED_CONFIG_DIR", str(cfg_dir))
    return cfg_dir


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def relations_cfg():
    return {
        "link_prefix": "link:",
        "max_related": 3,
        "auto_tags": {"Sports": ["cricket", "t20"], "Politics": ["election"]},
    }


class FakeDeliveryClient:
    """Records every batch; tokens listed in ``invalid`` fail with invalid_token."""

    def __init__(self, max_batch_size=100, invalid=(), transient=(), fail_batches=0):
        self.max_batch_size = max_batch_size
        self.invalid = set(invalid)
        self.transient = set(transient)
        self.fail_batches = fail_batches
        self.batches = []

    def send_batch(self, messages):
        self.batches.append(list(messages))
        if self.fail_batches > 0:
            self.fail_batches -= 1
            raise ConnectionError("push service unavailable")
        out = []
        for m in messages:
            if m.token in self.invalid:
                out.append(PushTicket(token=m.token, ok=False, error=ERROR_INVALID_TOKEN))
            elif m.token in self.transient:
                out.append(PushTicket(token=m.token, ok=False, error="transient"))
            else:
                out.append(PushTicket(token=m.token, ok=True))
        return out

    @property
    def sent_tokens(self):
        return [m.token for batch in self.batches for m in batch]


class RecordingNotifier:
    def __init__(self):
        self.items = []

    def notify(self, item):
        self.items.append(item)


class FakeEnricher:
    def __init__(self, title="Generated title", summary="Generated summary", error=None):
        self.title = title
        self.summary = summary
        self.error = error
        self.calls = []

    def enrich(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.title, self.summary


@pytest.fixture
def delivery():
    return FakeDeliveryClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


def make_item(title, url=None, external_id=None, categories=None, published_at=None, **kw):
    """Build a stored-shape item without going through the pipeline."""
    if url is None and external_id is None:
        url = "https://example.com/" + title.lower().replace(" ", "-")
    item = ContentItem(
        title=title,
        url=url,
        external_id=external_id,
        published_at=published_at or NOW,
        categories=list(categories or ["General"]),
        **kw,
    )
    item.top_category = item.top_category or item.categories[0]
    return item

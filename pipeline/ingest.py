from __future__ import annotations

from typing import Any, Protocol

from collectors.collect import build_candidate
from pipeline.classify import classify_item, load_category_table
from pipeline.config import load_config
from pipeline.enrich import TextEnricher, build_enricher, enrich_text
from pipeline.models import ContentItem
from pipeline.relations import apply_category_tags, link_tag_ids, refresh_link_pools, update_related_items
from pipeline.relations import load_cfg as load_relations_cfg
from pipeline.store import DuplicateKeyError, NotFoundError
from pipeline.tags import find_or_create_tags

DEFAULTS: dict[str, Any] = {
    "enrich_kinds": ["social"],
    "classify_body": False,
    "fallback_title_chars": 50,
    "debug": False,
}


class Notifier(Protocol):
    def notify(self, item: ContentItem) -> Any: ...


def load_cfg() -> dict[str, Any]:
    return load_config("ingest", DEFAULTS)


def fill_main_image(item: ContentItem) -> ContentItem:
    if not item.image_url:
        item.image_url = next((m.url for m in item.media if m.url), None)
    return item


class IngestPipeline:
    """Single entry point for new content, whatever source produced it.

    Collaborators are injected so tests can swap in an in-memory store, a
    recording notifier and a fake enricher.
    """

    def __init__(
        self,
        store: Any,
        notifier: Notifier | None = None,
        enricher: TextEnricher | None = None,
        cfg: dict[str, Any] | None = None,
        category_table: dict[str, list[str]] | None = None,
        relations_cfg: dict[str, Any] | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.enricher = enricher
        self.cfg = cfg or load_cfg()
        self.category_table = category_table if category_table is not None else load_category_table()
        self.relations_cfg = relations_cfg or load_relations_cfg()

    def prepare(self, item: ContentItem) -> ContentItem:
        classify_item(item, self.category_table, include_body=bool(self.cfg.get("classify_body", False)))
        return fill_main_image(item)

    def find_existing(self, item: ContentItem) -> ContentItem | None:
        if item.url:
            return self.store.find_item_by_url(item.url)
        if item.external_id:
            return self.store.find_item_by_external_id(item.external_id)
        return None

    def enrich(self, item: ContentItem) -> ContentItem:
        text = item.body or item.summary or item.title
        title, summary, label_source = enrich_text(
            text,
            self.enricher,
            int(self.cfg.get("fallback_title_chars", 50)),
            bool(self.cfg.get("debug", False)),
        )
        item.title, item.summary = title, summary
        if self.cfg.get("debug", False):
            print(f"enriched id={item.id} label_source={label_source}")
        return item

    def ingest(self, candidate: ContentItem) -> tuple[ContentItem, bool]:
        """Store ``candidate`` unless an item with the same identity exists.

        Returns (item, created). Notification and relation linking run only on creation.
        """
        item = self.prepare(candidate)
        existing = self.find_existing(item)
        if existing is not None:
            return existing, False

        try:
            saved, created = self.store.insert_item_if_absent(item)
        except DuplicateKeyError:
            saved = self.find_existing(item)
            if saved is None:
                raise
            created = False
        if not created:
            return saved, False

        print(f"ingest_saved id={saved.id} source={saved.source} kind={saved.source_kind} top={saved.top_category}")
        return self._after_write(saved, notify=True), True

    def ingest_raw(self, kind: str, payload: dict[str, Any], source: dict[str, Any] | None = None) -> tuple[ContentItem, bool]:
        candidate = build_candidate(kind, payload, source)
        if kind in (self.cfg.get("enrich_kinds") or []) and self.find_existing(candidate) is None:
            self.enrich(candidate)
        return self.ingest(candidate)

    def update_item(
        self,
        item_id: str,
        *,
        title: str | None = None,
        summary: str | None = None,
        body: str | None = None,
        tags: list[Any] | None = None,
        is_published: bool | None = None,
        pin_rank: int | None = None,
        notify: bool = False,
    ) -> ContentItem:
        """Editorial update: re-classify and re-link without the dedup check."""
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFoundError(item_id)
        if title is not None:
            item.title = title
        if summary is not None:
            item.summary = summary
        if body is not None:
            item.body = body
        if is_published is not None:
            item.is_published = is_published
        if pin_rank is not None:
            item.pin_rank = pin_rank
        old_links = link_tag_ids(self.store, item, self.relations_cfg)
        if tags is not None:
            item.tags = find_or_create_tags(self.store, tags)

        saved = self.store.save_item(self.prepare(item))
        saved = self._after_write(saved, notify=notify)

        left = old_links - set(saved.tags)
        if left:
            refresh_link_pools(self.store, left, self.relations_cfg)
        return self.store.get_item(saved.id) or saved

    def _after_write(self, item: ContentItem, notify: bool) -> ContentItem:
        if notify and self.notifier is not None:
            try:
                self.notifier.notify(item)
            except Exception as e:
                print(f"notify_error id={item.id} err={e}")
        apply_category_tags(self.store, item, self.relations_cfg)
        update_related_items(self.store, item.id, self.relations_cfg)
        return self.store.get_item(item.id) or item


def build_pipeline(store: Any, client: Any = None) -> IngestPipeline:
    """Wire the production collaborators: Expo push delivery and the configured enricher."""
    from publish.push import ExpoPushClient
    from publish.targeting import NotificationTargeter

    notifier = NotificationTargeter(store, client if client is not None else ExpoPushClient())
    return IngestPipeline(store, notifier=notifier, enricher=build_enricher())

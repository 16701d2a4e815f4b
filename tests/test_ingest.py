"""
Unit tests for the ingestion pipeline: dedup, side effects and editorial updates.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import FakeEnricher, make_item
from pipeline.ingest import IngestPipeline
from pipeline.models import ContentItem, Media
from pipeline.store import DuplicateKeyError, NotFoundError

TABLE = {"Sports": ["cricket", "t20"], "Politics": ["election"]}
INGEST_CFG = {"enrich_kinds": ["social"], "classify_body": False, "fallback_title_chars": 50, "debug": False}


@pytest.fixture
def pipeline(store, notifier, relations_cfg):
    return IngestPipeline(store, notifier=notifier, cfg=INGEST_CFG, category_table=TABLE, relations_cfg=relations_cfg)


def _candidate(title="Cricket final tonight", url="https://news.example/final", **kw):
    return ContentItem(title=title, url=url, **kw)


@pytest.mark.unit
def test_new_item_is_classified_saved_and_notified_once(pipeline, store, notifier):
    item, created = pipeline.ingest(_candidate())

    assert created
    assert item.categories == ["Sports"]
    assert item.top_category == "Sports"
    assert store.get_item(item.id) is not None
    assert [n.id for n in notifier.items] == [item.id]


@pytest.mark.unit
def test_second_ingest_is_noop(pipeline, store, notifier):
    first, _ = pipeline.ingest(_candidate())
    again, created = pipeline.ingest(_candidate(title="Cricket final tonight (updated)"))

    assert not created
    assert again.id == first.id
    assert again.title == "Cricket final tonight"
    assert len(notifier.items) == 1
    assert len(store.all_items()) == 1


@pytest.mark.unit
def test_concurrent_ingest_creates_once(pipeline, store, notifier):
    with ThreadPoolExecutor(max_workers=8) as ex:
        results = list(ex.map(lambda _: pipeline.ingest(_candidate()), range(16)))
    assert sum(created for _, created in results) == 1
    assert len(notifier.items) == 1
    assert len(store.all_items()) == 1


@pytest.mark.unit
def test_duplicate_key_from_store_is_absorbed(pipeline, store, notifier, monkeypatch):
    existing = store.insert_item(make_item("Race winner", url="https://news.example/race"))
    calls = {"n": 0}

    def find_after_race(url):
        calls["n"] += 1
        return None if calls["n"] == 1 else existing

    def racing_insert(item):
        raise DuplicateKeyError("url", item.url)

    monkeypatch.setattr(store, "find_item_by_url", find_after_race)
    monkeypatch.setattr(store, "insert_item_if_absent", racing_insert)

    item, created = pipeline.ingest(_candidate(title="Race loser", url="https://news.example/race"))
    assert not created
    assert item.id == existing.id
    assert notifier.items == []


@pytest.mark.unit
def test_side_effects_attach_auto_tags_and_related(pipeline, store):
    first, _ = pipeline.ingest(_candidate("Cricket league opens", "https://news.example/1"))
    second, _ = pipeline.ingest(_candidate("Cricket league day two", "https://news.example/2"))

    assert [t.name for t in store.get_tags(second.tags)] == ["cricket"]
    assert second.related == [first.id]


@pytest.mark.unit
def test_main_image_comes_from_first_media(pipeline):
    item, _ = pipeline.ingest(
        _candidate(media=[Media(kind="video", url=""), Media(kind="photo", url="https://img.example/a.jpg")])
    )
    assert item.image_url == "https://img.example/a.jpg"


@pytest.mark.unit
def test_social_payload_uses_enricher(store, notifier, relations_cfg):
    enricher = FakeEnricher(title="Kohli century", summary="Kohli scored a century.")
    p = IngestPipeline(store, notifier, enricher, INGEST_CFG, TABLE, relations_cfg)

    item, created = p.ingest_raw("social", {"id": "1800", "text": "what a knock by kohli in the t20"})

    assert created
    assert item.external_id == "1800"
    assert item.url is None
    assert item.title == "Kohli century"
    assert item.summary == "Kohli scored a century."
    assert enricher.calls == ["what a knock by kohli in the t20"]


@pytest.mark.unit
def test_enricher_failure_falls_back_to_truncation(store, notifier, relations_cfg):
    text = "x" * 80
    enricher = FakeEnricher(error=RuntimeError("quota"))
    p = IngestPipeline(store, notifier, enricher, INGEST_CFG, TABLE, relations_cfg)

    item, _ = p.ingest_raw("social", {"id": "1801", "text": text})

    assert item.title == text[:50]
    assert item.summary == text


@pytest.mark.unit
def test_feed_kind_is_not_enriched(store, notifier, relations_cfg):
    enricher = FakeEnricher()
    p = IngestPipeline(store, notifier, enricher, INGEST_CFG, TABLE, relations_cfg)

    item, _ = p.ingest_raw("feed", {"title": "Election dates out", "link": "https://www.news.example/e/?utm=1"})

    assert enricher.calls == []
    assert item.url == "https://www.news.example/e/"
    assert item.categories == ["Politics"]


@pytest.mark.unit
def test_duplicate_social_post_is_not_enriched_again(store, notifier, relations_cfg):
    enricher = FakeEnricher()
    p = IngestPipeline(store, notifier, enricher, INGEST_CFG, TABLE, relations_cfg)
    p.ingest_raw("social", {"id": "7", "text": "hello"})
    _, created = p.ingest_raw("social", {"id": "7", "text": "hello"})

    assert not created
    assert len(enricher.calls) == 1


@pytest.mark.unit
def test_unknown_kind_rejected(pipeline):
    with pytest.raises(ValueError, match="unsupported_source_kind"):
        pipeline.ingest_raw("podcast", {})


@pytest.mark.unit
def test_editorial_update_reclassifies_and_relinks_without_notifying(pipeline, store, notifier):
    other, _ = pipeline.ingest(_candidate("Budget session", "https://news.example/budget"))
    item, _ = pipeline.ingest(_candidate("Quiet day", "https://news.example/quiet"))
    pipeline.update_item(other.id, tags=["Budget"])

    updated = pipeline.update_item(item.id, title="Election called early", tags=[" budget "])

    assert updated.categories == ["Politics"]
    assert updated.top_category == "Politics"
    assert sorted(t.name for t in store.get_tags(updated.tags)) == ["budget", "election"]
    assert updated.related == [other.id]
    assert len(notifier.items) == 2


@pytest.mark.unit
def test_update_missing_item_raises(pipeline):
    with pytest.raises(NotFoundError):
        pipeline.update_item("missing", title="x")


@pytest.mark.unit
def test_removing_link_tag_clears_it_from_former_pool(pipeline, store):
    """Both sides of a link drop the pairing when one item leaves the pool."""
    a, _ = pipeline.ingest(_candidate("Episode one", "https://news.example/ep1"))
    b, _ = pipeline.ingest(_candidate("Episode two", "https://news.example/ep2"))
    pipeline.update_item(a.id, tags=["link:ep"])
    pipeline.update_item(b.id, tags=["link:ep"])
    assert store.get_item(b.id).related == [a.id]

    pipeline.update_item(a.id, tags=[])

    assert store.get_item(a.id).related == []
    assert store.get_item(b.id).related == []


@pytest.mark.unit
def test_notifier_failure_still_tags_and_links(store, relations_cfg):
    class FailingNotifier:
        def notify(self, item):
            raise RuntimeError("push down")

    p = IngestPipeline(store, FailingNotifier(), None, INGEST_CFG, TABLE, relations_cfg)
    first, _ = p.ingest(_candidate("Cricket league opens", "https://news.example/1"))
    second, created = p.ingest(_candidate("Cricket league day two", "https://news.example/2"))

    assert created
    assert [t.name for t in store.get_tags(second.tags)] == ["cricket"]
    assert second.related == [first.id]

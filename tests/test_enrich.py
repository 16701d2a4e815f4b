"""
Unit tests for title/summary enrichment and its fallback.
"""

import pytest

from conftest import FakeEnricher
from pipeline.enrich import (
    DEFAULTS,
    OpenAICompatibleEnricher,
    build_enricher,
    enrich_text,
    fallback_title_summary,
    parse_title_summary,
)


@pytest.mark.unit
def test_fallback_truncates_title():
    title, summary = fallback_title_summary("<p>" + "a" * 60 + "</p>", 50)
    assert title == "a" * 50
    assert summary == "a" * 60


@pytest.mark.unit
def test_parse_strips_code_fences():
    assert parse_title_summary('```json\n{"title": "T", "summary": "S"}\n```') == {"title": "T", "summary": "S"}
    with pytest.raises(ValueError):
        parse_title_summary('["not", "an", "object"]')


@pytest.mark.unit
def test_enrich_text_sources():
    assert enrich_text("body", FakeEnricher("T", "S")) == ("T", "S", "llm")
    assert enrich_text("body", FakeEnricher(error=RuntimeError("down"))) == ("body", "body", "fallback")
    assert enrich_text("body", FakeEnricher(title="")) == ("body", "body", "fallback")
    assert enrich_text("body", None) == ("body", "body", "fallback")


@pytest.mark.unit
def test_build_enricher_respects_enabled_flag():
    assert build_enricher(dict(DEFAULTS, enabled=False)) is None
    assert isinstance(build_enricher(dict(DEFAULTS, enabled=True)), OpenAICompatibleEnricher)
    with pytest.raises(ValueError, match="unsupported_enrich_provider"):
        build_enricher(dict(DEFAULTS, enabled=True, provider="other"))


@pytest.mark.unit
def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(RuntimeError, match="missing_api_key"):
        OpenAICompatibleEnricher(DEFAULTS).enrich("text")

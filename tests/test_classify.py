"""
Unit tests for keyword classification and the uncategorized backfill.
"""

import pytest

from conftest import make_item
from pipeline.classify import (
    DEFAULT_CATEGORY_KEYWORDS,
    GENERAL,
    classify_item,
    classify_text,
    classify_unclassified,
    keyword_hits,
    load_category_table,
)


@pytest.mark.unit
def test_t20_match_prefers_sports_over_national():
    """Sports hits t20, world cup and match; National only hits india."""
    table = {"Sports": ["cricket", "t20", "world cup", "match"], "National": ["india"]}
    cats, top = classify_text("India wins T20 World Cup match", table)
    assert {"Sports", "National"} <= set(cats)
    assert top == "Sports"


@pytest.mark.unit
def test_default_table_orders_categories_by_table():
    cats, top = classify_text("India win T20 match in Delhi stadium")
    assert cats == ["Sports", "National"]
    assert top == "Sports"


@pytest.mark.unit
def test_tie_goes_to_earlier_category():
    table = {"A": ["alpha"], "B": ["beta"]}
    cats, top = classify_text("beta and alpha", table)
    assert cats == ["A", "B"]
    assert top == "A"


@pytest.mark.unit
def test_later_category_with_more_hits_wins_top():
    table = {"A": ["alpha"], "B": ["beta", "gamma"]}
    _, top = classify_text("alpha beta gamma", table)
    assert top == "B"


@pytest.mark.unit
def test_no_hits_falls_back_to_general():
    cats, top = classify_text("nothing relevant here", {"A": ["alpha"]})
    assert cats == [GENERAL]
    assert top == GENERAL


@pytest.mark.unit
def test_empty_text_is_general():
    assert classify_text("", {"A": ["alpha"]}) == ([GENERAL], GENERAL)


@pytest.mark.unit
def test_matching_is_case_insensitive_and_counts_each_keyword_once():
    assert keyword_hits("cricket cricket CRICKET", ["Cricket", "cricket"]) == 1


@pytest.mark.unit
def test_top_category_is_member_of_categories():
    cats, top = classify_text("election results announced by the government for students")
    assert top in cats


@pytest.mark.unit
def test_config_table_replaces_defaults(isolated_config):
    (isolated_config / "categories.yaml").write_text(
        "categories:\n  Weather: [rain, storm]\n", encoding="utf-8"
    )
    assert load_category_table() == {"Weather": ["rain", "storm"]}
    assert classify_text("heavy rain and storm tonight") == (["Weather"], "Weather")


@pytest.mark.unit
def test_missing_config_uses_default_table():
    assert list(load_category_table()) == list(DEFAULT_CATEGORY_KEYWORDS)


@pytest.mark.unit
def test_classify_item_ignores_body_unless_asked():
    item = make_item("Quiet headline", body="cricket cricket")
    classify_item(item, {"Sports": ["cricket"]})
    assert item.categories == [GENERAL]

    classify_item(item, {"Sports": ["cricket"]}, include_body=True)
    assert item.categories == ["Sports"]
    assert item.top_category == "Sports"


@pytest.mark.unit
def test_backfill_only_touches_uncategorized_items(store):
    done = make_item("Already done", categories=["Politics"])
    store.insert_item(done)
    pending = make_item("Pending", body="the cricket league starts")
    pending.categories = []
    pending.top_category = None
    store.insert_item(pending)

    stats = classify_unclassified(store, {"Sports": ["cricket"]})

    assert stats == {"checked": 1, "updated": 1}
    assert store.get_item(pending.id).categories == ["Sports"]
    assert store.get_item(done.id).categories == ["Politics"]

from __future__ import annotations

import argparse
from typing import Any

from pipeline.config import load_config
from pipeline.models import ContentItem

GENERAL = "General"

# Used when config/categories.yaml has no `categories` table. Order matters:
# on equal hit counts the earlier category becomes the top category.
DEFAULT_CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "Sports": [
        "cricket", "football", "tennis", "ipl", "sports", "hockey", "badminton", "kabaddi",
        "olympics", "t20", "odi", "world cup", "stadium", "match", "tournament", "league",
        "wicket", "umpire",
    ],
    "Entertainment": [
        "movie", "cinema", "film", "actor", "actress", "celebrity", "director", "music",
        "song", "trailer", "teaser", "box office", "tollywood", "bollywood", "hollywood",
        "web series", "ott",
    ],
    "Politics": [
        "election", "vote", "minister", "government", "mla", "parliament", "assembly",
        "prime minister", "chief minister", "opposition",
    ],
    "National": [
        "india", "bharat", "delhi", "mumbai", "chennai", "kolkata", "bangalore",
        "supreme court", "high court", "constitution", "reserve bank", "isro",
    ],
    "International": [
        "world", "global", "international", "foreign", "usa", "america", "china", "pakistan",
        "russia", "united nations", "summit", "diplomacy",
    ],
    "Crime": [
        "crime", "murder", "theft", "robbery", "scam", "fraud", "corruption", "kidnap",
        "police", "charge sheet", "verdict", "assault",
    ],
    "Technology": [
        "technology", "tech", "gadget", "smartphone", "iphone", "android", "google", "apple",
        "microsoft", "software", "startup", "internet", "5g", "cloud", "robot",
    ],
    "Education": [
        "education", "school", "college", "university", "exam", "results", "jee", "neet",
        "cbse", "students", "scholarship",
    ],
    "Jobs": [
        "jobs", "employment", "vacancy", "recruitment", "hiring", "placement", "internship",
        "upsc", "job fair",
    ],
    "Lifestyle": [
        "lifestyle", "fashion", "health", "fitness", "diet", "yoga", "travel", "recipe",
        "beauty", "wedding",
    ],
}


def load_category_table() -> dict[str, list[str]]:
    cfg = load_config("categories")
    table = cfg.get("categories") or DEFAULT_CATEGORY_KEYWORDS
    return {str(cat): [str(k) for k in (words or [])] for cat, words in table.items()}


def keyword_hits(text_lower: str, keywords: list[str]) -> int:
    seen: set[str] = set()
    hits = 0
    for k in keywords:
        k = k.lower()
        if not k or k in seen:
            continue
        seen.add(k)
        if k in text_lower:
            hits += 1
    return hits


def classify_text(text: str, table: dict[str, list[str]] | None = None) -> tuple[list[str], str]:
    """Return (categories, top_category) for ``text``.

    Categories come back in table order. The top category is the first one whose
    hit count strictly beats every earlier count, so ties go to the earlier entry.
    """
    table = table if table is not None else load_category_table()
    t = (text or "").lower()
    categories: list[str] = []
    top = GENERAL
    best = 0
    for cat, words in table.items():
        n = keyword_hits(t, words)
        if n <= 0:
            continue
        categories.append(cat)
        if n > best:
            best = n
            top = cat
    if not categories:
        return [GENERAL], GENERAL
    return categories, top


def item_text(item: ContentItem, include_body: bool = False) -> str:
    parts = [item.title or "", item.summary or ""]
    if include_body:
        parts.append(item.body or "")
    return " ".join(parts)


def classify_item(item: ContentItem, table: dict[str, list[str]] | None = None, include_body: bool = False) -> ContentItem:
    item.categories, item.top_category = classify_text(item_text(item, include_body), table)
    return item


def classify_unclassified(store: Any, table: dict[str, list[str]] | None = None) -> dict[str, int]:
    """Backfill categories for stored items that have none, using the body text too."""
    table = table if table is not None else load_category_table()
    checked = 0
    updated = 0
    for it in store.all_items():
        if it.categories:
            continue
        checked += 1
        cats, top = classify_text(item_text(it, include_body=True), table)
        store.update_item(it.id, categories=cats, top_category=top)
        updated += 1
        print(f"classified id={it.id} categories={','.join(cats)} top={top}")
    print(f"classify_backfill checked={checked} updated={updated}")
    return {"checked": checked, "updated": updated}


def main() -> None:
    from pipeline.store import open_store

    ap = argparse.ArgumentParser()
    sub = ap.add_subparsers(dest="cmd", required=True)
    t = sub.add_parser("text")
    t.add_argument("text")
    sub.add_parser("backfill")
    args = ap.parse_args()

    if args.cmd == "text":
        cats, top = classify_text(args.text)
        print(f"categories={','.join(cats)} top={top}")
    elif args.cmd == "backfill":
        classify_unclassified(open_store())


if __name__ == "__main__":
    main()

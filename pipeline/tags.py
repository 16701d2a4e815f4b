from __future__ import annotations

from typing import Any


def normalize_tag_name(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    name = raw.strip().casefold()
    return name or None


def normalize_tag_names(raw_names: Any) -> list[str]:
    """Trim and case-fold names, dropping blanks and non-strings, first occurrence wins."""
    out: list[str] = []
    seen: set[str] = set()
    for raw in raw_names or []:
        name = normalize_tag_name(raw)
        if name is None or name in seen:
            continue
        seen.add(name)
        out.append(name)
    return out


def find_or_create_tags(store: Any, raw_names: Any) -> list[str]:
    """Resolve raw tag names to tag ids, creating missing tags.

    Creation goes through the store's atomic ``upsert_tag`` so concurrent callers
    asking for the same new name all receive the same id.
    """
    return [store.upsert_tag(name).id for name in normalize_tag_names(raw_names)]


def tag_names(store: Any, tag_ids: list[str]) -> dict[str, str]:
    return {t.id: t.name for t in store.get_tags(tag_ids)}

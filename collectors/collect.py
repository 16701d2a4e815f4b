from __future__ import annotations

import html
import json
import re
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlsplit

import feedparser
import yaml

from pipeline.config import ROOT, config_dir
from pipeline.models import ContentItem, Media, parse_ts

_TELUGU = re.compile(r"[\u0C00-\u0C7F]")


def load_sources() -> list[dict[str, Any]]:
    path = config_dir() / "sources.yaml"
    if not path.exists():
        return []
    with open(path, "r", encoding="utf-8") as f:
        return (yaml.safe_load(f) or {}).get("sources", []) or []


def normalize_url(url: str) -> str:
    """Scheme, host and path only; query string and fragment are dropped."""
    try:
        parts = urlsplit((url or "").strip())
        host = parts.hostname
    except ValueError:
        return url
    if not parts.scheme or not host:
        return url
    return f"{parts.scheme.lower()}://{host}{parts.path or '/'}"


def strip_html(raw: str) -> str:
    s = re.sub(r"<script[\s\S]*?</script>", " ", raw or "", flags=re.I)
    s = re.sub(r"<style[\s\S]*?</style>", " ", s, flags=re.I)
    s = re.sub(r"<[^>]+>", " ", s)
    s = html.unescape(s)
    return re.sub(r"\s+", " ", s).strip()


def detect_lang(text: str) -> str:
    return "te" if _TELUGU.search(text or "") else "en"


def _is_bad_image_url(url: str) -> bool:
    u = (url or "").lower()
    # avatar/profile images look wrong in article cards
    bad_markers = [
        "avatars.githubusercontent.com",
        "gravatar.com/avatar",
        "/avatar/",
        "profile_images",
    ]
    return any(m in u for m in bad_markers)


def extract_image_url(entry: Any, summary_html: str = "") -> str:
    def ok(href: str) -> bool:
        return bool(href) and not _is_bad_image_url(href)

    # 1) RSS enclosure
    encs = entry.get("enclosures", []) or []
    for e in encs:
        href = (e.get("href") or e.get("url") or "").strip() if isinstance(e, dict) else ""
        etype = (e.get("type") or "").lower() if isinstance(e, dict) else ""
        if ok(href) and (etype.startswith("image/") or re.search(r"\.(png|jpe?g|gif|webp|avif)(\?|$)", href, re.I)):
            return href

    # 2) media RSS
    for key in ("media_content", "media_thumbnail"):
        for m in entry.get(key, []) or []:
            href = (m.get("url") or "").strip() if isinstance(m, dict) else ""
            if ok(href):
                return href

    # 3) first image in summary/content
    body = html.unescape(summary_html or "")
    m = re.search(r"<img[^>]+src=[\"']([^\"']+)[\"']", body, re.I)
    if m and ok(m.group(1).strip()):
        return m.group(1).strip()

    return ""


def build_feed_item(entry: dict[str, Any], source: dict[str, Any] | None = None) -> ContentItem:
    source = source or {}
    title = strip_html(entry.get("title", ""))
    link = (entry.get("url") or entry.get("link") or "").strip()
    if not title or not link:
        raise ValueError("feed_entry_missing_title_or_link")
    summary_html = entry.get("summary", "") or ""
    return ContentItem(
        title=title,
        url=normalize_url(link),
        summary=strip_html(summary_html),
        body=strip_html(entry.get("content", "") or ""),
        image_url=entry.get("image_url") or extract_image_url(entry, summary_html) or None,
        source=source.get("name", entry.get("source", "")),
        source_kind="feed",
        published_at=parse_ts(entry.get("published"), datetime.now(timezone.utc)),
        lang=detect_lang(title),
    )


def _lowest_bitrate_mp4(variants: list[dict[str, Any]]) -> str | None:
    mp4 = [v for v in variants or [] if v.get("content_type", "video/mp4") == "video/mp4" and v.get("bitrate") is not None]
    if not mp4:
        return None
    return min(mp4, key=lambda v: v["bitrate"]).get("url")


def build_social_item(post: dict[str, Any], source: dict[str, Any] | None = None) -> ContentItem:
    """Social post payload -> candidate item keyed by its external post id.

    Title and summary default to the truncated post text; the ingest pipeline
    replaces them when text enrichment is configured for social items.
    """
    source = source or {}
    post_id = str(post.get("id") or "").strip()
    if not post_id:
        raise ValueError("social_post_missing_id")
    text = strip_html(post.get("text", ""))

    media: list[Media] = []
    video_url = None
    for m in post.get("media", []) or []:
        kind = m.get("type", "photo")
        if kind == "photo":
            media.append(Media(kind="photo", url=m.get("url", ""), width=m.get("width"), height=m.get("height")))
        elif kind in {"video", "animated_gif"}:
            variants = [{"bitrate": v.get("bitrate"), "url": v.get("url")} for v in m.get("variants", []) or []]
            media.append(Media(kind=kind, url=m.get("url", ""), variants=variants, width=m.get("width"), height=m.get("height")))
            video_url = video_url or _lowest_bitrate_mp4(m.get("variants", []) or [])

    return ContentItem(
        title=text[:50],
        external_id=post_id,
        summary=text,
        body=text,
        media=media,
        video_url=video_url,
        source=source.get("name") or post.get("author", ""),
        source_kind="social",
        published_at=parse_ts(post.get("created_at") or post.get("createdAt"), datetime.now(timezone.utc)),
        lang=post.get("lang") or detect_lang(text),
    )


def build_manual_item(payload: dict[str, Any], source: dict[str, Any] | None = None) -> ContentItem:
    title = (payload.get("title") or "").strip()
    if not title:
        raise ValueError("manual_item_missing_title")
    url = payload.get("url")
    return ContentItem(
        title=title,
        url=normalize_url(url) if url else None,
        external_id=None if url else (payload.get("external_id") or None),
        summary=payload.get("summary", "") or "",
        body=payload.get("body", "") or payload.get("text", "") or "",
        media=payload.get("media", []) or [],
        image_url=payload.get("image_url"),
        video_url=payload.get("video_url"),
        source=payload.get("source") or (source or {}).get("name", "manual"),
        source_kind="manual",
        published_at=parse_ts(payload.get("published_at"), datetime.now(timezone.utc)),
        lang=payload.get("lang") or detect_lang(title),
        is_published=bool(payload.get("is_published", True)),
        is_breaking=bool(payload.get("is_breaking", False)),
        pin_rank=payload.get("pin_rank"),
    )


SOURCE_BUILDERS: dict[str, Callable[..., ContentItem]] = {
    "feed": build_feed_item,
    "social": build_social_item,
    "manual": build_manual_item,
}


def build_candidate(kind: str, payload: dict[str, Any], source: dict[str, Any] | None = None) -> ContentItem:
    builder = SOURCE_BUILDERS.get(kind)
    if builder is None:
        raise ValueError(f"unsupported_source_kind:{kind}")
    return builder(payload, source)


def collect_from_rss(source: dict[str, Any], now: datetime, max_entries: int = 40) -> list[dict[str, Any]]:
    parsed = feedparser.parse(source["url"])
    out = []
    for e in parsed.entries[:max_entries]:
        title = (e.get("title") or "").strip()
        link = (e.get("link") or "").strip()
        if not title or not link:
            continue
        content = e.get("content") or []
        summary = e.get("summary", "")
        out.append(
            {
                "title": title,
                "url": link,
                "summary": summary,
                "content": content[0].get("value", "") if content else "",
                "published": e.get("published") or e.get("updated") or now.isoformat(),
                "image_url": extract_image_url(e, summary),
            }
        )
    return out


def append_ingest_run(stats: list[dict[str, Any]]) -> None:
    health_dir = ROOT / "data" / "health"
    health_dir.mkdir(parents=True, exist_ok=True)
    with open(health_dir / "ingest_runs.jsonl", "a", encoding="utf-8") as f:
        for row in stats:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")


def run(pipeline: Any, sources: list[dict[str, Any]] | None = None, record: bool = True) -> list[dict[str, Any]]:
    """Fetch every configured feed source and hand each entry to the ingest pipeline."""
    now = datetime.now(timezone.utc)
    source_stats = []
    new_total = 0

    for source in sources if sources is not None else load_sources():
        src_name = source.get("name", "")
        row: dict[str, Any] = {"ts": now.isoformat(), "source": src_name, "url": source.get("url", "")}
        try:
            entries = collect_from_rss(source, now, int(source.get("max_entries", 40)))
        except Exception as e:
            row.update({"status": "error", "items": 0, "new": 0, "error": str(e)})
            source_stats.append(row)
            continue

        count = new = skipped = errors = 0
        for ent in entries:
            try:
                _, created = pipeline.ingest_raw("feed", ent, source)
            except ValueError:
                skipped += 1
                continue
            except Exception as e:
                errors += 1
                print(f"ingest_error source={src_name} url={ent.get('url', '')} err={e}")
                continue
            count += 1
            new += int(created)
        new_total += new
        row.update({"status": "ok", "items": count, "new": new, "skipped": skipped, "errors": errors})
        source_stats.append(row)

    if record:
        append_ingest_run(source_stats)

    ok = sum(1 for s in source_stats if s["status"] == "ok")
    errors = sum(1 for s in source_stats if s["status"] == "error")
    print(f"collected_new={new_total} sources_ok={ok} sources_error={errors} sources_total={len(source_stats)}")
    return source_stats


def main() -> None:
    from pipeline.ingest import build_pipeline
    from pipeline.store import open_store

    run(build_pipeline(open_store()))


if __name__ == "__main__":
    main()

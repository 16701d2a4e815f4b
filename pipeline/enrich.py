from __future__ import annotations

import html
import json
import os
import re
import urllib.request
from typing import Any, Protocol

from pipeline.config import load_config

DEFAULTS: dict[str, Any] = {
    "enabled": False,
    "provider": "openai_compatible",
    "endpoint": "https://api.openai.com/v1/chat/completions",
    "model": "gpt-4o-mini",
    "api_key_env": "OPENAI_API_KEY",
    "timeout_seconds": 20,
    "fallback_title_chars": 50,
    "debug": False,
    "system_prompt": (
        "You are a news desk editor. Write a concise news-style title and a short summary "
        "for the following text, in the same language as the text. "
        "Return strict JSON with keys: title, summary. Do not add anything else."
    ),
}

_FENCE = re.compile(r"```(?:json)?", re.I)


class TextEnricher(Protocol):
    def enrich(self, text: str) -> tuple[str, str]: ...


def load_cfg() -> dict[str, Any]:
    return load_config("llm", DEFAULTS)


def clean_text(text: str) -> str:
    s = html.unescape(str(text or ""))
    s = re.sub(r"<[^>]+>", " ", s)
    return re.sub(r"\s+", " ", s).strip()


def fallback_title_summary(text: str, title_chars: int = 50) -> tuple[str, str]:
    s = clean_text(text)
    return s[:title_chars], s


def parse_title_summary(content: str) -> dict[str, Any]:
    body = _FENCE.sub("", content or "").strip()
    parsed = json.loads(body)
    if not isinstance(parsed, dict):
        raise ValueError("enrich_response_not_object")
    return parsed


class OpenAICompatibleEnricher:
    """Title/summary generator backed by an OpenAI-compatible chat endpoint."""

    def __init__(self, cfg: dict[str, Any] | None = None):
        self.cfg = cfg or load_cfg()

    def enrich(self, text: str) -> tuple[str, str]:
        cfg = self.cfg
        api_key = os.getenv(cfg.get("api_key_env", "OPENAI_API_KEY"), "")
        if not api_key:
            raise RuntimeError("missing_api_key")

        body = {
            "model": cfg.get("model", "gpt-4o-mini"),
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": cfg.get("system_prompt", DEFAULTS["system_prompt"])},
                {"role": "user", "content": text},
            ],
        }
        req = urllib.request.Request(
            cfg.get("endpoint", DEFAULTS["endpoint"]),
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"},
            method="POST",
        )
        timeout = int(cfg.get("timeout_seconds", 20))
        with urllib.request.urlopen(req, timeout=timeout) as r:
            data = json.loads(r.read().decode("utf-8"))
        parsed = parse_title_summary(data["choices"][0]["message"]["content"])
        fb_title, fb_summary = fallback_title_summary(text, int(cfg.get("fallback_title_chars", 50)))
        return str(parsed.get("title") or fb_title).strip(), str(parsed.get("summary") or fb_summary).strip()


def build_enricher(cfg: dict[str, Any] | None = None) -> TextEnricher | None:
    cfg = cfg or load_cfg()
    if not cfg.get("enabled", False):
        return None
    if cfg.get("provider") == "openai_compatible":
        return OpenAICompatibleEnricher(cfg)
    raise ValueError(f"unsupported_enrich_provider:{cfg.get('provider')}")


def enrich_text(text: str, enricher: TextEnricher | None, title_chars: int = 50, debug: bool = False) -> tuple[str, str, str]:
    """Return (title, summary, label_source); never raises on enricher failure."""
    if enricher is not None:
        try:
            title, summary = enricher.enrich(text)
            if title:
                return title, summary, "llm"
        except Exception as e:
            if debug:
                print(f"enrich_error err={e}")
    title, summary = fallback_title_summary(text, title_chars)
    return title, summary, "fallback"

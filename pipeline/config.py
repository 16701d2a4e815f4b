from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

ROOT = Path(__file__).resolve().parents[1]


def config_dir() -> Path:
    return Path(os.getenv("NEWSFEED_CONFIG_DIR") or (ROOT / "config"))


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(name: str, defaults: dict[str, Any] | None = None) -> dict[str, Any]:
    """Load ``config/<name>.yaml`` merged over ``defaults``.

    A missing file yields the defaults unchanged; an empty file is treated as ``{}``.
    """
    base = dict(defaults or {})
    path = config_dir() / f"{name}.yaml"
    if not path.exists():
        return base
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"config_not_a_mapping:{path.name}")
    return _deep_merge(base, raw)

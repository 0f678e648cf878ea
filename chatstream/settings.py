# chatstream/settings.py
from __future__ import annotations
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict
from .constants import (
    DEFAULT_LOG_MAX_BYTES, DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_CHAT_URL, DEFAULT_AGENTS_URL, DEFAULT_TIMEOUT, DEFAULT_SYSTEM_PROMPT,
)

log = logging.getLogger("settings")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "schema": 1,
    "logging": {
        "level": "INFO",
        "max_bytes": DEFAULT_LOG_MAX_BYTES,
        "backup_count": DEFAULT_LOG_BACKUP_COUNT
    },
    "endpoints": {
        "chat_url": DEFAULT_CHAT_URL,
        "agents_url": DEFAULT_AGENTS_URL
    },
    "stream": {
        "timeout": DEFAULT_TIMEOUT,
        "format": "delta"
    },
    "system_prompt": DEFAULT_SYSTEM_PROMPT
}

def _forward_fill(a: dict, b: dict) -> None:
    for k, v in b.items():
        if k not in a:
            a[k] = copy.deepcopy(v)
        elif isinstance(v, dict) and isinstance(a.get(k), dict):
            _forward_fill(a[k], v)

def load_settings(path: Path) -> dict:
    if not path.exists():
        save_settings(path, DEFAULT_SETTINGS)
        return copy.deepcopy(DEFAULT_SETTINGS)
    with path.open("r", encoding="utf-8") as f:
        cfg = json.load(f)
    if not isinstance(cfg, dict):
        raise ValueError(f"Settings file {path} must hold a JSON object")
    # Older files may lack newer keys
    merged = dict(cfg)
    _forward_fill(merged, DEFAULT_SETTINGS)
    return merged

def save_settings(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)
    tmp.replace(path)
    log.debug("Settings saved → %s", path)

def set_endpoint(path: Path, cfg: dict, name: str, url: str) -> dict:
    """Persist one endpoint override ("chat_url" / "agents_url")."""
    if name not in DEFAULT_SETTINGS["endpoints"]:
        raise ValueError(f"Unknown endpoint {name!r}")
    updated = dict(cfg)
    endpoints = dict(updated.get("endpoints", {}))
    if endpoints.get(name) != url:
        endpoints[name] = url
        updated["endpoints"] = endpoints
        save_settings(path, updated)
    return updated

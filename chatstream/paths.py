# chatstream/paths.py
from __future__ import annotations
import os
from pathlib import Path
from typing import Tuple
from .constants import DEFAULT_LOG_FILENAME

DATA_DIR_ENV = "CHATSTREAM_DATA_DIR"
SETTINGS_FILENAME = "app.json"

def default_data_dir() -> Path:
    # Local "data" folder unless CHATSTREAM_DATA_DIR points elsewhere.
    env = os.getenv(DATA_DIR_ENV)
    if env:
        return Path(env).expanduser().resolve()
    return Path("data").resolve()

def log_paths(data_dir: Path) -> Tuple[Path, Path]:
    logs_dir = data_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir, logs_dir / DEFAULT_LOG_FILENAME

def settings_path(project_root: Path | None = None) -> Path:
    """Where the JSON settings live (created on first load)."""
    base = Path(project_root) if project_root else Path(".")
    s = base.resolve() / "settings"
    s.mkdir(parents=True, exist_ok=True)
    return s / SETTINGS_FILENAME

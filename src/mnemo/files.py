"""Cache directory layout and JSON file helpers shared by every store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
ID_CACHE_FILE = "cache.json"
CONTEXT_CACHE_FILE = "context-cache.json"
MESSAGE_QUEUE_FILE = "message-queue.jsonl"
GIT_STATE_FILE = "git-state.json"
WORK_LOG_FILE = "work-context.md"
ACTIVITY_LOG_FILE = "activity.log"


def home_dir() -> Path:
    """Root of all persisted state. ``HONCHO_HOME`` overrides ``~/.honcho``."""
    override = os.getenv("HONCHO_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".honcho"


def read_json(path: Path) -> dict[str, Any]:
    """Load a JSON object from *path*.

    Missing, unreadable or corrupt files all read as an empty dict.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return {}
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug("Corrupt JSON in %s, treating as empty: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to a sibling temp file, then rename it over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_json(path: Path, data: dict[str, Any]) -> None:
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")

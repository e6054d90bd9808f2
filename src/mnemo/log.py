"""Activity log — JSON lines in ``~/.honcho/activity.log``.

Hooks log through the ordinary ``logging`` module. ``ActivityLogHandler``
turns each record into one JSON object, tagged with the working directory and
session of the invocation. That pair travels as an explicit ``RunContext``
bound through a ``LoggerAdapter`` rather than as module state:

    log = bind(logger, RunContext(cwd="/src/app", session="jane-app"))
    log.info("Prompt received", extra={"kind": "hook"})

Kinds: hook, api, cache, flow, async, error, debug.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, MutableMapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mnemo.files import ACTIVITY_LOG_FILE, home_dir

MAX_LOG_BYTES = 100 * 1024
KEEP_LOG_BYTES = 50 * 1024

_EXTRA_FIELDS = ("kind", "cwd", "session", "data", "timing_ms", "success")


@dataclass(frozen=True)
class RunContext:
    """Where the current invocation is running."""

    cwd: str | None = None
    session: str | None = None


class ContextAdapter(logging.LoggerAdapter):
    """Merges the bound context into each call's ``extra``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def bind(logger: logging.Logger, context: RunContext) -> ContextAdapter:
    return ContextAdapter(logger, {"cwd": context.cwd, "session": context.session})


def _default_kind(record: logging.LogRecord) -> str:
    if record.levelno >= logging.ERROR:
        return "error"
    if record.levelno <= logging.DEBUG:
        return "debug"
    return "flow"


class ActivityLogHandler(logging.Handler):
    """Appends one JSON object per record; trims the file when it grows too big.

    Write failures never propagate: logging is best effort.
    """

    def __init__(
        self,
        path: Path,
        max_bytes: int = MAX_LOG_BYTES,
        keep_bytes: int = KEEP_LOG_BYTES,
        level: int = logging.INFO,
    ) -> None:
        super().__init__(level)
        self.path = path
        self.max_bytes = max_bytes
        self.keep_bytes = keep_bytes

    def to_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "kind": getattr(record, "kind", None) or _default_kind(record),
            "source": record.name,
            "message": record.getMessage(),
        }
        for name in _EXTRA_FIELDS[1:]:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        return entry

    def _trim(self) -> None:
        if not self.path.exists() or self.path.stat().st_size <= self.max_bytes:
            return
        tail = self.path.read_bytes()[-self.keep_bytes :]
        # Drop the partial first line left by the byte cut
        newline = tail.find(b"\n")
        if newline != -1:
            tail = tail[newline + 1 :]
        self.path.write_bytes(tail)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.to_entry(record), ensure_ascii=False, default=str)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._trim()
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except Exception:
            self.handleError(record)

    def handleError(self, record: logging.LogRecord) -> None:
        # Unwritable log files are ignored
        pass


def log_path(root: Path | None = None) -> Path:
    return (root or home_dir()) / ACTIVITY_LOG_FILE


def install(enabled: bool, root: Path | None = None) -> ActivityLogHandler | None:
    """Attach the activity handler to the ``mnemo`` logger (idempotent)."""
    package_logger = logging.getLogger("mnemo")
    for handler in list(package_logger.handlers):
        if isinstance(handler, ActivityLogHandler):
            package_logger.removeHandler(handler)
    if not enabled:
        return None
    handler = ActivityLogHandler(log_path(root))
    package_logger.addHandler(handler)
    if package_logger.level == logging.NOTSET or package_logger.level > logging.INFO:
        package_logger.setLevel(logging.INFO)
    return handler


def read_recent(
    path: Path,
    count: int = 50,
    cwd: str | None = None,
    session: str | None = None,
    kinds: Iterable[str] | None = None,
) -> list[dict[str, Any]]:
    """Last *count* entries matching every given filter."""
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return []

    wanted = set(kinds) if kinds else None
    entries = []
    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if cwd and entry.get("cwd") != cwd:
            continue
        if session and entry.get("session") != session:
            continue
        if wanted and entry.get("kind") not in wanted:
            continue
        entries.append(entry)
    return entries[-count:] if count > 0 else []


def format_entry(entry: dict[str, Any], show_session: bool = False) -> str:
    """One plain-text line: ``HH:MM:SS [KIND ] source message 12ms ok``."""
    timestamp = str(entry.get("timestamp", ""))
    time_part = timestamp.split("T")[1][:8] if "T" in timestamp else timestamp
    parts = [time_part]
    if show_session and entry.get("session"):
        parts.append(str(entry["session"]))
    parts.append(f"[{str(entry.get('kind', 'debug')).upper():<5}]")
    parts.append(str(entry.get("source", "")))
    parts.append(str(entry.get("message", "")))
    if entry.get("timing_ms") is not None:
        parts.append(f"{entry['timing_ms']}ms")
    if entry.get("success") is not None:
        parts.append("ok" if entry["success"] else "failed")
    return " ".join(parts)

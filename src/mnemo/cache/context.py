"""Context cache — remote context payloads with TTL + activity-count eviction.

On disk (``context-cache.json``):

    {
      "entries": {"user": {"data": {...}, "fetchedAt": 1760000000.0}},
      "messageCount": 42,
      "lastRefreshMessageCount": 30
    }

An entry is served only while it is younger than the TTL *and* fewer than
``message_threshold`` messages have arrived since the last refresh.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from mnemo.config import RefreshPolicy
from mnemo.files import CONTEXT_CACHE_FILE, home_dir, read_json, write_json

logger = logging.getLogger(__name__)


class ContextCache:
    """Per-subject remote context with a shared, monotonic activity counter."""

    def __init__(
        self,
        root: Path | None = None,
        policy: RefreshPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = (root or home_dir()) / CONTEXT_CACHE_FILE
        self.policy = policy or RefreshPolicy()
        self._clock = clock

    def _load(self) -> dict[str, Any]:
        data = read_json(self.path)
        if not isinstance(data.get("entries"), dict):
            data["entries"] = {}
        return data

    def _save(self, data: dict[str, Any]) -> None:
        try:
            write_json(self.path, data)
        except OSError as e:
            logger.warning("Failed to write context cache %s: %s", self.path, e)

    @staticmethod
    def _count(data: dict[str, Any], key: str) -> int:
        value = data.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return int(value)

    def _activity_since_refresh(self, data: dict[str, Any]) -> int:
        return self._count(data, "messageCount") - self._count(data, "lastRefreshMessageCount")

    def _entry(self, data: dict[str, Any], subject: str) -> dict[str, Any] | None:
        entry = data["entries"].get(subject)
        return entry if isinstance(entry, dict) and entry else None

    def _fresh(self, entry: dict[str, Any]) -> bool:
        fetched_at = entry.get("fetchedAt")
        if not isinstance(fetched_at, (int, float)):
            return False
        return self._clock() - fetched_at < self.policy.ttl_seconds

    # ── Payloads ──────────────────────────────────────────────

    def get(self, subject: str) -> Any | None:
        """Cached payload for *subject*, or None when missing or stale."""
        data = self._load()
        entry = self._entry(data, subject)
        if entry is None:
            logger.debug("Context cache miss: %s (empty)", subject)
            return None
        if not self._fresh(entry):
            logger.debug("Context cache miss: %s (ttl expired)", subject)
            return None
        if self._activity_since_refresh(data) >= self.policy.message_threshold:
            logger.debug("Context cache miss: %s (activity threshold)", subject)
            return None
        return entry.get("data")

    def set(self, subject: str, payload: Any) -> None:
        data = self._load()
        data["entries"][subject] = {"data": payload, "fetchedAt": self._clock()}
        self._save(data)

    def is_stale(self, subject: str) -> bool:
        """TTL-only staleness, ignoring activity."""
        entry = self._entry(self._load(), subject)
        return entry is None or not self._fresh(entry)

    # ── Activity counter ──────────────────────────────────────

    def increment_activity(self) -> int:
        data = self._load()
        data["messageCount"] = self._count(data, "messageCount") + 1
        self._save(data)
        return data["messageCount"]

    def should_force_refresh(self) -> bool:
        return self._activity_since_refresh(self._load()) >= self.policy.message_threshold

    def mark_refreshed(self) -> None:
        data = self._load()
        data["lastRefreshMessageCount"] = self._count(data, "messageCount")
        self._save(data)

    def reset_activity(self) -> None:
        """New session boundary: counter and baseline both restart at zero."""
        data = self._load()
        data["messageCount"] = 0
        data["lastRefreshMessageCount"] = 0
        self._save(data)

    def clear(self) -> None:
        self._save({})

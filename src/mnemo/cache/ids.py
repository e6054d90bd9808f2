"""Identity cache — workspace, peer and session names to remote IDs.

Entries never expire: remote IDs for a given name are stable, so a cached ID
is trusted until the cache is cleared.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mnemo.files import ID_CACHE_FILE, home_dir, read_json, write_json

logger = logging.getLogger(__name__)


class IdentityCache:
    """Read-through name → ID mapping persisted in ``cache.json``."""

    def __init__(self, root: Path | None = None) -> None:
        self.path = (root or home_dir()) / ID_CACHE_FILE

    def _load(self) -> dict[str, Any]:
        return read_json(self.path)

    def _save(self, data: dict[str, Any]) -> None:
        try:
            write_json(self.path, data)
        except OSError as e:
            logger.warning("Failed to write identity cache %s: %s", self.path, e)

    @staticmethod
    def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
        """A nested mapping, replaced in *data* when it has the wrong shape."""
        value = data.get(key)
        if not isinstance(value, dict):
            value = data[key] = {}
        return value

    @staticmethod
    def _id(value: Any) -> str | None:
        return value if isinstance(value, str) and value else None

    # ── Workspace ─────────────────────────────────────────────

    def get_workspace_id(self, name: str) -> str | None:
        workspace = self._section(self._load(), "workspace")
        if workspace.get("name") == name:
            return self._id(workspace.get("id"))
        return None

    def set_workspace_id(self, name: str, workspace_id: str) -> None:
        data = self._load()
        data["workspace"] = {"name": name, "id": workspace_id}
        self._save(data)

    # ── Peers ─────────────────────────────────────────────────

    def get_peer_id(self, name: str) -> str | None:
        return self._id(self._section(self._load(), "peers").get(name))

    def set_peer_id(self, name: str, peer_id: str) -> None:
        data = self._load()
        self._section(data, "peers")[name] = peer_id
        self._save(data)

    # ── Sessions (keyed by working directory) ─────────────────

    def get_session_id(self, cwd: str, name: str | None = None) -> str | None:
        """Cached session ID for *cwd*; a *name* mismatch counts as a miss."""
        entry = self._section(self._load(), "sessions").get(cwd)
        if not isinstance(entry, dict):
            return None
        if name is not None and entry.get("name") != name:
            return None
        return self._id(entry.get("id"))

    def set_session_id(self, cwd: str, name: str, session_id: str) -> None:
        data = self._load()
        self._section(data, "sessions")[cwd] = {
            "name": name,
            "id": session_id,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        self._save(data)

    # ── Host instance (parallel session tagging) ──────────────

    def get_instance_id(self) -> str | None:
        return self._id(self._load().get("instanceId"))

    def set_instance_id(self, instance_id: str) -> None:
        data = self._load()
        data["instanceId"] = instance_id
        self._save(data)

    def clear(self) -> None:
        self._save({})

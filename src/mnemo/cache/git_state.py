"""Last captured git state per working directory (``git-state.json``)."""

from __future__ import annotations

import logging
from pathlib import Path

from mnemo.files import GIT_STATE_FILE, home_dir, read_json, write_json
from mnemo.git import GitState

logger = logging.getLogger(__name__)


class GitStateStore:
    def __init__(self, root: Path | None = None) -> None:
        self.path = (root or home_dir()) / GIT_STATE_FILE

    def get(self, cwd: str) -> GitState | None:
        entry = read_json(self.path).get(cwd)
        if not isinstance(entry, dict):
            return None
        return GitState.from_dict(entry)

    def set(self, cwd: str, state: GitState) -> None:
        data = read_json(self.path)
        data[cwd] = state.to_dict()
        try:
            write_json(self.path, data)
        except OSError as e:
            logger.warning("Failed to write git state %s: %s", self.path, e)

    def clear(self) -> None:
        try:
            write_json(self.path, {})
        except OSError as e:
            logger.warning("Failed to clear git state %s: %s", self.path, e)

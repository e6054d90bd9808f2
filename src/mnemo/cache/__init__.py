"""On-disk stores that carry state between hook invocations."""

from __future__ import annotations

import logging
from pathlib import Path

from mnemo.cache.context import ContextCache
from mnemo.cache.git_state import GitStateStore
from mnemo.cache.ids import IdentityCache
from mnemo.cache.queue import MessageQueue, QueuedMessage
from mnemo.cache.worklog import WorkLog
from mnemo.files import home_dir

logger = logging.getLogger(__name__)

__all__ = [
    "ContextCache",
    "GitStateStore",
    "IdentityCache",
    "MessageQueue",
    "QueuedMessage",
    "WorkLog",
    "clear_all",
]


def clear_all(root: Path | None = None) -> None:
    """Reset every cache file that exists. The work log is history and is kept."""
    root = root or home_dir()
    stores = [IdentityCache(root), ContextCache(root), GitStateStore(root), MessageQueue(root)]
    for store in stores:
        if store.path.exists():
            store.clear()
    logger.info("Cleared caches in %s", root)

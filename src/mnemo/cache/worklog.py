"""Work log — a capped markdown record of what the assistant has been doing.

Unlike the JSON caches this file is history, not cache: ``clear_all`` leaves
it alone. It carries a YAML front-matter header:

    ---
    session: jane-proj
    updated: '2026-10-19T09:30:00+00:00'
    ---
    # Work Context
    ...
    ## Recent Activity
    - [2026-10-19T09:30:00+00:00] Edited config.py (changed: foo -> bar)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path

import frontmatter

from mnemo.files import WORK_LOG_FILE, atomic_write_text, home_dir

logger = logging.getLogger(__name__)

ACTIVITY_HEADING = "## Recent Activity"
DEFAULT_MAX_ENTRIES = 10

_DEFAULT_HEADER = (
    "# Work Context\n\n"
    "Auto-generated log of the assistant's recent work.\n\n"
    f"{ACTIVITY_HEADING}\n"
)
_ACTION_WORDS = ("Created", "Updated", "Fixed")


class WorkLog:
    def __init__(self, root: Path | None = None, max_entries: int | None = None) -> None:
        self.path = (root or home_dir()) / WORK_LOG_FILE
        self.max_entries = max_entries or DEFAULT_MAX_ENTRIES

    def _load(self) -> frontmatter.Post:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return frontmatter.Post(_DEFAULT_HEADER)
        except OSError as e:
            logger.warning("Cannot read work log %s: %s", self.path, e)
            return frontmatter.Post(_DEFAULT_HEADER)
        try:
            return frontmatter.loads(text)
        except Exception:
            logger.debug("Malformed front matter in %s, keeping body only", self.path)
            return frontmatter.Post(text)

    def _save(self, post: frontmatter.Post) -> None:
        post.metadata["updated"] = datetime.now(timezone.utc).isoformat(timespec="seconds")
        try:
            atomic_write_text(self.path, frontmatter.dumps(post) + "\n")
        except OSError as e:
            logger.warning("Failed to write work log %s: %s", self.path, e)

    @staticmethod
    def _split_activity(content: str) -> tuple[str, list[str]]:
        """(text up to and including the activity heading, activity lines)."""
        lines = content.split("\n")
        for i, line in enumerate(lines):
            if ACTIVITY_HEADING in line:
                header = "\n".join(lines[: i + 1])
                return header, [entry for entry in lines[i + 1 :] if entry.strip()]
        return content.rstrip("\n") + f"\n\n{ACTIVITY_HEADING}", []

    def read(self) -> str:
        """Body text without the front-matter header; empty if no log yet."""
        if not self.path.exists():
            return ""
        return self._load().content

    def entries(self) -> list[str]:
        return self._split_activity(self._load().content)[1]

    def append(self, description: str) -> None:
        """Add one timestamped entry, keeping only the newest ``max_entries``."""
        post = self._load()
        header, activities = self._split_activity(post.content)
        keep = activities[-(self.max_entries - 1) :] if self.max_entries > 1 else []
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        keep.append(f"- [{stamp}] {description}")
        post.content = header + "\n" + "\n".join(keep)
        self._save(post)

    def write_summary(
        self, session_name: str, work_items: list[str], assistant_messages: list[str]
    ) -> None:
        """Replace the summary sections, preserving recent activity."""
        post = self._load()
        _, activities = self._split_activity(post.content)

        actions = []
        for msg in assistant_messages[-10:]:
            if any(word in msg for word in _ACTION_WORDS):
                first = re.split(r"[.!?\n]", msg, maxsplit=1)[0]
                if len(first) < 200:
                    actions.append(first)

        sections = ["# Work Context", "", f"Session: {session_name}", ""]
        sections += ["## What Was Being Worked On", ""]
        sections += [f"- {item}" for item in work_items] or ["- (nothing recorded)"]
        sections.append("")
        if actions:
            sections += ["## Recent Actions", ""]
            sections += [f"- {a}" for a in actions[-10:]]
            sections.append("")
        sections.append(ACTIVITY_HEADING)
        sections += activities[-self.max_entries :]

        post.content = "\n".join(sections)
        post.metadata["session"] = session_name
        self._save(post)

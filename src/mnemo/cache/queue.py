"""Durable outbound message queue (``message-queue.jsonl``).

Hooks append a message here *before* any network call, so a prompt survives
Ctrl+C, timeouts and dead networks. Records leave the log only once their
upload is confirmed, and scoped removal never touches another working
directory's backlog.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mnemo.files import MESSAGE_QUEUE_FILE, atomic_write_text, home_dir

logger = logging.getLogger(__name__)


@dataclass
class QueuedMessage:
    content: str
    peer_id: str
    cwd: str
    timestamp: str
    uploaded: bool = False
    instance_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "content": self.content,
            "peerId": self.peer_id,
            "cwd": self.cwd,
            "timestamp": self.timestamp,
            "uploaded": self.uploaded,
        }
        if self.instance_id:
            data["instanceId"] = self.instance_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedMessage:
        return cls(
            content=str(data.get("content", "")),
            peer_id=str(data.get("peerId", "")),
            cwd=str(data.get("cwd", "")),
            timestamp=str(data.get("timestamp", "")),
            uploaded=bool(data.get("uploaded", False)),
            instance_id=data.get("instanceId"),
        )


class MessageQueue:
    """Append-only JSONL log of messages awaiting upload."""

    def __init__(self, root: Path | None = None) -> None:
        self.path = (root or home_dir()) / MESSAGE_QUEUE_FILE

    def enqueue(
        self, content: str, peer_id: str, cwd: str, instance_id: str | None = None
    ) -> QueuedMessage:
        """Append one record and fsync it; returns the stored record."""
        message = QueuedMessage(
            content=content,
            peer_id=peer_id,
            cwd=cwd,
            timestamp=datetime.now(timezone.utc).isoformat(),
            instance_id=instance_id,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(message.to_dict(), ensure_ascii=False) + "\n")
            f.flush()
            os.fsync(f.fileno())
        logger.debug("Queued message for %s (%d chars)", cwd, len(content))
        return message

    def _read_records(self) -> list[dict[str, Any]]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning("Cannot read message queue %s: %s", self.path, e)
            return []

        records = []
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping corrupt queue line %d", lineno)
                continue
            if isinstance(data, dict):
                records.append(data)
        return records

    def list_pending(self, cwd: str | None = None) -> list[QueuedMessage]:
        messages = [
            QueuedMessage.from_dict(r) for r in self._read_records() if not r.get("uploaded")
        ]
        if cwd is not None:
            messages = [m for m in messages if m.cwd == cwd]
        return messages

    @staticmethod
    def _key(record: dict[str, Any]) -> tuple[str, str, str]:
        return (str(record.get("cwd", "")), str(record.get("timestamp", "")), str(record.get("content", "")))

    def mark_uploaded(
        self, cwd: str | None = None, uploaded: list[QueuedMessage] | None = None
    ) -> None:
        """Drop confirmed records: everything, or only those for *cwd*.

        With *uploaded*, only those exact records go; anything queued for
        *cwd* after the batch was read stays pending.
        """
        if cwd is None and uploaded is None:
            self.clear()
            return
        if not self.path.exists():
            return

        if uploaded is not None:
            sent = {(m.cwd, m.timestamp, m.content) for m in uploaded}
            remaining = [r for r in self._read_records() if self._key(r) not in sent]
        else:
            remaining = [r for r in self._read_records() if r.get("cwd") != cwd]
        body = "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in remaining)
        try:
            atomic_write_text(self.path, body)
        except OSError as e:
            logger.warning("Failed to rewrite message queue %s: %s", self.path, e)

    def clear(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("", encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to clear message queue %s: %s", self.path, e)

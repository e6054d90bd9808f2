"""Reading host transcripts (JSON lines) for assistant prose."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MEANINGFUL_LIMIT = 3000
BRIEF_LIMIT = 1500

_TOOL_ANNOUNCEMENT = re.compile(
    r"^(I'll|Let me|I'm going to|I will|Now I'll|First,? I'll)\s+"
    r"(run|use|execute|check|read|look at|search|edit|write|create)",
    re.I,
)
_NARRATION = re.compile(r"^(Running|Checking|Looking at)\s+", re.I)
_ACKNOWLEDGEMENT = re.compile(r"^(The command|The file|The output|This shows|Here's what)", re.I)
_SIGNALS = [
    re.compile(
        r"\b(because|since|therefore|however|although|this means|in summary|to summarize|"
        r"the issue is|the problem is|I recommend|you should|we should|this approach|"
        r"the solution|key point|important|note that)\b",
        re.I,
    ),
    re.compile(r"\b(implemented|fixed|resolved|completed|added|created|updated|changed|modified|refactored)\b", re.I),
    re.compile(r"\b(error|bug|issue|problem|solution|fix|improvement|optimization)\b", re.I),
]
_WORK_ITEMS = [
    re.compile(r"(?:created|wrote|added)\s+(?:file\s+)?([^\n.]+)", re.I),
    re.compile(r"(?:edited|modified|updated|fixed)\s+([^\n.]+)", re.I),
    re.compile(r"(?:implemented|built|developed)\s+([^\n.]+)", re.I),
    re.compile(r"(?:refactored|optimized|improved)\s+([^\n.]+)", re.I),
]


@dataclass
class TranscriptMessage:
    role: str
    content: str
    meaningful: bool = False


def is_meaningful(content: str) -> bool:
    """Explanations and summaries, as opposed to tool-call narration."""
    text = content.strip()
    if len(content) < 50:
        return False
    if len(content) < 200 and (_TOOL_ANNOUNCEMENT.match(text) or _NARRATION.match(text)):
        return False
    if len(content) < 150 and _ACKNOWLEDGEMENT.match(text):
        return False
    if any(p.search(content) for p in _SIGNALS):
        return True
    return len(content) >= 200


def is_worth_saving(content: str) -> bool:
    """Looser test for a single final response."""
    if len(content) < 50:
        return False
    if len(content) < 200 and _TOOL_ANNOUNCEMENT.match(content.strip()):
        return False
    return len(content) >= 100


def _entries(path: str | Path | None) -> list[dict[str, Any]]:
    if not path:
        return []
    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except OSError as e:
        logger.debug("Cannot read transcript %s: %s", path, e)
        return []
    entries = []
    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries


def _role_and_content(entry: dict[str, Any]) -> tuple[str | None, Any]:
    message = entry.get("message") if isinstance(entry.get("message"), dict) else {}
    return entry.get("type") or entry.get("role"), message.get("content") or entry.get("content")


def _text_blocks(content: Any, sep: str) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return sep.join(
        block["text"]
        for block in content
        if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
    )


def parse_transcript(path: str | Path | None) -> list[TranscriptMessage]:
    """User and assistant messages in order; tool-only turns name their tools."""
    messages = []
    for entry in _entries(path):
        role, content = _role_and_content(entry)
        if not content:
            continue
        if role == "user":
            text = _text_blocks(content, "\n")
            if text.strip():
                messages.append(TranscriptMessage("user", text))
        elif role == "assistant":
            text = _text_blocks(content, "\n\n")
            if isinstance(content, list):
                tools = [
                    block["name"]
                    for block in content
                    if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("name")
                ]
                if tools and len(text) < 100:
                    text = text + ("\n" if text else "") + f"[Used tools: {', '.join(tools)}]"
            if text.strip():
                meaningful = is_meaningful(text)
                limit = MEANINGFUL_LIMIT if meaningful else BRIEF_LIMIT
                messages.append(TranscriptMessage("assistant", text[:limit], meaningful))
    return messages


def last_assistant_message(path: str | Path | None) -> str | None:
    for entry in reversed(_entries(path)):
        role, content = _role_and_content(entry)
        if role != "assistant" or not content:
            continue
        text = _text_blocks(content, "\n\n")
        if text.strip():
            return text
    return None


def extract_work_items(assistant_messages: list[str]) -> list[str]:
    items: list[str] = []
    for msg in assistant_messages[-15:]:
        for pattern in _WORK_ITEMS:
            for match in pattern.finditer(msg):
                item = match.group(1).strip()
                if item and len(item) < 100 and item not in items:
                    items.append(item)
    return items[:10]

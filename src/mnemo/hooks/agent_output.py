"""Cursor's afterAgentResponse and afterAgentThought hooks."""

from __future__ import annotations

from mnemo.backends.base import BackendError
from mnemo.hooks.base import HookRun
from mnemo.hooks.transcript import is_worth_saving

THOUGHT_MIN_CHARS = 500
THOUGHT_MIN_MS = 3000
THOUGHT_LIMIT = 4000


def _text(run: HookRun) -> str:
    text = run.payload.get("text")
    return text if isinstance(text, str) else ""


async def _upload(run: HookRun, content: str, **metadata) -> None:
    try:
        await run.bridge.upload_assistant(run.cwd, [content], **metadata)
    except BackendError as e:
        run.log.warning("Upload failed: %s", e, extra={"kind": "api", "success": False})


async def handle_response(run: HookRun) -> None:
    if not run.config.save_messages:
        return
    text = _text(run)
    if not is_worth_saving(text):
        return
    run.log.info("Capturing response (%d chars)", len(text), extra={"kind": "hook"})
    await _upload(run, text, type="assistant_response")


def is_deep_thought(text: str, duration_ms: object) -> bool:
    """Only substantial reasoning: long, and not a quick flash of thought."""
    if len(text) < THOUGHT_MIN_CHARS:
        return False
    return not (isinstance(duration_ms, (int, float)) and 0 < duration_ms < THOUGHT_MIN_MS)


async def handle_thought(run: HookRun) -> None:
    if not run.config.save_messages:
        return
    text = _text(run)
    duration_ms = run.payload.get("duration_ms")
    if not is_deep_thought(text, duration_ms):
        return

    run.log.info(
        "Capturing deep reasoning (%d chars, %sms)", len(text), duration_ms, extra={"kind": "hook"}
    )
    truncated = text[:THOUGHT_LIMIT] + "..." if len(text) > THOUGHT_LIMIT else text
    await _upload(
        run,
        f"[Reasoning] {truncated}",
        max_chars=None,
        type="agent_thought",
        duration_ms=duration_ms,
    )

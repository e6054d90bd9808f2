"""session-end: drain this directory's queue and leave a local summary.

Steps:
1. Upload queued user messages for this cwd (other directories are untouched)
2. Upload assistant prose from the transcript, meaningful messages first
3. Rewrite the local work log summary
4. Post a session-ended marker
"""

from __future__ import annotations

from mnemo.backends.base import BackendError
from mnemo.hooks.base import HookRun
from mnemo.hooks.transcript import TranscriptMessage, extract_work_items, parse_transcript

MAX_MEANINGFUL = 25
MAX_BRIEF = 15
MAX_ASSISTANT = 40


def select_assistant_messages(messages: list[TranscriptMessage]) -> list[TranscriptMessage]:
    assistant = [m for m in messages if m.role == "assistant"]
    meaningful = [m for m in assistant if m.meaningful][-MAX_MEANINGFUL:]
    brief = [m for m in assistant if not m.meaningful][-MAX_BRIEF:]
    return (meaningful + brief)[-MAX_ASSISTANT:]


async def handle(run: HookRun) -> None:
    bridge = run.bridge
    reason = str(run.payload.get("reason") or "unknown")
    model = run.payload.get("model")
    run.log.info("Session ending", extra={"kind": "hook", "data": {"reason": reason}})

    transcript = parse_transcript(run.payload.get("transcript_path"))

    try:
        flushed = await bridge.flush_queue(run.cwd)
    except BackendError as e:
        flushed = 0
        run.log.warning("Queue flush failed, messages kept: %s", e, extra={"kind": "api", "success": False})

    selected: list[TranscriptMessage] = []
    if run.config.save_messages:
        selected = select_assistant_messages(transcript)
        meaningful = [m.content for m in selected if m.meaningful]
        brief = [m.content for m in selected if not m.meaningful]
        try:
            await bridge.upload_assistant(
                run.cwd, meaningful, type="assistant_prose", meaningful=True, model=model
            )
            await bridge.upload_assistant(
                run.cwd, brief, type="assistant_brief", meaningful=False, model=model
            )
        except BackendError as e:
            run.log.warning("Assistant upload failed: %s", e, extra={"kind": "api", "success": False})

    contents = [m.content for m in selected]
    bridge.work_log.write_summary(run.session_name, extract_work_items(contents), contents)

    try:
        await bridge.mark_session_end(run.cwd, reason, len(transcript), model=model)
    except BackendError as e:
        run.log.warning("End marker failed: %s", e, extra={"kind": "api", "success": False})

    run.log.info(
        "Session saved: %d assistant msgs, %d queued msgs",
        len(selected),
        flushed,
        extra={"kind": "hook"},
    )

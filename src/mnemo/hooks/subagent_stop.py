"""subagent-stop: record what a finished subagent did."""

from __future__ import annotations

from typing import Any

from mnemo.backends.base import BackendError
from mnemo.hooks.base import HookRun

RESULT_PREVIEW = 500


def summarize_subagent(subagent_type: str, result: str, duration: Any) -> tuple[str, str]:
    """(message for the backend, work log line)."""
    seconds = f" ({round(duration / 1000)}s)" if isinstance(duration, (int, float)) and duration else ""
    preview = result[:RESULT_PREVIEW] + "..." if len(result) > RESULT_PREVIEW else result
    return (
        f"[Subagent {subagent_type}]{seconds} {preview}",
        f"Subagent ({subagent_type}): completed{seconds}",
    )


async def handle(run: HookRun) -> None:
    if not run.config.save_messages:
        run.stop()
        return
    status = run.payload.get("status") or "unknown"
    if status not in ("completed", "success"):
        run.stop()
        return

    subagent_type = str(run.payload.get("subagent_type") or "unknown")
    result = run.payload.get("result")
    message, work_line = summarize_subagent(
        subagent_type, result if isinstance(result, str) else "", run.payload.get("duration")
    )
    run.log.info("Subagent %s completed", subagent_type, extra={"kind": "hook"})
    run.bridge.work_log.append(work_line)

    try:
        await run.bridge.upload_assistant(
            run.cwd, [message], type="subagent_result", subagent_type=subagent_type
        )
    except BackendError as e:
        run.log.warning("Upload failed: %s", e, extra={"kind": "api", "success": False})
    run.stop()

"""stop: save the final assistant response of a turn."""

from __future__ import annotations

from mnemo.backends.base import BackendError
from mnemo.hooks.base import HookRun, host_metadata
from mnemo.hooks.transcript import is_worth_saving, last_assistant_message


async def handle(run: HookRun) -> None:
    if not run.config.save_messages:
        return
    # Claude Code sets this while a stop hook is already continuing the turn
    if run.payload.get("stop_hook_active"):
        return

    message = last_assistant_message(run.payload.get("transcript_path"))
    if not message or not is_worth_saving(message):
        run.log.info("Skipping (no meaningful content)", extra={"kind": "hook"})
        run.stop()
        return

    run.log.info("Capturing assistant response (%d chars)", len(message), extra={"kind": "hook"})
    try:
        await run.bridge.upload_assistant(
            run.cwd, [message], type="assistant_response", **host_metadata(run.payload)
        )
    except BackendError as e:
        run.log.warning("Upload failed: %s", e, extra={"kind": "api", "success": False})
        run.stop()
        return
    run.stop(f"[honcho] response -> saved response ({len(message)} chars)")

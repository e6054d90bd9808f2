"""pre-compact: anchor memory in the conversation before it is summarized."""

from __future__ import annotations

from mnemo.backends.base import BackendError
from mnemo.hooks.base import HookRun


async def handle(run: HookRun) -> None:
    trigger = run.payload.get("trigger") or "auto"
    run.log.info(
        "Compaction triggered (%s)",
        trigger,
        extra={
            "kind": "hook",
            "data": {
                "context_usage_percent": run.payload.get("context_usage_percent"),
                "is_first_compaction": run.payload.get("is_first_compaction"),
            },
        },
    )

    try:
        anchor = await run.bridge.load_compaction_context(run.cwd)
    except BackendError as e:
        run.log.warning("Memory anchor failed: %s", e, extra={"kind": "api", "success": False})
        run.warn(f"pre-compact warning: {e}")
        return

    card = anchor.render()
    run.log.info("Memory anchored (%d chars)", len(card), extra={"kind": "hook"})
    run.memory_anchor(card)

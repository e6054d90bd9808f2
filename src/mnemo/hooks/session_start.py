"""session-start: snapshot git, report external changes, load memory context."""

from __future__ import annotations

from mnemo import git
from mnemo.backends.base import BackendError
from mnemo.hooks.base import HookRun


async def handle(run: HookRun) -> None:
    bridge = run.bridge
    cwd = run.cwd

    instance_id = run.payload.get("conversation_id") or run.payload.get("session_id")
    if instance_id:
        bridge.ids.set_instance_id(str(instance_id))
    bridge.context_cache.reset_activity()

    previous = bridge.git_states.get(cwd)
    current = git.capture(cwd)
    changes = git.diff(previous, current) if current else []
    commits = git.recent_commits(cwd) if current else []
    feature = git.infer_feature_context(current, commits) if current else None
    if current:
        bridge.git_states.set(cwd, current)

    run.log.info(
        "Starting session in %s",
        cwd,
        extra={"kind": "hook", "data": {"branch": current.branch if current else None}},
    )

    try:
        await bridge.resolve_workspace()
        reported = await bridge.record_git_changes(cwd, changes)
        if reported:
            run.log.info("Reported %d git changes", reported, extra={"kind": "api"})
    except BackendError as e:
        run.log.warning("Git change upload failed: %s", e, extra={"kind": "api", "success": False})

    assembled = await bridge.load_startup_context(
        cwd, git_state=current, changes=changes, feature=feature, commits=commits
    )
    if assembled.attempted:
        status = f"[honcho] session-start <- {assembled.succeeded}/{assembled.attempted} memory sources loaded"
    else:
        status = "[honcho] session-start <- offline, local context only"
    run.session_start(assembled.render(), status)

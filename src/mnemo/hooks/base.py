"""Shared hook plumbing: payload parsing, per-run wiring and host output.

The business logic of every hook is identical across hosts; only the final
output differs:

Claude Code:
    SessionStart     -> plain text on stdout
    UserPromptSubmit -> {"hookSpecificOutput": {...}, "systemMessage": ...}
    Stop/PostToolUse -> {"systemMessage": ...} or nothing
    PreCompact       -> plain text memory anchor

Cursor:
    sessionStart        -> {"additional_context", "user_message"}
    beforeSubmitPrompt  -> {"continue": true, "user_message"}
    stop                -> {} (no followup_message, avoiding auto-loops)
    postToolUse         -> stderr only
    preCompact          -> {"user_message"}
    subagentStop        -> {}
    afterAgentResponse,
    afterAgentThought   -> nothing
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import IO, Any

from mnemo import log as activity_log
from mnemo.backends.base import MemoryBackend
from mnemo.config import Host, ResolvedConfig, detect_host, get_session_name, load_config
from mnemo.core import MemoryBridge
from mnemo.log import ContextAdapter, RunContext, bind

logger = logging.getLogger(__name__)

BackendFactory = Callable[[ResolvedConfig], MemoryBackend]
HookHandler = Callable[["HookRun"], Awaitable[None]]


@dataclass(frozen=True)
class Hook:
    """A hook handler plus the reply the host gets if the handler fails."""

    handle: HookHandler
    fallback: Callable[["HookRun"], None] | None = None


def _default_backend(config: ResolvedConfig) -> MemoryBackend:
    from mnemo.backends.honcho import HonchoBackend

    return HonchoBackend.from_config(config)


def read_payload(stream: IO[str] | None = None) -> dict[str, Any]:
    """Parse the hook's JSON payload; empty or invalid input reads as {}."""
    stream = stream if stream is not None else sys.stdin
    try:
        text = stream.read()
    except (OSError, ValueError):
        return {}
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed hook payload")
        return {}
    return data if isinstance(data, dict) else {}


def resolve_cwd(payload: dict[str, Any]) -> str:
    """workspace_roots[0] > cwd > host project env > process cwd."""
    roots = payload.get("workspace_roots")
    if isinstance(roots, list) and roots and isinstance(roots[0], str) and roots[0]:
        return roots[0]
    if isinstance(payload.get("cwd"), str) and payload["cwd"]:
        return payload["cwd"]
    return os.getenv("CURSOR_PROJECT_DIR") or os.getenv("CLAUDE_PROJECT_DIR") or os.getcwd()


def host_metadata(payload: dict[str, Any]) -> dict[str, Any]:
    """Host-supplied fields worth attaching to uploaded messages."""
    return {
        key: payload.get(key) or None
        for key in ("model", "cursor_version", "user_email", "generation_id")
    }


@dataclass
class HookRun:
    """Everything a hook handler needs for one invocation."""

    payload: dict[str, Any]
    host: Host
    cwd: str
    config: ResolvedConfig
    bridge: MemoryBridge
    log: ContextAdapter
    out: IO[str] = field(default_factory=lambda: sys.stdout)
    err: IO[str] = field(default_factory=lambda: sys.stderr)
    responded: bool = field(default=False, init=False)

    @property
    def session_name(self) -> str:
        return get_session_name(self.cwd, self.config)

    # ── Output ───────────────────────────────────────────────

    def _write(self, text: str) -> None:
        print(text, file=self.out)
        self.responded = True

    def _json(self, data: dict[str, Any]) -> None:
        self._write(json.dumps(data, ensure_ascii=False))

    def session_start(self, context: str, status_line: str) -> None:
        banner = f"[{self.config.ai_peer}/Honcho Memory Loaded]\n\n{context}"
        if self.host == "cursor":
            self._json({"additional_context": banner, "user_message": status_line})
        else:
            self._write(f"\n{banner}")

    def memory_anchor(self, card: str) -> None:
        anchor = f"[{self.config.ai_peer}/Honcho Memory Anchor]\n\n{card}"
        if self.host == "cursor":
            self._json({"user_message": anchor})
        else:
            self._write(f"\n{anchor}")

    def prompt_context(self, parts: list[str], system_message: str | None = None) -> None:
        text = f"[Honcho Memory for {self.config.peer_name}]: {' | '.join(parts)}"
        if self.host == "cursor":
            self._json({"continue": True, "user_message": text})
            return
        output: dict[str, Any] = {
            "hookSpecificOutput": {
                "hookEventName": "UserPromptSubmit",
                "additionalContext": text,
            }
        }
        if system_message:
            output["systemMessage"] = system_message
        self._json(output)

    def prompt_continue(self, system_message: str | None = None) -> None:
        if self.host == "cursor":
            self._json({"continue": True})
        elif system_message:
            self._json({"systemMessage": system_message})

    def stop(self, system_message: str | None = None) -> None:
        if self.host == "cursor":
            self._json({})
        elif system_message:
            self._json({"systemMessage": system_message})

    def tool_captured(self, summary: str) -> None:
        line = f"[honcho] post-tool-use -> captured: {summary}"
        if self.host == "cursor":
            print(line, file=self.err)
        else:
            self._json({"systemMessage": line})

    def warn(self, message: str) -> None:
        print(f"[honcho] {message}", file=self.err)


def prepare(
    payload: dict[str, Any],
    backend_factory: BackendFactory | None = None,
    out: IO[str] | None = None,
    err: IO[str] | None = None,
) -> HookRun | None:
    """Resolve host and config; None means the hook should do nothing."""
    host = detect_host(payload)
    config = load_config(host)
    if config is None:
        logger.debug("No API key configured; hook is a no-op")
        return None
    if not config.enabled:
        return None

    activity_log.install(config.logging)
    cwd = resolve_cwd(payload)
    context = RunContext(cwd=cwd, session=get_session_name(cwd, config))
    backend = (backend_factory or _default_backend)(config)
    return HookRun(
        payload=payload,
        host=host,
        cwd=cwd,
        config=config,
        bridge=MemoryBridge(config, backend, context=context),
        log=bind(logger, context),
        out=out or sys.stdout,
        err=err or sys.stderr,
    )


async def _run(handler: HookHandler, run: HookRun) -> None:
    try:
        await handler(run)
    finally:
        await run.bridge.backend.close()


def run_hook(
    hook: Hook,
    stdin: IO[str] | None = None,
    backend_factory: BackendFactory | None = None,
) -> int:
    """Run one hook to completion. Always returns 0: hooks never block the host."""
    payload = read_payload(stdin)
    try:
        run = prepare(payload, backend_factory)
    except Exception as e:
        logger.error("Hook setup failed: %s", e, exc_info=True)
        return 0
    if run is None:
        return 0
    try:
        asyncio.run(_run(hook.handle, run))
    except Exception as e:
        run.log.error("Hook failed: %s", e, exc_info=True, extra={"kind": "error"})
        if hook.fallback and not run.responded:
            hook.fallback(run)
    return 0

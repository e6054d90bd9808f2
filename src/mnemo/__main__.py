"""Entry point: python -m mnemo <command>

- Hook names (session-start, user-prompt, ...): run a hook, payload on stdin
- status / clear / logs: inspect or reset local state
- search / ask / remember: on-demand memory tools
- enable / disable / endpoint / session: edit config.json
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from mnemo import cache, config
from mnemo import log as activity_log
from mnemo.files import home_dir

USAGE = """\
Usage: mnemo <command> [args]
  session-start | user-prompt | before-submit-prompt |
  post-tool-use | pre-compact | stop | subagent-stop |
  after-agent-response | after-agent-thought |
  session-end                              Run a hook (JSON payload on stdin)
  status                                   Show resolved config and queue
  clear                                    Clear caches (keeps work log)
  logs [N]                                 Show the last N activity entries
  search <query>                           Search this directory's session
  ask <question>                           Ask memory about the user
  remember <text>                          Save a conclusion about the user
  enable | disable                         Toggle the plugin
  endpoint <local|production|URL>          Point at a different server
  session <name> | session --reset         Pin or unpin this directory's session
"""


def _setup_logging() -> None:
    # stdout belongs to the host; diagnostics go to stderr
    logging.basicConfig(
        level=getattr(logging, os.getenv("MNEMO_LOG_LEVEL", "WARNING").upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _require_config() -> config.ResolvedConfig:
    cfg = config.load_config()
    if cfg is None:
        print("No API key configured. Set HONCHO_API_KEY or add apiKey to config.json.")
        sys.exit(1)
    return cfg


def _run_with_bridge(action: Callable[[Any], Awaitable[None]]) -> None:
    from mnemo.backends.honcho import HonchoBackend
    from mnemo.core import MemoryBridge

    cfg = _require_config()
    activity_log.install(cfg.logging)

    async def _go() -> None:
        async with HonchoBackend.from_config(cfg) as backend:
            await action(MemoryBridge(cfg, backend))

    asyncio.run(_go())


def _status() -> None:
    cfg = config.load_config()
    root = home_dir()
    print(f"Home:      {root}")
    if cfg is None:
        print("Config:    missing (no API key)")
        return
    kind, url = config.endpoint_info(cfg)
    cwd = os.getcwd()
    pending = cache.MessageQueue(root).list_pending()
    print(f"Enabled:   {cfg.enabled}")
    print(f"Endpoint:  {kind} ({url})")
    print(f"Peer:      {cfg.peer_name}")
    print(f"AI peer:   {cfg.ai_peer}")
    print(f"Workspace: {cfg.workspace}")
    print(f"Session:   {config.get_session_name(cwd, cfg)}")
    print(f"Refresh:   every {cfg.context_refresh.message_threshold} prompts or {cfg.context_refresh.ttl_seconds}s")
    print(f"Queue:     {len(pending)} pending ({sum(1 for m in pending if m.cwd == cwd)} here)")


def _logs(args: list[str]) -> None:
    count = int(args[0]) if args and args[0].isdigit() else 50
    entries = activity_log.read_recent(activity_log.log_path(), count)
    if not entries:
        print("No activity logged yet.")
        return
    for entry in entries:
        print(activity_log.format_entry(entry, show_session=True))


def _search(query: str) -> None:
    async def action(bridge: Any) -> None:
        hits = await bridge.search(os.getcwd(), query)
        if not hits:
            print("No matches.")
        for hit in hits:
            print(f"- {hit.content[:300]}")

    _run_with_bridge(action)


def _ask(question: str) -> None:
    async def action(bridge: Any) -> None:
        answer = await bridge.ask(os.getcwd(), question)
        print(answer or "No answer available.")

    _run_with_bridge(action)


def _remember(text: str) -> None:
    async def action(bridge: Any) -> None:
        conclusion = await bridge.save_insight(os.getcwd(), text)
        print(f"Saved: {conclusion.content}")

    _run_with_bridge(action)


def _endpoint(target: str) -> None:
    if target in ("local", "production"):
        config.set_endpoint(environment=target)
    elif target.startswith(("http://", "https://")):
        config.set_endpoint(base_url=target)
    else:
        print(f"Unknown endpoint: {target}")
        sys.exit(1)
    cfg = _require_config()
    print("Endpoint: %s (%s)" % config.endpoint_info(cfg))


def _session(args: list[str]) -> None:
    cwd = os.getcwd()
    if args[0] == "--reset":
        config.remove_session_for_path(cwd)
        print(f"Session for {cwd} reset to default")
    else:
        config.set_session_for_path(cwd, config.sanitize_for_session_name(args[0]))
        print(f"Session for {cwd}: {config.sanitize_for_session_name(args[0])}")


def main() -> None:
    _setup_logging()
    args = sys.argv[1:]
    cmd = args[0] if args else ""
    rest = args[1:]

    from mnemo.hooks import HOOKS, run_hook

    if cmd in HOOKS:
        sys.exit(run_hook(HOOKS[cmd]))
    elif cmd == "status":
        _status()
    elif cmd == "clear":
        cache.clear_all()
        print(f"Cleared caches in {home_dir()}")
    elif cmd == "logs":
        _logs(rest)
    elif cmd in ("search", "ask", "remember") and rest:
        {"search": _search, "ask": _ask, "remember": _remember}[cmd](" ".join(rest))
    elif cmd in ("enable", "disable"):
        _require_config()
        config.set_enabled(cmd == "enable")
        print(f"mnemo {cmd}d")
    elif cmd == "endpoint" and rest:
        _endpoint(rest[0])
    elif cmd == "session" and rest:
        _session(rest)
    else:
        print(USAGE, end="")
        sys.exit(1)


if __name__ == "__main__":
    main()

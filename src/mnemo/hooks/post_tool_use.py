"""post-tool-use: one-line summaries of significant tool calls."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Any

from mnemo.backends.base import BackendError
from mnemo.hooks.base import HookRun

# Bash (Claude Code) and Shell (Cursor) are the same tool
SIGNIFICANT_TOOLS = frozenset({"Write", "Edit", "Bash", "Shell", "Task", "NotebookEdit"})
TRIVIAL_COMMANDS = (
    "ls", "pwd", "echo", "cat", "head", "tail", "which", "type",
    "git status", "git log", "git diff",
)


def should_log(tool_name: str, tool_input: dict[str, Any]) -> bool:
    if tool_name not in SIGNIFICANT_TOOLS:
        return False
    if tool_name in ("Bash", "Shell"):
        command = str(tool_input.get("command") or "").strip()
        return not command.startswith(TRIVIAL_COMMANDS)
    return True


def _file_name(path: str) -> str:
    return PurePosixPath(path).name or path


def content_purpose(content: str, file_path: str) -> str:
    ext = PurePosixPath(file_path).suffix.lstrip(".").lower()

    if ext in ("ts", "tsx", "js", "jsx"):
        m = re.search(r"export\s+(default\s+)?(function|class|const|interface|type)\s+(\w+)", content)
        if m:
            return f"defines {m.group(2)} {m.group(3)}"
        m = re.search(r"(?:function|const)\s+(\w+).*(?:return|=>)\s*[(<]", content)
        if m:
            return f"component {m.group(1)}"

    if ext == "py":
        cls = re.search(r"class\s+(\w+)", content)
        if cls:
            return f"defines class {cls.group(1)}"
        func = re.search(r"def\s+(\w+)", content)
        if func:
            return f"defines function {func.group(1)}"

    if ext in ("md", "mdx", "txt"):
        m = re.search(r"^#\s+(.+)$", content, re.M)
        if m:
            return f"doc: {m.group(1)[:50]}"

    if ext in ("json", "yaml", "yml", "toml"):
        return "config file"

    return f"{len(content.split(chr(10)))} lines"


def summarize_edit(old: str, new: str, file_path: str) -> str:
    old_lines = len(old.split("\n"))
    new_lines = len(new.split("\n"))
    if not old.strip():
        return f"added {new_lines} lines ({content_purpose(new, file_path)})"
    if not new.strip():
        return f"removed {old_lines} lines"

    old_tokens = re.findall(r"\w+", old)
    new_tokens = re.findall(r"\w+", new)
    added = [t for t in new_tokens if t not in old_tokens and len(t) > 2]
    removed = [t for t in old_tokens if t not in new_tokens and len(t) > 2]
    if added and removed:
        return f"changed: {', '.join(removed[:2])} -> {', '.join(added[:2])}"
    if added:
        return f"added: {', '.join(added[:3])}"
    if removed:
        return f"removed: {', '.join(removed[:3])}"

    delta = new_lines - old_lines
    if delta > 0:
        return f"expanded by {delta} lines"
    if delta < 0:
        return f"reduced by {-delta} lines"
    return f"modified {old_lines} lines"


def _summarize_command(command: str, success: bool) -> str:
    outcome = "success" if success else "failed"
    head = re.split(r"[;&|]", command)[0].strip()
    if any(pm in command for pm in ("npm", "pnpm", "yarn", "bun", "pip", "uv ")):
        m = re.search(r"(install|build|test|run|dev|start)", command)
        return f"Package {m.group(0) if m else 'command'}: {outcome}"
    if "git commit" in command:
        m = re.search(r"-m\s*[\"']([^\"']+)[\"']", command)
        msg = m.group(1) if m else ""
        return f"Git commit: {msg[:50]}{'...' if len(msg) > 50 else ''}"
    if "git push" in command:
        return f"Git push: {outcome}"
    if any(c in command for c in ("curl", "wget", "fetch")):
        m = re.search(r"https?://[^\s\"']+", command)
        host = m.group(0).split("/")[2] if m else "API"
        return f"HTTP request to {host}: {outcome}"
    if "docker" in command or "flyctl" in command or "fly " in command:
        return f"Deploy: {head[:60]} ({outcome})"
    return f"Ran: {head[:60]} ({outcome})"


def summarize_tool(tool_name: str, tool_input: dict[str, Any], tool_output: dict[str, Any]) -> str:
    if tool_name == "Write":
        path = str(tool_input.get("file_path") or "unknown")
        purpose = content_purpose(str(tool_input.get("content") or ""), path)
        return f"Wrote {_file_name(path)} ({purpose})"
    if tool_name == "Edit":
        path = str(tool_input.get("file_path") or "unknown")
        change = summarize_edit(
            str(tool_input.get("old_string") or ""), str(tool_input.get("new_string") or ""), path
        )
        return f"Edited {_file_name(path)}: {change}"
    if tool_name in ("Bash", "Shell"):
        command = str(tool_input.get("command") or "")[:100]
        return _summarize_command(command, not tool_output.get("error"))
    if tool_name == "Task":
        return f"Agent task ({tool_input.get('subagent_type') or ''}): {tool_input.get('description') or 'unknown'}"
    if tool_name == "NotebookEdit":
        path = str(tool_input.get("notebook_path") or "unknown")
        mode = tool_input.get("edit_mode") or "replace"
        cell = tool_input.get("cell_type") or "code"
        return f"Notebook {mode} {cell} cell in {_file_name(path)}"
    return f"Used {tool_name}"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


async def handle(run: HookRun) -> None:
    tool_name = str(run.payload.get("tool_name") or "")
    tool_input = _as_dict(run.payload.get("tool_input"))
    # Claude Code calls it tool_response
    tool_output = _as_dict(run.payload.get("tool_output") or run.payload.get("tool_response"))

    if not should_log(tool_name, tool_input):
        return

    summary = summarize_tool(tool_name, tool_input, tool_output)
    run.log.info(summary, extra={"kind": "hook", "data": {"tool": tool_name}})
    run.tool_captured(summary)
    run.bridge.work_log.append(summary)

    if not run.config.save_messages:
        return
    try:
        await run.bridge.upload_assistant(run.cwd, [f"[Tool] {summary}"])
    except BackendError as e:
        run.log.warning("Upload failed: %s", e, extra={"kind": "api", "success": False})

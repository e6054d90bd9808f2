"""Hook handlers, keyed by the command name hosts invoke."""

from mnemo.hooks import (
    agent_output,
    post_tool_use,
    pre_compact,
    session_end,
    session_start,
    stop,
    subagent_stop,
    user_prompt,
)
from mnemo.hooks.base import Hook, HookRun, prepare, read_payload, run_hook

HOOKS: dict[str, Hook] = {
    "session-start": Hook(session_start.handle),
    "user-prompt": Hook(user_prompt.handle, fallback=HookRun.prompt_continue),
    "before-submit-prompt": Hook(user_prompt.handle, fallback=HookRun.prompt_continue),
    "post-tool-use": Hook(post_tool_use.handle),
    "pre-compact": Hook(pre_compact.handle),
    "stop": Hook(stop.handle, fallback=HookRun.stop),
    "subagent-stop": Hook(subagent_stop.handle, fallback=HookRun.stop),
    "after-agent-response": Hook(agent_output.handle_response),
    "after-agent-thought": Hook(agent_output.handle_thought),
    "session-end": Hook(session_end.handle),
}

__all__ = ["HOOKS", "Hook", "HookRun", "prepare", "read_payload", "run_hook"]

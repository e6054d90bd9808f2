"""user-prompt: persist the prompt, then inject relevant memory.

Also serves Cursor's ``beforeSubmitPrompt``.
"""

from __future__ import annotations

import re

from mnemo.backends.base import BackendError
from mnemo.hooks.base import HookRun, host_metadata

_TRIVIAL = [
    re.compile(
        r"^(yes|no|ok|sure|thanks|y|n|yep|nope|yeah|nah|continue|go ahead|do it|proceed)$",
        re.I,
    ),
    re.compile(r"^/"),
]

_FILE_PATHS = re.compile(r"[\w\-/.]+\.(?:ts|tsx|js|jsx|py|rs|go|md|json|yaml|yml|toml|sql)\b", re.I)
_QUOTED = re.compile(r'"([^"]+)"')
_TECH_TERMS = re.compile(
    r"\b(react|vue|svelte|angular|elysia|express|fastapi|django|flask|postgres|redis|docker|"
    r"kubernetes|bun|node|deno|typescript|python|rust|go|graphql|rest|api|auth|oauth|jwt|"
    r"stripe|webhook)\b",
    re.I,
)
_ERRORS = re.compile(r"error[:\s]+[\w\s]+|failed[:\s]+[\w\s]+|exception[:\s]+[\w\s]+", re.I)
_COMMON_WORDS = frozenset(
    "the and for that this with from have are was were been being has had does did will "
    "would could should can may might must shall need want like just also more some what "
    "when where which who how why all each every both few most other into over such only "
    "same than very your make take come give look think know see time year people way day "
    "work".split()
)


def is_trivial(prompt: str) -> bool:
    """Acknowledgements and slash commands get no context lookup."""
    text = prompt.strip()
    return any(p.search(text) for p in _TRIVIAL)


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def extract_topics(prompt: str) -> list[str]:
    """Search terms for a prompt: file paths, quotes, tech terms, errors.

    Falls back to uncommon words of four letters or more.
    """
    topics: list[str] = []
    topics += [m.group(0) for m in _FILE_PATHS.finditer(prompt)][:5]
    topics += _QUOTED.findall(prompt)[:3]
    topics += _unique([t.lower() for t in _TECH_TERMS.findall(prompt)])[:5]
    topics += [m.group(0) for m in _ERRORS.finditer(prompt)][:2]
    if topics:
        return _unique(topics)

    words = re.findall(r"\b[a-z]{4,}\b", prompt.lower())
    return _unique([w for w in words if w not in _COMMON_WORDS])[:10]


def search_query(prompt: str) -> str:
    topics = extract_topics(prompt)
    return " ".join(topics) if topics else prompt[:200]


async def handle(run: HookRun) -> None:
    prompt = run.payload.get("prompt") or ""
    if not isinstance(prompt, str) or not prompt.strip():
        return

    bridge = run.bridge
    run.log.info("Prompt received (%d chars)", len(prompt), extra={"kind": "hook"})

    if run.config.save_messages:
        try:
            await bridge.upload_prompt(run.cwd, prompt, **host_metadata(run.payload))
        except BackendError as e:
            run.log.warning("Upload failed, prompt stays queued: %s", e, extra={"kind": "api", "success": False})

    bridge.context_cache.increment_activity()

    if is_trivial(prompt):
        run.log.info("Skipping context (trivial prompt)", extra={"kind": "hook"})
        run.prompt_continue()
        return

    try:
        parts, cached = await bridge.prompt_context(run.cwd, search_query(prompt))
    except BackendError as e:
        run.log.warning("Context fetch failed: %s", e, extra={"kind": "api", "success": False})
        run.prompt_continue("[honcho] user-prompt x context fetch failed")
        return

    if parts:
        source = "cached" if cached else "fresh"
        run.prompt_context(parts, f"[honcho] user-prompt <- {source} context injected")
    else:
        run.prompt_continue("[honcho] user-prompt - no matching context found")

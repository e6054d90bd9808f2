"""MemoryBridge — the hub between hook handlers, local caches and the backend.

Responsibilities:
1. Identity resolution: read-through cache for workspace / peer / session IDs
2. Startup context: concurrent remote fetches, each failure dropping one section
3. Prompt context: serve the context cache, refresh on TTL or activity threshold
4. Compaction anchor: a fuller memory block just before the host summarizes
5. Delivery: flush the durable queue, chunking oversized content
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mnemo.backends.base import (
    BackendError,
    Conclusion,
    MemoryBackend,
    OutgoingMessage,
    PeerContext,
    SearchHit,
    SessionSummaries,
)
from mnemo.cache import ContextCache, GitStateStore, IdentityCache, MessageQueue, WorkLog
from mnemo.chunking import split
from mnemo.config import ResolvedConfig, get_session_name, truncate_to_tokens
from mnemo.files import home_dir
from mnemo.git import (
    GitFeatureContext,
    GitState,
    GitStateChange,
    format_feature_context,
    format_git_context,
)
from mnemo.log import RunContext, bind

logger = logging.getLogger(__name__)

USER_SUBJECT = "user"
AI_SUBJECT = "ai"
ASSISTANT_MESSAGE_LIMIT = 3000
WORK_LOG_PREVIEW = 2000


@dataclass
class AssembledContext:
    """Markdown sections gathered for injection, plus fetch bookkeeping."""

    sections: list[str] = field(default_factory=list)
    succeeded: int = 0
    attempted: int = 0

    def render(self) -> str:
        return "\n\n".join(self.sections)


def format_prompt_context(context: PeerContext) -> list[str]:
    """Compact one-line parts for per-prompt injection."""
    parts = []
    summary = "; ".join(context.conclusions()[:5])
    if summary:
        parts.append(f"Relevant conclusions: {summary}")
    if context.peer_card:
        parts.append(f"Profile: {'; '.join(context.peer_card)}")
    return parts


class MemoryBridge:
    """Coordinates caches and the backend for one hook invocation."""

    def __init__(
        self,
        config: ResolvedConfig,
        backend: MemoryBackend,
        root: Path | None = None,
        context: RunContext | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.backend = backend
        self.root = root or home_dir()
        self.ids = IdentityCache(self.root)
        self.context_cache = ContextCache(self.root, config.context_refresh, clock)
        self.queue = MessageQueue(self.root)
        self.git_states = GitStateStore(self.root)
        self.work_log = WorkLog(self.root, config.local_context.max_entries)
        self.log = bind(logger, context or RunContext())

    def session_name(self, cwd: str) -> str:
        return get_session_name(cwd, self.config)

    # ── Identity (read-through, never expires) ───────────────

    async def resolve_workspace(self) -> str:
        name = self.config.workspace
        cached = self.ids.get_workspace_id(name)
        if cached:
            self.log.debug("workspace %s hit", name, extra={"kind": "cache"})
            return cached
        workspace_id = await self.backend.get_or_create_workspace(name)
        self.ids.set_workspace_id(name, workspace_id)
        self.log.info("workspace %s miss, cached %s", name, workspace_id, extra={"kind": "cache"})
        return workspace_id

    async def resolve_peer(self, name: str) -> str:
        cached = self.ids.get_peer_id(name)
        if cached:
            self.log.debug("peer %s hit", name, extra={"kind": "cache"})
            return cached
        peer_id = await self.backend.get_or_create_peer(name)
        self.ids.set_peer_id(name, peer_id)
        self.log.info("peer %s miss, cached %s", name, peer_id, extra={"kind": "cache"})
        return peer_id

    async def resolve_session(self, cwd: str) -> str:
        name = self.session_name(cwd)
        cached = self.ids.get_session_id(cwd, name)
        if cached:
            self.log.debug("session %s hit", name, extra={"kind": "cache"})
            return cached
        session_id = await self.backend.get_or_create_session(name)
        self.ids.set_session_id(cwd, name, session_id)
        self.log.info("session %s miss, cached %s", name, session_id, extra={"kind": "cache"})
        return session_id

    async def _resolve_all(self, cwd: str) -> tuple[str, str, str]:
        session_id, user_id, ai_id = await asyncio.gather(
            self.resolve_session(cwd),
            self.resolve_peer(self.config.peer_name),
            self.resolve_peer(self.config.ai_peer),
        )
        return session_id, user_id, ai_id

    def _metadata(self, cwd: str, **extra: Any) -> dict[str, Any]:
        return {
            "instance_id": self.ids.get_instance_id(),
            "session_affinity": self.session_name(cwd),
            **extra,
        }

    # ── Startup context ──────────────────────────────────────

    async def _fetch_all(
        self, fetches: dict[str, Awaitable[Any]], result: AssembledContext
    ) -> dict[str, Any]:
        """Run *fetches* concurrently; failures are logged and left out."""
        started = time.monotonic()
        outcomes = await asyncio.gather(*fetches.values(), return_exceptions=True)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        results: dict[str, Any] = {}
        for name, outcome in zip(fetches, outcomes):
            if isinstance(outcome, BaseException):
                self.log.warning("%s failed: %s", name, outcome, extra={"kind": "async", "success": False})
            else:
                results[name] = outcome

        result.attempted = len(fetches)
        result.succeeded = len(results)
        self.log.info(
            "Context fetch: %d/%d succeeded",
            result.succeeded,
            result.attempted,
            extra={"kind": "async", "timing_ms": elapsed_ms},
        )
        return results

    def _header(
        self, cwd: str, git_state: GitState | None, feature: GitFeatureContext | None
    ) -> str:
        lines = [
            "## Memory System Active",
            f"- User: {self.config.peer_name}",
            f"- AI: {self.config.ai_peer}",
            f"- Workspace: {self.config.workspace}",
            f"- Session: {self.session_name(cwd)}",
            f"- Directory: {cwd}",
        ]
        if git_state:
            lines.append(f"- Git Branch: {git_state.branch}")
            lines.append(f"- Git HEAD: {git_state.commit}")
            if git_state.is_dirty:
                lines.append(f"- Working Tree: {len(git_state.dirty_files)} uncommitted changes")
        if feature and feature.confidence != "low":
            lines.append(f"- Feature: {feature.type} - {feature.description}")
            if feature.areas:
                lines.append(f"- Areas: {', '.join(feature.areas)}")
        return "\n".join(lines)

    def _dialectic_hints(
        self,
        git_state: GitState | None,
        changes: list[GitStateChange],
        feature: GitFeatureContext | None,
    ) -> tuple[str, str]:
        branch = f" They are currently on git branch '{git_state.branch}'." if git_state else ""
        switch = ""
        if changes and changes[0].kind == "branch_switch":
            switch = (
                f" Note: they just switched branches from '{changes[0].from_ref}'"
                f" to '{changes[0].to_ref}'."
            )
        hint = ""
        if feature and feature.confidence != "low":
            hint = f" Current work appears to be: {feature.type} - {feature.description}."
        user_query = (
            f"Summarize what you know about {self.config.peer_name} in 2-3 sentences. "
            f"Focus on their preferences, current projects, and working style.{branch}{switch}{hint}"
        )
        ai_query = (
            f"What has {self.config.ai_peer} been working on recently?{branch}{hint} "
            "Summarize the AI assistant's recent activities and focus areas relevant "
            "to the current work context."
        )
        return user_query, ai_query

    async def load_startup_context(
        self,
        cwd: str,
        *,
        git_state: GitState | None = None,
        changes: list[GitStateChange] | None = None,
        feature: GitFeatureContext | None = None,
        commits: list[str] | None = None,
    ) -> AssembledContext:
        """Assemble the session-start context block.

        Local sections are always present. Remote fetches run concurrently;
        a failed fetch only drops its own section.
        """
        changes = changes or []
        result = AssembledContext(sections=[self._header(cwd, git_state, feature)])

        if git_state:
            result.sections.append(f"## Git Context\n{format_git_context(git_state, commits)}")

        if feature:
            result.sections.append(f"## Inferred Feature Context\n{format_feature_context(feature)}")

        if changes:
            described = "\n".join(f"- {c.description}" for c in changes)
            result.sections.append(f"## Git Activity Since Last Session\n{described}")

        work_log = self.work_log.read()
        if work_log:
            result.sections.append(
                f"## Local Work Context (What I Was Working On)\n{work_log[:WORK_LOG_PREVIEW]}"
            )

        try:
            session_id, user_id, ai_id = await self._resolve_all(cwd)
        except BackendError as e:
            self.log.warning("Identity resolution failed: %s", e, extra={"kind": "api", "success": False})
            return result

        fetches: dict[str, Awaitable[Any]] = {
            "peer.context(user)": self.backend.peer_context(
                user_id, session_id=session_id, max_conclusions=25
            ),
            "peer.context(ai)": self.backend.peer_context(
                ai_id, session_id=session_id, max_conclusions=15
            ),
            "session.summaries": self.backend.summaries(session_id),
        }
        if not self.config.context_refresh.skip_dialectic:
            user_query, ai_query = self._dialectic_hints(git_state, changes, feature)
            fetches["peer.chat(user)"] = self.backend.chat(user_id, user_query, session_id=session_id)
            fetches["peer.chat(ai)"] = self.backend.chat(ai_id, ai_query, session_id=session_id)

        results = await self._fetch_all(fetches, result)

        user_ctx: PeerContext | None = results.get("peer.context(user)")
        if user_ctx is not None:
            self.context_cache.set(USER_SUBJECT, user_ctx.to_dict())
            body = [part for part in ("\n".join(user_ctx.peer_card), user_ctx.representation) if part]
            if body:
                result.sections.append(f"## {self.config.peer_name}'s Profile\n" + "\n\n".join(body))

        ai_ctx: PeerContext | None = results.get("peer.context(ai)")
        if ai_ctx is not None:
            self.context_cache.set(AI_SUBJECT, ai_ctx.to_dict())
            if ai_ctx.representation:
                result.sections.append(
                    f"## {self.config.ai_peer}'s Work History (Self-Context)\n{ai_ctx.representation}"
                )

        summaries: SessionSummaries | None = results.get("session.summaries")
        if summaries is not None and summaries.short is not None:
            result.sections.append(f"## Recent Session Summary\n{summaries.short.content}")

        user_chat = results.get("peer.chat(user)")
        if user_chat:
            result.sections.append(f"## AI Summary of {self.config.peer_name}\n{user_chat}")

        ai_chat = results.get("peer.chat(ai)")
        if ai_chat:
            result.sections.append(
                f"## AI Self-Reflection (What {self.config.ai_peer} Has Been Doing)\n{ai_chat}"
            )

        return result

    # ── Compaction anchor ────────────────────────────────────

    async def load_compaction_context(self, cwd: str) -> AssembledContext:
        """Memory block injected just before the host summarizes the conversation.

        Fetches more than session start does, including both dialectic
        queries regardless of ``skip_dialectic``: the conversation context is
        about to be reset anyway. Raises BackendError if identity cannot be
        resolved.
        """
        peer, ai = self.config.peer_name, self.config.ai_peer
        result = AssembledContext(
            sections=[
                "## HONCHO MEMORY ANCHOR (Pre-Compaction Injection)\n"
                "This context is being injected because the conversation is about to be summarized.\n"
                "These conclusions MUST be preserved in the summary.\n\n"
                "### Session Identity\n"
                f"- User: {peer}\n"
                f"- AI: {ai}\n"
                f"- Workspace: {self.config.workspace}\n"
                f"- Session: {self.session_name(cwd)}"
            ]
        )

        session_id, user_id, ai_id = await self._resolve_all(cwd)
        results = await self._fetch_all(
            {
                "peer.context(user)": self.backend.peer_context(user_id, max_conclusions=30),
                "peer.context(ai)": self.backend.peer_context(ai_id, max_conclusions=20),
                "session.summaries": self.backend.summaries(session_id),
                "peer.chat(user)": self.backend.chat(
                    user_id,
                    f"Summarize the most important things to remember about {peer}. "
                    "Focus on their preferences, working style, current projects, and any "
                    "critical context that should survive a conversation summary.",
                    session_id=session_id,
                ),
                "peer.chat(ai)": self.backend.chat(
                    ai_id,
                    f"What are the most important things {ai} was working on with {peer}? "
                    "Summarize key context that should be preserved.",
                    session_id=session_id,
                ),
            },
            result,
        )

        user_ctx: PeerContext | None = results.get("peer.context(user)")
        if user_ctx is not None and user_ctx.peer_card:
            result.sections.append(f"### {peer}'s Profile (PRESERVE)\n" + "\n".join(user_ctx.peer_card))
        if user_ctx is not None and user_ctx.representation:
            result.sections.append(f"### Key Conclusions About {peer} (PRESERVE)\n{user_ctx.representation}")

        ai_ctx: PeerContext | None = results.get("peer.context(ai)")
        if ai_ctx is not None and ai_ctx.representation:
            result.sections.append(f"### {ai}'s Recent Work (PRESERVE)\n{ai_ctx.representation}")

        summaries: SessionSummaries | None = results.get("session.summaries")
        if summaries is not None and summaries.short is not None:
            result.sections.append(f"### Session Context (PRESERVE)\n{summaries.short.content}")

        if results.get("peer.chat(user)"):
            result.sections.append(f"### AI Understanding of {peer} (PRESERVE)\n{results['peer.chat(user)']}")
        if results.get("peer.chat(ai)"):
            result.sections.append(f"### {ai}'s Self-Reflection (PRESERVE)\n{results['peer.chat(ai)']}")

        result.sections.append(
            "### End Memory Anchor\n"
            "The above context represents persistent memory from Honcho.\n"
            "When summarizing this conversation, ensure these conclusions are preserved."
        )
        return result

    # ── Prompt context ───────────────────────────────────────

    async def prompt_context(self, cwd: str, search_query: str) -> tuple[list[str], bool]:
        """Context parts for one prompt and whether they came from cache."""
        force = self.context_cache.should_force_refresh()
        cached = self.context_cache.get(USER_SUBJECT)
        if cached is not None:
            self.log.info("userContext hit", extra={"kind": "cache", "success": True})
            return format_prompt_context(PeerContext.from_dict(cached)), True

        reason = "threshold refresh" if force else "stale cache"
        self.log.info("userContext miss (%s)", reason, extra={"kind": "cache", "success": False})

        session_id = await self.resolve_session(cwd)
        context = await self.backend.session_context(
            session_id,
            search_query=search_query,
            search_top_k=10,
            search_max_distance=0.7,
            max_conclusions=15,
        )
        self.context_cache.set(USER_SUBJECT, context.to_dict())
        if force:
            self.context_cache.mark_refreshed()
        return format_prompt_context(context), False

    # ── Delivery ─────────────────────────────────────────────

    async def flush_queue(self, cwd: str, **metadata: Any) -> int:
        """Upload every pending message for *cwd*; returns how many were sent.

        The queue is only trimmed after the backend accepted the batch.
        """
        pending = self.queue.list_pending(cwd)
        if not pending:
            return 0

        session_id = await self.resolve_session(cwd)
        user_id = await self.resolve_peer(self.config.peer_name)
        affinity = self.session_name(cwd)
        messages = [
            OutgoingMessage(
                peer_id=user_id,
                content=chunk,
                metadata={"instance_id": msg.instance_id, "session_affinity": affinity, **metadata},
            )
            for msg in pending
            for chunk in split(msg.content)
        ]
        await self.backend.add_messages(session_id, messages)
        self.queue.mark_uploaded(cwd, pending)
        self.log.info(
            "Uploaded %d queued messages (%d after chunking)",
            len(pending),
            len(messages),
            extra={"kind": "api", "success": True},
        )
        return len(pending)

    async def upload_prompt(self, cwd: str, prompt: str, **metadata: Any) -> int:
        """Queue *prompt* durably, then flush the directory's backlog.

        The record is on disk before any network call; a failed upload
        raises and leaves it queued for the next flush.
        """
        limit = self.config.message_upload.max_user_tokens
        content = truncate_to_tokens(prompt, limit) if limit else prompt
        self.queue.enqueue(content, self.config.peer_name, cwd, self.ids.get_instance_id())
        return await self.flush_queue(cwd, **metadata)

    async def record_git_changes(self, cwd: str, changes: list[GitStateChange]) -> int:
        """Report externally observed git changes as user-peer observations."""
        external = [c for c in changes if c.kind != "initial"]
        if not external:
            return 0
        session_id = await self.resolve_session(cwd)
        user_id = await self.resolve_peer(self.config.peer_name)
        messages = [
            OutgoingMessage(
                peer_id=user_id,
                content=f"[Git External] {change.description}",
                metadata={
                    "type": "git_change",
                    "change_type": change.kind,
                    "from": change.from_ref,
                    "to": change.to_ref,
                    "external": True,
                },
            )
            for change in external
        ]
        await self.backend.add_messages(session_id, messages)
        return len(messages)

    async def upload_assistant(
        self,
        cwd: str,
        contents: list[str],
        *,
        max_chars: int | None = ASSISTANT_MESSAGE_LIMIT,
        **metadata: Any,
    ) -> int:
        """Upload assistant-authored text, chunked, under the AI peer.

        Each item is cut to *max_chars* first; None uploads it whole.
        """
        if not contents:
            return 0
        session_id = await self.resolve_session(cwd)
        ai_id = await self.resolve_peer(self.config.ai_peer)
        base = self._metadata(cwd, **metadata)
        limit = self.config.message_upload.max_assistant_tokens
        if limit:
            contents = [truncate_to_tokens(c, limit) for c in contents]
        messages = [
            OutgoingMessage(peer_id=ai_id, content=chunk, metadata=dict(base))
            for content in contents
            for chunk in split(content[:max_chars])
        ]
        await self.backend.add_messages(session_id, messages)
        return len(messages)

    async def mark_session_end(self, cwd: str, reason: str, message_count: int, **metadata: Any) -> None:
        session_id = await self.resolve_session(cwd)
        ai_id = await self.resolve_peer(self.config.ai_peer)
        stamp = datetime.now(timezone.utc).isoformat()
        marker = f"[Session ended] Reason: {reason}, Messages: {message_count}, Time: {stamp}"
        await self.backend.add_messages(
            session_id,
            [OutgoingMessage(peer_id=ai_id, content=marker, metadata=self._metadata(cwd, **metadata))],
        )

    # ── On-demand memory tools ───────────────────────────────

    async def search(self, cwd: str, query: str, limit: int = 10) -> list[SearchHit]:
        session_id = await self.resolve_session(cwd)
        return await self.backend.search(session_id, query, limit)

    async def ask(self, cwd: str, query: str) -> str | None:
        session_id = await self.resolve_session(cwd)
        user_id = await self.resolve_peer(self.config.peer_name)
        return await self.backend.chat(user_id, query, session_id=session_id)

    async def save_insight(self, cwd: str, content: str) -> Conclusion:
        session_id, user_id, ai_id = await self._resolve_all(cwd)
        return await self.backend.create_conclusion(ai_id, user_id, content, session_id=session_id)

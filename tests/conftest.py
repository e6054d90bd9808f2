"""Shared fixtures: an isolated ~/.honcho and an in-memory backend."""

from __future__ import annotations

from pathlib import Path

import pytest

from mnemo.backends.base import (
    BackendError,
    Conclusion,
    OutgoingMessage,
    PeerContext,
    SearchHit,
    SessionSummaries,
    Summary,
)
from mnemo.log import install

HONCHO_ENV = [
    "HONCHO_API_KEY",
    "HONCHO_PEER_NAME",
    "HONCHO_WORKSPACE",
    "HONCHO_AI_PEER",
    "HONCHO_CURSOR_PEER",
    "HONCHO_CLAUDE_PEER",
    "HONCHO_ENABLED",
    "HONCHO_LOGGING",
    "HONCHO_SAVE_MESSAGES",
    "HONCHO_ENDPOINT",
    "CURSOR_PROJECT_DIR",
    "CLAUDE_PROJECT_DIR",
]


@pytest.fixture
def home(tmp_path: Path, monkeypatch):
    """A private HONCHO_HOME with every HONCHO_* variable cleared."""
    for key in HONCHO_ENV:
        monkeypatch.delenv(key, raising=False)
    root = tmp_path / "honcho"
    monkeypatch.setenv("HONCHO_HOME", str(root))
    monkeypatch.setenv("USER", "tester")
    yield root
    install(False)


class FakeBackend:
    """Records every call; individual operations can be made to fail."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []
        self.added: list[tuple[str, list[OutgoingMessage]]] = []
        self.fail: set[str] = set()
        self.peer_contexts: dict[str, PeerContext] = {}
        self.session_ctx = PeerContext(
            representation="- Prefers pytest\n- Works on mnemo", peer_card=["Name: Jane"]
        )
        self.chat_answer: str | None = "Jane likes small diffs."
        self.closed = False

    def _record(self, op: str, arg: object) -> None:
        self.calls.append((op, arg))
        if op in self.fail:
            raise BackendError(f"{op} failed", 503)

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    async def get_or_create_workspace(self, name: str) -> str:
        self._record("workspace", name)
        return f"ws-{name}"

    async def get_or_create_session(self, name: str) -> str:
        self._record("session", name)
        return f"sess-{name}"

    async def get_or_create_peer(self, name: str) -> str:
        self._record("peer", name)
        return f"peer-{name}"

    async def peer_context(self, peer_id, *, session_id=None, max_conclusions=25,
                           include_most_frequent=True) -> PeerContext:
        self._record("peer_context", peer_id)
        return self.peer_contexts.get(peer_id, PeerContext(representation=f"About {peer_id}"))

    async def session_context(self, session_id, *, search_query=None, search_top_k=10,
                              search_max_distance=0.7, max_conclusions=15) -> PeerContext:
        self._record("session_context", search_query)
        return self.session_ctx

    async def chat(self, peer_id, query, *, session_id=None) -> str | None:
        self._record("chat", peer_id)
        return self.chat_answer

    async def add_messages(self, session_id, messages) -> None:
        self._record("add_messages", len(messages))
        self.added.append((session_id, list(messages)))

    async def summaries(self, session_id) -> SessionSummaries:
        self._record("summaries", session_id)
        return SessionSummaries(short=Summary(content="Worked on the cache layer."))

    async def search(self, session_id, query, limit=10) -> list[SearchHit]:
        self._record("search", query)
        return [SearchHit(content=f"hit for {query}")]

    async def create_conclusion(self, observer_id, observed_id, content, *, session_id=None) -> Conclusion:
        self._record("create_conclusion", content)
        return Conclusion(content=content, id="c1")

    async def close(self) -> None:
        self.closed = True

    @property
    def sent(self) -> list[OutgoingMessage]:
        return [m for _, batch in self.added for m in batch]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()

"""Memory backend protocol and the typed shapes it returns.

Remote responses are parsed exactly once, here, into dataclasses with
defaults; nothing downstream pokes at raw JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


class BackendError(Exception):
    """A remote call failed (transport error, timeout or non-2xx status)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


@dataclass
class PeerContext:
    """Representation text plus the peer card (short profile facts)."""

    representation: str = ""
    peer_card: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> PeerContext:
        if not isinstance(data, dict):
            return cls()
        rep = data.get("representation")
        if rep is None:
            rep = data.get("peer_representation")
        return cls(
            representation=rep.strip() if isinstance(rep, str) else "",
            peer_card=_str_list(data.get("peer_card") or data.get("peerCard")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"representation": self.representation, "peer_card": list(self.peer_card)}

    @property
    def is_empty(self) -> bool:
        return not self.representation and not self.peer_card

    def conclusions(self) -> list[str]:
        """Bullet lines of the representation, stripped of markers."""
        lines = []
        for line in self.representation.split("\n"):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("["):
                line = line.split("]", 1)[-1].strip()
            if line.startswith("- "):
                line = line[2:]
            lines.append(line)
        return lines


@dataclass
class Summary:
    content: str
    summary_type: str = ""
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> Summary | None:
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            return None
        if not data["content"].strip():
            return None
        return cls(
            content=data["content"],
            summary_type=str(data.get("summary_type", "")),
            created_at=str(data.get("created_at", "")),
        )


@dataclass
class SessionSummaries:
    short: Summary | None = None
    long: Summary | None = None

    @classmethod
    def from_dict(cls, data: Any) -> SessionSummaries:
        if not isinstance(data, dict):
            return cls()
        return cls(
            short=Summary.from_dict(data.get("short_summary")),
            long=Summary.from_dict(data.get("long_summary")),
        )


@dataclass
class SearchHit:
    content: str
    peer_id: str = ""
    session_id: str = ""
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> SearchHit | None:
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            return None
        return cls(
            content=data["content"],
            peer_id=str(data.get("peer_id", "")),
            session_id=str(data.get("session_id", "")),
            created_at=str(data.get("created_at", "")),
        )


@dataclass
class Conclusion:
    content: str
    id: str = ""

    @classmethod
    def from_dict(cls, data: Any, fallback: str = "") -> Conclusion:
        if not isinstance(data, dict):
            return cls(content=fallback)
        return cls(content=str(data.get("content") or fallback), id=str(data.get("id", "")))


@dataclass
class OutgoingMessage:
    """One message to append to a session."""

    peer_id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        # Unset metadata values are dropped rather than sent as null
        metadata = {k: v for k, v in self.metadata.items() if v is not None}
        return {"peer_id": self.peer_id, "content": self.content, "metadata": metadata}


@runtime_checkable
class MemoryBackend(Protocol):
    """The narrow remote capability set the bridge depends on."""

    async def get_or_create_workspace(self, name: str) -> str: ...

    async def get_or_create_session(self, name: str) -> str: ...

    async def get_or_create_peer(self, name: str) -> str: ...

    async def peer_context(
        self,
        peer_id: str,
        *,
        session_id: str | None = None,
        max_conclusions: int = 25,
        include_most_frequent: bool = True,
    ) -> PeerContext: ...

    async def session_context(
        self,
        session_id: str,
        *,
        search_query: str | None = None,
        search_top_k: int = 10,
        search_max_distance: float = 0.7,
        max_conclusions: int = 15,
    ) -> PeerContext: ...

    async def chat(self, peer_id: str, query: str, *, session_id: str | None = None) -> str | None:
        """Dialectic query answered from accumulated memory."""
        ...

    async def add_messages(self, session_id: str, messages: list[OutgoingMessage]) -> None: ...

    async def summaries(self, session_id: str) -> SessionSummaries: ...

    async def search(self, session_id: str, query: str, limit: int = 10) -> list[SearchHit]: ...

    async def create_conclusion(
        self, observer_id: str, observed_id: str, content: str, *, session_id: str | None = None
    ) -> Conclusion: ...

    async def close(self) -> None: ...

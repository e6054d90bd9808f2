from mnemo.backends.base import (
    BackendError,
    Conclusion,
    MemoryBackend,
    OutgoingMessage,
    PeerContext,
    SearchHit,
    SessionSummaries,
    Summary,
)

__all__ = [
    "BackendError",
    "Conclusion",
    "MemoryBackend",
    "OutgoingMessage",
    "PeerContext",
    "SearchHit",
    "SessionSummaries",
    "Summary",
]

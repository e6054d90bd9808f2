"""Split oversized message content for the remote write API."""

from __future__ import annotations

MAX_MESSAGE_SIZE = 24000

# A boundary earlier than this fraction of max_size wastes too much of a chunk
_MIN_BOUNDARY_RATIO = 0.25


def _boundary(text: str, sep: str, max_size: int) -> int:
    index = text.rfind(sep, 0, max_size + 1)
    if index <= 0 or index < max_size * _MIN_BOUNDARY_RATIO:
        return -1
    return index


def split(text: str, max_size: int = MAX_MESSAGE_SIZE) -> list[str]:
    """Split *text* into chunks of at most *max_size* characters.

    Prefers newline boundaries, then spaces, then a hard cut. Leading
    whitespace of each remainder is dropped. When more than one chunk is
    produced every chunk is prefixed with ``[Part i/N] ``.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if len(text) <= max_size:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_size:
            chunks.append(remaining)
            break

        index = _boundary(remaining, "\n", max_size)
        if index == -1:
            index = _boundary(remaining, " ", max_size)
        if index == -1:
            index = max_size

        chunks.append(remaining[:index])
        remaining = remaining[index:].lstrip()

    if len(chunks) > 1:
        total = len(chunks)
        return [f"[Part {i}/{total}] {chunk}" for i, chunk in enumerate(chunks, start=1)]
    return chunks

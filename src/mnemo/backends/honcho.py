"""Honcho REST backend over aiohttp.

Every call is attempted once. Failures surface as ``BackendError`` and it is
up to the caller to degrade.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any
from urllib.parse import quote

import aiohttp

from mnemo.backends.base import (
    BackendError,
    Conclusion,
    OutgoingMessage,
    PeerContext,
    SearchHit,
    SessionSummaries,
)
from mnemo.config import ResolvedConfig, base_url

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _seg(value: str) -> str:
    return quote(value, safe="")


class HonchoBackend:
    """Thin async client for one Honcho workspace."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        workspace: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self.workspace = workspace
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: ResolvedConfig, timeout: float = DEFAULT_TIMEOUT) -> HonchoBackend:
        return cls(config.api_key, base_url(config), config.workspace, timeout=timeout)

    async def __aenter__(self) -> HonchoBackend:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    def _ws_path(self, *parts: str) -> str:
        return "/".join(["workspaces", _seg(self.workspace), *parts])

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}/{path}"
        query = None
        if params:
            query = {
                k: (str(v).lower() if isinstance(v, bool) else str(v))
                for k, v in params.items()
                if v is not None
            }
        start = time.monotonic()
        try:
            async with self._get_session().request(method, url, json=json, params=query) as resp:
                elapsed_ms = int((time.monotonic() - start) * 1000)
                if resp.status >= 400:
                    body = await resp.text()
                    logger.info(
                        "%s %s -> %d",
                        method,
                        path,
                        resp.status,
                        extra={"kind": "api", "timing_ms": elapsed_ms, "success": False},
                    )
                    raise BackendError(f"{method} {path} -> {resp.status}: {body[:200]}", resp.status)
                logger.info(
                    "%s %s",
                    method,
                    path,
                    extra={"kind": "api", "timing_ms": elapsed_ms, "success": True},
                )
                if resp.status == 204:
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise BackendError(f"{method} {path} failed: {e}") from e

    # ── Identity ──────────────────────────────────────────────

    async def _get_or_create(self, path: str, name: str) -> str:
        data = await self._request("POST", path, json={"id": name})
        if isinstance(data, dict) and data.get("id"):
            return str(data["id"])
        return name

    async def get_or_create_workspace(self, name: str) -> str:
        return await self._get_or_create("workspaces", name)

    async def get_or_create_session(self, name: str) -> str:
        return await self._get_or_create(self._ws_path("sessions"), name)

    async def get_or_create_peer(self, name: str) -> str:
        return await self._get_or_create(self._ws_path("peers"), name)

    # ── Context ───────────────────────────────────────────────

    async def peer_context(
        self,
        peer_id: str,
        *,
        session_id: str | None = None,
        max_conclusions: int = 25,
        include_most_frequent: bool = True,
    ) -> PeerContext:
        data = await self._request(
            "GET",
            self._ws_path("peers", _seg(peer_id), "context"),
            params={
                "session_id": session_id,
                "max_conclusions": max_conclusions,
                "include_most_frequent": include_most_frequent,
            },
        )
        return PeerContext.from_dict(data)

    async def session_context(
        self,
        session_id: str,
        *,
        search_query: str | None = None,
        search_top_k: int = 10,
        search_max_distance: float = 0.7,
        max_conclusions: int = 15,
    ) -> PeerContext:
        data = await self._request(
            "GET",
            self._ws_path("sessions", _seg(session_id), "context"),
            params={
                "search_query": search_query,
                "search_top_k": search_top_k,
                "search_max_distance": search_max_distance,
                "max_conclusions": max_conclusions,
            },
        )
        return PeerContext.from_dict(data)

    async def chat(self, peer_id: str, query: str, *, session_id: str | None = None) -> str | None:
        payload: dict[str, Any] = {"query": query, "stream": False}
        if session_id:
            payload["session_id"] = session_id
        data = await self._request("POST", self._ws_path("peers", _seg(peer_id), "chat"), json=payload)
        if isinstance(data, str):
            return data.strip() or None
        if isinstance(data, dict) and isinstance(data.get("content"), str):
            return data["content"].strip() or None
        return None

    # ── Messages ──────────────────────────────────────────────

    async def add_messages(self, session_id: str, messages: list[OutgoingMessage]) -> None:
        if not messages:
            return
        await self._request(
            "POST",
            self._ws_path("sessions", _seg(session_id), "messages"),
            json={"messages": [m.to_dict() for m in messages]},
        )

    async def summaries(self, session_id: str) -> SessionSummaries:
        data = await self._request("GET", self._ws_path("sessions", _seg(session_id), "summaries"))
        return SessionSummaries.from_dict(data)

    async def search(self, session_id: str, query: str, limit: int = 10) -> list[SearchHit]:
        data = await self._request(
            "POST",
            self._ws_path("sessions", _seg(session_id), "search"),
            json={"query": query, "limit": limit},
        )
        items = data.get("items", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            return []
        return [hit for hit in (SearchHit.from_dict(item) for item in items) if hit is not None]

    async def create_conclusion(
        self, observer_id: str, observed_id: str, content: str, *, session_id: str | None = None
    ) -> Conclusion:
        entry: dict[str, Any] = {
            "content": content,
            "observer_id": observer_id,
            "observed_id": observed_id,
        }
        if session_id:
            entry["session_id"] = session_id
        data = await self._request("POST", self._ws_path("conclusions"), json={"conclusions": [entry]})
        first = data[0] if isinstance(data, list) and data else data
        return Conclusion.from_dict(first, fallback=content)

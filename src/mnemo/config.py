"""Configuration loading from environment variables and ~/.honcho/config.json.

One file is shared by every host (Claude Code, Cursor). Shared fields live at
the top level; per-host identity lives under ``hosts.<host>``:

    {
      "apiKey": "...",
      "peerName": "jane",
      "sessions": {"/home/jane/proj": "jane-proj"},
      "hosts": {
        "claude-code": {"workspace": "claude_code", "aiPeer": "claude"},
        "cursor": {"workspace": "cursor", "aiPeer": "cursor"}
      }
    }
"""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from mnemo.files import CONFIG_FILE, home_dir, read_json, write_json

logger = logging.getLogger(__name__)

Host = Literal["cursor", "claude-code"]
Environment = Literal["production", "local"]

BASE_URLS: dict[str, str] = {
    "production": "https://api.honcho.dev/v3",
    "local": "http://localhost:8000/v3",
}


@dataclass
class HostConfig:
    """Identity owned by a single host."""

    workspace: str
    ai_peer: str


# Built-in defaults, lowest priority for per-host fields
HOST_DEFAULTS: dict[str, HostConfig] = {
    "cursor": HostConfig(workspace="cursor", ai_peer="cursor"),
    "claude-code": HostConfig(workspace="claude_code", ai_peer="claude"),
}

# Legacy flat fields written before the hosts block existed
_LEGACY_PEER_FIELDS: dict[str, str] = {"cursor": "cursorPeer", "claude-code": "claudePeer"}
_LEGACY_PEER_ENV: dict[str, str] = {
    "cursor": "HONCHO_CURSOR_PEER",
    "claude-code": "HONCHO_CLAUDE_PEER",
}


@dataclass
class RefreshPolicy:
    """Eviction policy for the context cache."""

    message_threshold: int = 30
    ttl_seconds: int = 300
    skip_dialectic: bool = False


@dataclass
class EndpointConfig:
    environment: Environment | None = None
    base_url: str | None = None


@dataclass
class MessageUploadConfig:
    max_user_tokens: int | None = None
    max_assistant_tokens: int | None = None
    summarize_assistant: bool = False


@dataclass
class LocalContextConfig:
    max_entries: int = 50


@dataclass
class ResolvedConfig:
    """Runtime configuration consumed by everything else."""

    api_key: str
    peer_name: str
    workspace: str
    ai_peer: str
    sessions: dict[str, str] = field(default_factory=dict)
    save_messages: bool = True
    enabled: bool = True
    logging: bool = True
    context_refresh: RefreshPolicy = field(default_factory=RefreshPolicy)
    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    message_upload: MessageUploadConfig = field(default_factory=MessageUploadConfig)
    local_context: LocalContextConfig = field(default_factory=LocalContextConfig)


def config_path() -> Path:
    return home_dir() / CONFIG_FILE


def detect_host(hook_input: dict[str, Any] | None) -> Host:
    """Cursor tags every hook payload with ``cursor_version``."""
    if hook_input and hook_input.get("cursor_version"):
        return "cursor"
    return "claude-code"


# ── Loading ──────────────────────────────────────────────────


def load_config(host: Host = "claude-code", path: Path | None = None) -> ResolvedConfig | None:
    """Resolve configuration for *host*.

    Priority for per-host fields: environment > ``hosts.<host>`` > legacy
    flat field > built-in default. Returns None when no API key is available
    from either the file or the environment.
    """
    path = path or config_path()
    raw: dict[str, Any] = {}
    if path.exists():
        raw = read_json(path)
        if not raw:
            logger.debug("Config file %s unreadable, using environment only", path)
    return _resolve(raw, host)


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _opt_int(value: Any) -> int | None:
    if value is None:
        return None
    return _as_int(value, 0) or None


def _block(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """A nested config object; anything that is not a JSON object reads as empty."""
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _sessions(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {k: v for k, v in value.items() if isinstance(k, str) and isinstance(v, str) and v}


def _env_disabled(name: str) -> bool:
    return os.getenv(name) == "false"


def _resolve(raw: dict[str, Any], host: Host) -> ResolvedConfig | None:
    api_key = os.getenv("HONCHO_API_KEY") or _text(raw.get("apiKey"))
    if not api_key:
        return None

    peer_name = (
        os.getenv("HONCHO_PEER_NAME") or _text(raw.get("peerName")) or os.getenv("USER") or "user"
    )

    default = HOST_DEFAULTS[host]
    hosts = raw.get("hosts")
    host_block = hosts.get(host) if isinstance(hosts, dict) else None
    if isinstance(host_block, dict):
        workspace = _text(host_block.get("workspace")) or default.workspace
        ai_peer = _text(host_block.get("aiPeer")) or default.ai_peer
    else:
        workspace = _text(raw.get("workspace")) or default.workspace
        ai_peer = _text(raw.get(_LEGACY_PEER_FIELDS[host])) or default.ai_peer

    workspace = os.getenv("HONCHO_WORKSPACE") or workspace
    ai_peer = os.getenv("HONCHO_AI_PEER") or os.getenv(_LEGACY_PEER_ENV[host]) or ai_peer

    refresh = _block(raw, "contextRefresh")
    upload = _block(raw, "messageUpload")
    local = _block(raw, "localContext")

    config = ResolvedConfig(
        api_key=api_key,
        peer_name=peer_name,
        workspace=workspace,
        ai_peer=ai_peer,
        sessions=_sessions(raw.get("sessions")),
        save_messages=raw.get("saveMessages", True) is not False,
        enabled=raw.get("enabled", True) is not False,
        logging=raw.get("logging", True) is not False,
        context_refresh=RefreshPolicy(
            message_threshold=_as_int(refresh.get("messageThreshold"), 30),
            ttl_seconds=_as_int(refresh.get("ttlSeconds"), 300),
            skip_dialectic=bool(refresh.get("skipDialectic", False)),
        ),
        endpoint=_endpoint_from(_block(raw, "endpoint")),
        message_upload=MessageUploadConfig(
            max_user_tokens=_opt_int(upload.get("maxUserTokens")),
            max_assistant_tokens=_opt_int(upload.get("maxAssistantTokens")),
            summarize_assistant=bool(upload.get("summarizeAssistant", False)),
        ),
        local_context=LocalContextConfig(max_entries=_as_int(local.get("maxEntries"), 50)),
    )

    if _env_disabled("HONCHO_SAVE_MESSAGES"):
        config.save_messages = False
    if _env_disabled("HONCHO_ENABLED"):
        config.enabled = False
    if _env_disabled("HONCHO_LOGGING"):
        config.logging = False

    env_endpoint = os.getenv("HONCHO_ENDPOINT")
    if env_endpoint == "local":
        config.endpoint = EndpointConfig(environment="local")
    elif env_endpoint and env_endpoint.startswith("http"):
        config.endpoint = EndpointConfig(base_url=env_endpoint)

    return config


def _endpoint_from(data: dict[str, Any]) -> EndpointConfig:
    environment = _text(data.get("environment"))
    if environment not in BASE_URLS:
        environment = None
    return EndpointConfig(environment=environment, base_url=_text(data.get("baseUrl")))


# ── Saving ───────────────────────────────────────────────────


def save_config(config: ResolvedConfig, host: Host = "claude-code", path: Path | None = None) -> None:
    """Read-merge-write so one host never clobbers another host's block."""
    path = path or config_path()
    existing = read_json(path)

    existing["apiKey"] = config.api_key
    existing["peerName"] = config.peer_name
    existing["sessions"] = dict(config.sessions)
    existing["saveMessages"] = config.save_messages
    existing["enabled"] = config.enabled
    existing["logging"] = config.logging
    existing["contextRefresh"] = {
        "messageThreshold": config.context_refresh.message_threshold,
        "ttlSeconds": config.context_refresh.ttl_seconds,
        "skipDialectic": config.context_refresh.skip_dialectic,
    }
    existing["messageUpload"] = {
        k: v
        for k, v in {
            "maxUserTokens": config.message_upload.max_user_tokens,
            "maxAssistantTokens": config.message_upload.max_assistant_tokens,
            "summarizeAssistant": config.message_upload.summarize_assistant,
        }.items()
        if v is not None
    }
    existing["localContext"] = {"maxEntries": config.local_context.max_entries}

    endpoint = {
        k: v
        for k, v in {
            "environment": config.endpoint.environment,
            "baseUrl": config.endpoint.base_url,
        }.items()
        if v
    }
    if endpoint:
        existing["endpoint"] = endpoint
    else:
        existing.pop("endpoint", None)

    hosts = existing.get("hosts")
    if not isinstance(hosts, dict):
        hosts = {}
    hosts[host] = {"workspace": config.workspace, "aiPeer": config.ai_peer}
    existing["hosts"] = hosts

    # One-way migration: flat per-host fields go away once a hosts block exists
    for legacy in ("workspace", "cursorPeer", "claudePeer"):
        existing.pop(legacy, None)

    write_json(path, existing)
    logger.debug("Saved config for host %s to %s", host, path)


# ── Sessions ─────────────────────────────────────────────────


def sanitize_for_session_name(value: str) -> str:
    return re.sub(r"[^a-z0-9\-_]", "-", value.lower())


def get_session_name(cwd: str, config: ResolvedConfig | None) -> str:
    """Explicit per-directory override, else ``{peer}-{last path segment}``."""
    if config and config.sessions.get(cwd):
        return config.sessions[cwd]
    peer_part = sanitize_for_session_name(config.peer_name) if config else "user"
    repo_part = sanitize_for_session_name(Path(cwd).name)
    return f"{peer_part}-{repo_part}"


def set_session_for_path(
    cwd: str, session_name: str, host: Host = "claude-code", path: Path | None = None
) -> None:
    config = load_config(host, path)
    if config is None:
        return
    config.sessions[cwd] = session_name
    save_config(config, host, path)


def remove_session_for_path(cwd: str, host: Host = "claude-code", path: Path | None = None) -> None:
    config = load_config(host, path)
    if config is None or cwd not in config.sessions:
        return
    del config.sessions[cwd]
    save_config(config, host, path)


def set_enabled(enabled: bool, host: Host = "claude-code", path: Path | None = None) -> None:
    config = load_config(host, path)
    if config is None:
        return
    config.enabled = enabled
    save_config(config, host, path)


def set_endpoint(
    environment: Environment | None = None,
    base_url: str | None = None,
    host: Host = "claude-code",
    path: Path | None = None,
) -> None:
    config = load_config(host, path)
    if config is None:
        return
    config.endpoint = EndpointConfig(environment=environment, base_url=base_url)
    save_config(config, host, path)


# ── Endpoint & token helpers ─────────────────────────────────


def base_url(config: ResolvedConfig) -> str:
    if config.endpoint.base_url:
        url = config.endpoint.base_url.rstrip("/")
        return url if url.endswith("/v3") else f"{url}/v3"
    if config.endpoint.environment == "local":
        return BASE_URLS["local"]
    return BASE_URLS["production"]


def endpoint_info(config: ResolvedConfig) -> tuple[str, str]:
    """(kind, url) for display: custom, local or production."""
    if config.endpoint.base_url:
        return "custom", config.endpoint.base_url
    if config.endpoint.environment == "local":
        return "local", BASE_URLS["local"]
    return "production", BASE_URLS["production"]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    max_chars = max_tokens * 4
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."

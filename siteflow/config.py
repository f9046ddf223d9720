"""Shared siteflow configuration utilities.

Centralises reading of ~/.siteflow/configuration.json so the engine, the
session store and the memo cache share one implementation. Environment
variables override file values.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_NODE_TIMEOUT_SECONDS = 300.0
DEFAULT_MEMO_MAX_ENTRIES = 100
DEFAULT_MEMO_TTL_SECONDS = 300.0
DEFAULT_SESSION_MAX_ENTRIES = 50
DEFAULT_SESSION_TTL_SECONDS = 300.0

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

SITEFLOW_CONFIG_FILE = Path.home() / ".siteflow" / "configuration.json"


def get_siteflow_config() -> dict[str, Any]:
    """Load siteflow configuration from ~/.siteflow/configuration.json."""
    if not SITEFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(SITEFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _engine_section() -> dict[str, Any]:
    section = get_siteflow_config().get("engine", {})
    return section if isinstance(section, dict) else {}


def _env_number(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def get_node_timeout() -> float:
    """Return the per-node timeout in seconds."""
    env = _env_number("SITEFLOW_NODE_TIMEOUT")
    if env is not None:
        return env
    return float(_engine_section().get("node_timeout_seconds", DEFAULT_NODE_TIMEOUT_SECONDS))


def get_memo_ttl() -> float:
    """Return the memo cache TTL in seconds."""
    env = _env_number("SITEFLOW_MEMO_TTL")
    if env is not None:
        return env
    return float(_engine_section().get("memo_ttl_seconds", DEFAULT_MEMO_TTL_SECONDS))


def get_memo_max_entries() -> int:
    """Return the memo cache capacity."""
    env = _env_number("SITEFLOW_MEMO_MAX_ENTRIES")
    if env is not None:
        return int(env)
    return int(_engine_section().get("memo_max_entries", DEFAULT_MEMO_MAX_ENTRIES))


def get_session_ttl() -> float:
    """Return the session TTL in seconds.

    ``ANALYSIS_CACHE_TTL`` is accepted in milliseconds for compatibility with
    existing deployments.
    """
    legacy_ms = _env_number("ANALYSIS_CACHE_TTL")
    if legacy_ms is not None:
        return legacy_ms / 1000.0
    return float(_engine_section().get("session_ttl_seconds", DEFAULT_SESSION_TTL_SECONDS))


def get_session_max_entries() -> int:
    """Return the maximum number of sessions held in memory."""
    env = _env_number("SITEFLOW_SESSION_MAX_ENTRIES")
    if env is not None:
        return int(env)
    return int(_engine_section().get("session_max_entries", DEFAULT_SESSION_MAX_ENTRIES))


# ---------------------------------------------------------------------------
# EngineConfig – shared across the runtime
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.siteflow/configuration.json and env."""

    node_timeout_seconds: float = field(default_factory=get_node_timeout)
    memo_max_entries: int = field(default_factory=get_memo_max_entries)
    memo_ttl_seconds: float = field(default_factory=get_memo_ttl)
    session_max_entries: int = field(default_factory=get_session_max_entries)
    session_ttl_seconds: float = field(default_factory=get_session_ttl)

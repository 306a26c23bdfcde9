"""
Configuration constants and Pydantic models for agent-relay.
"""

import logging
import os
from typing import Literal

from pydantic import BaseModel

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS
# ─────────────────────────────────────────────────────────────────────

DEFAULT_PROVIDER_ID: str = "cursor-acp"
DEFAULT_MODEL: str = "auto"
DEFAULT_TOOL_LOOP_MAX_REPEAT: int = 3
DEFAULT_TOOL_LOOP_MODE: str = "intercept"
DEFAULT_SCHEMA_FAILURE_MODE: str = "pass_through"
DEFAULT_BOUNDARY_MODE: str = "v1"
DEFAULT_TOOL_TIMEOUT_SECONDS: float = 30.0

TOOL_LOOP_MODES = ("intercept", "proxy_execute")
SCHEMA_FAILURE_MODES = ("strict", "pass_through")
BOUNDARY_MODES = ("v1", "legacy")

ToolLoopMode = Literal["intercept", "proxy_execute"]
SchemaFailureMode = Literal["strict", "pass_through"]
BoundaryMode = Literal["v1", "legacy"]


# ─────────────────────────────────────────────────────────────────────
# INTERNAL CONSTANTS
# ─────────────────────────────────────────────────────────────────────

TOOL_RESULT_MAX_CHARS: int = 8000
TOOL_DESCRIPTION_MAX_CHARS: int = 400
SSE_DONE_MARKER: str = "[DONE]"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


# ─────────────────────────────────────────────────────────────────────
# TOOL LOOP CONFIGURATION
# ─────────────────────────────────────────────────────────────────────

def get_tool_loop_max_repeat() -> int:
    """
    Get loop guard threshold from environment or default.

    Set AGENT_RELAY_TOOL_LOOP_MAX_REPEAT in .env (default: 3).
    Non-numeric or non-positive values fall back to the default.
    """
    from agent_relay.loop.guard import parse_tool_loop_max_repeat

    raw = os.environ.get("AGENT_RELAY_TOOL_LOOP_MAX_REPEAT")
    setting = parse_tool_loop_max_repeat(raw)
    if not setting.valid:
        logger.warning(
            "Invalid AGENT_RELAY_TOOL_LOOP_MAX_REPEAT=%r, using %d",
            raw, setting.value,
        )
    return setting.value


def _get_choice(name: str, choices: tuple[str, ...], default: str) -> str:
    value = os.environ.get(name, default).strip().lower()
    if value not in choices:
        logger.warning("Invalid %s=%r, using %r", name, value, default)
        return default
    return value


def get_tool_loop_mode() -> str:
    """Set AGENT_RELAY_TOOL_LOOP_MODE to intercept or proxy_execute."""
    return _get_choice("AGENT_RELAY_TOOL_LOOP_MODE", TOOL_LOOP_MODES, DEFAULT_TOOL_LOOP_MODE)


def get_schema_failure_mode() -> str:
    """Set AGENT_RELAY_SCHEMA_FAILURE_MODE to strict or pass_through."""
    return _get_choice(
        "AGENT_RELAY_SCHEMA_FAILURE_MODE", SCHEMA_FAILURE_MODES, DEFAULT_SCHEMA_FAILURE_MODE
    )


def get_boundary_mode() -> str:
    """Set AGENT_RELAY_PROVIDER_BOUNDARY to v1 or legacy."""
    return _get_choice("AGENT_RELAY_PROVIDER_BOUNDARY", BOUNDARY_MODES, DEFAULT_BOUNDARY_MODE)


def get_boundary_auto_fallback() -> bool:
    """
    Whether boundary extraction errors fall back to the legacy boundary.

    Set AGENT_RELAY_BOUNDARY_AUTO_FALLBACK in .env (default: true).
    """
    raw = os.environ.get("AGENT_RELAY_BOUNDARY_AUTO_FALLBACK", "true").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    logger.warning("Invalid AGENT_RELAY_BOUNDARY_AUTO_FALLBACK=%r, using true", raw)
    return True


def get_provider_id() -> str:
    return os.environ.get("AGENT_RELAY_PROVIDER_ID", DEFAULT_PROVIDER_ID)


# ─────────────────────────────────────────────────────────────────────
# REMOTE TOOL CONFIGURATION - For HttpToolExecutor
# ─────────────────────────────────────────────────────────────────────

def get_tool_timeout_seconds() -> float:
    """
    Get remote tool execution timeout in seconds.

    Set AGENT_RELAY_TOOL_TIMEOUT_SECONDS in .env (default: 30).
    """
    try:
        return float(os.environ.get("AGENT_RELAY_TOOL_TIMEOUT_SECONDS", "30"))
    except ValueError:
        return DEFAULT_TOOL_TIMEOUT_SECONDS


def get_tool_retry_attempts() -> int:
    """
    Get max retry attempts for remote tool calls.

    Set AGENT_RELAY_TOOL_RETRY_ATTEMPTS in .env (default: 3).
    """
    try:
        return int(os.environ.get("AGENT_RELAY_TOOL_RETRY_ATTEMPTS", "3"))
    except ValueError:
        return 3


def get_tool_retry_min_wait() -> int:
    """Set AGENT_RELAY_TOOL_RETRY_MIN_WAIT in .env (default: 1)."""
    try:
        return int(os.environ.get("AGENT_RELAY_TOOL_RETRY_MIN_WAIT", "1"))
    except ValueError:
        return 1


def get_tool_retry_max_wait() -> int:
    """Set AGENT_RELAY_TOOL_RETRY_MAX_WAIT in .env (default: 10)."""
    try:
        return int(os.environ.get("AGENT_RELAY_TOOL_RETRY_MAX_WAIT", "10"))
    except ValueError:
        return 10


# ─────────────────────────────────────────────────────────────────────
# SETTINGS MODEL
# ─────────────────────────────────────────────────────────────────────

class RelaySettings(BaseModel):
    """Snapshot of every environment-driven setting."""

    provider_id: str = DEFAULT_PROVIDER_ID
    tool_loop_mode: ToolLoopMode = "intercept"
    tool_loop_max_repeat: int = DEFAULT_TOOL_LOOP_MAX_REPEAT
    schema_failure_mode: SchemaFailureMode = "pass_through"
    boundary_mode: BoundaryMode = "v1"
    boundary_auto_fallback: bool = True
    tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS
    tool_retry_attempts: int = 3
    tool_retry_min_wait: int = 1
    tool_retry_max_wait: int = 10


def load_settings() -> RelaySettings:
    """Build RelaySettings from the current environment."""
    return RelaySettings(
        provider_id=get_provider_id(),
        tool_loop_mode=get_tool_loop_mode(),
        tool_loop_max_repeat=get_tool_loop_max_repeat(),
        schema_failure_mode=get_schema_failure_mode(),
        boundary_mode=get_boundary_mode(),
        boundary_auto_fallback=get_boundary_auto_fallback(),
        tool_timeout_seconds=get_tool_timeout_seconds(),
        tool_retry_attempts=get_tool_retry_attempts(),
        tool_retry_min_wait=get_tool_retry_min_wait(),
        tool_retry_max_wait=get_tool_retry_max_wait(),
    )

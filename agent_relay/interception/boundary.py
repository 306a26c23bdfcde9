"""
Extraction boundaries: strategies for reading tool calls out of events.

``legacy`` is the lenient extractor the relay has always used. ``v1``
checks the payload shape up front and also understands the
function-style ``{"name", "arguments"}`` payload some agent builds emit.
When v1 meets a shape it cannot handle it raises BoundaryExtractionError,
which the interceptor treats as the one recoverable failure.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

from agent_relay.config import DEFAULT_PROVIDER_ID
from agent_relay.streaming.events import ToolCallEvent
from agent_relay.tools.extraction import (
    UNKNOWN_CALL_ID,
    candidate_to_tool_call,
    decode_tool_call,
    extract_openai_tool_call,
    normalize_tool_name,
)
from agent_relay.tools.schemas import OpenAiToolCall, ToolCallCandidate

logger = logging.getLogger(__name__)


class BoundaryExtractionError(Exception):
    """A boundary could not decode a tool_call payload shape."""
    pass


@runtime_checkable
class ToolCallBoundary(Protocol):
    mode: str
    provider_id: str

    def maybe_extract_tool_call(
        self, event: ToolCallEvent, allowed: set[str]
    ) -> Optional[OpenAiToolCall]:
        ...


class LegacyBoundary:
    mode = "legacy"

    def __init__(self, provider_id: str = DEFAULT_PROVIDER_ID):
        self.provider_id = provider_id

    def maybe_extract_tool_call(
        self, event: ToolCallEvent, allowed: set[str]
    ) -> Optional[OpenAiToolCall]:
        return extract_openai_tool_call(event, allowed)


class V1Boundary:
    mode = "v1"

    def __init__(self, provider_id: str = DEFAULT_PROVIDER_ID):
        self.provider_id = provider_id

    def decode(self, event: ToolCallEvent) -> ToolCallCandidate:
        tool_call = event.tool_call
        if not isinstance(tool_call, dict) or len(tool_call) != 1:
            raise BoundaryExtractionError(
                f"expected single-key tool_call mapping, got {type(tool_call).__name__}"
                + (f" with {len(tool_call)} keys" if isinstance(tool_call, dict) else "")
            )

        raw_key, payload = next(iter(tool_call.items()))
        if not isinstance(payload, dict):
            raise BoundaryExtractionError(
                f"expected object payload for {raw_key}, got {type(payload).__name__}"
            )

        if "arguments" in payload and "args" not in payload:
            name = event.name or payload.get("name") or raw_key
            if not isinstance(name, str):
                raise BoundaryExtractionError(f"non-string tool name in {raw_key}")
            return ToolCallCandidate(
                id=event.call_id or event.tool_call_id or UNKNOWN_CALL_ID,
                raw_name=normalize_tool_name(name),
                args=payload["arguments"],
            )

        candidate = decode_tool_call(event)
        if candidate is None:
            raise BoundaryExtractionError(f"no tool name for {raw_key}")
        return candidate

    def maybe_extract_tool_call(
        self, event: ToolCallEvent, allowed: set[str]
    ) -> Optional[OpenAiToolCall]:
        if not allowed:
            return None
        return candidate_to_tool_call(self.decode(event), allowed)


def create_provider_boundary(mode: str, provider_id: str = DEFAULT_PROVIDER_ID) -> ToolCallBoundary:
    if mode == "v1":
        return V1Boundary(provider_id)
    if mode == "legacy":
        return LegacyBoundary(provider_id)
    raise ValueError(f"Unknown boundary mode: {mode}")

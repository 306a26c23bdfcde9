"""
Upstream agent stream handling: event model, line parsing, snapshot
deltas and the OpenAI / AI-SDK output builders.
"""

from agent_relay.streaming.delta_tracker import DeltaTracker
from agent_relay.streaming.events import (
    AssistantEvent,
    ResultEvent,
    StreamEvent,
    ThinkingEvent,
    ToolCallEvent,
    extract_text,
    extract_thinking,
    infer_tool_name,
    is_assistant_text,
    is_result,
    is_thinking,
    is_tool_call,
)
from agent_relay.streaming.parser import NdjsonLineBuffer, iter_stream_events, parse_stream_json_line

__all__ = [
    "DeltaTracker",
    "AssistantEvent",
    "ResultEvent",
    "StreamEvent",
    "ThinkingEvent",
    "ToolCallEvent",
    "extract_text",
    "extract_thinking",
    "infer_tool_name",
    "is_assistant_text",
    "is_result",
    "is_thinking",
    "is_tool_call",
    "NdjsonLineBuffer",
    "iter_stream_events",
    "parse_stream_json_line",
]

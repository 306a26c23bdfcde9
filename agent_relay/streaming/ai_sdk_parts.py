"""
Conversion of agent events into AI-SDK style stream parts.

Parts serialize with camelCase keys (``textDelta``, ``toolCallId``...)
via ``model_dump(by_alias=True)``.
"""

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from agent_relay.serialization import dump_json
from agent_relay.streaming.delta_tracker import DeltaTracker, diff_snapshot
from agent_relay.streaming.events import (
    ToolCallEvent,
    extract_text,
    extract_thinking,
    infer_tool_name,
    is_assistant_text,
    is_thinking,
    is_tool_call,
)


class _Part(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class TextDeltaPart(_Part):
    type: Literal["text-delta"] = "text-delta"
    text_delta: str


class ToolCallStreamingStartPart(_Part):
    type: Literal["tool-call-streaming-start"] = "tool-call-streaming-start"
    tool_call_id: str
    tool_name: str


class ToolCallDeltaPart(_Part):
    type: Literal["tool-call-delta"] = "tool-call-delta"
    tool_call_id: str
    tool_name: str
    args_text_delta: str


class ToolInputAvailablePart(_Part):
    type: Literal["tool-input-available"] = "tool-input-available"
    tool_call_id: str
    tool_name: str
    input_text: str


AiSdkStreamPart = Union[
    TextDeltaPart, ToolCallStreamingStartPart, ToolCallDeltaPart, ToolInputAvailablePart
]


class StreamToAiSdkParts:
    """Stateful converter; one instance per response stream."""

    def __init__(self) -> None:
        self.tracker = DeltaTracker()
        self._tool_args_by_id: dict[str, str] = {}
        self._started_tool_ids: set[str] = set()

    def handle_event(self, event) -> list[AiSdkStreamPart]:
        if is_assistant_text(event):
            delta = self.tracker.next_text(extract_text(event))
            return [TextDeltaPart(text_delta=delta)] if delta else []

        if is_thinking(event):
            delta = self.tracker.next_thinking(extract_thinking(event))
            return [TextDeltaPart(text_delta=delta)] if delta else []

        if is_tool_call(event):
            return self._handle_tool_call(event)

        return []

    def _handle_tool_call(self, event: ToolCallEvent) -> list[AiSdkStreamPart]:
        tool_call_id = event.call_id or event.tool_call_id or "unknown"
        tool_name = infer_tool_name(event) or "tool"
        entry = None
        if isinstance(event.tool_call, dict) and event.tool_call:
            entry = next(iter(event.tool_call.values()))
        if not isinstance(entry, dict):
            return []

        parts: list[AiSdkStreamPart] = []

        if entry.get("args"):
            args_text = dump_json(entry["args"])
            previous = self._tool_args_by_id.get(tool_call_id, "")
            delta = diff_snapshot(previous, args_text)
            self._tool_args_by_id[tool_call_id] = args_text

            if tool_call_id not in self._started_tool_ids:
                self._started_tool_ids.add(tool_call_id)
                parts.append(ToolCallStreamingStartPart(tool_call_id=tool_call_id, tool_name=tool_name))

            if delta:
                parts.append(ToolCallDeltaPart(
                    tool_call_id=tool_call_id,
                    tool_name=tool_name,
                    args_text_delta=delta,
                ))

        if entry.get("result"):
            parts.append(ToolInputAvailablePart(
                tool_call_id=tool_call_id,
                tool_name=tool_name,
                input_text=dump_json(entry["result"]),
            ))

        return parts

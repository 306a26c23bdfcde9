"""
Typed model of the upstream agent's NDJSON events.

Each line of the agent's stdout is one JSON object tagged by ``type``.
The models here accept the known shapes, keep unknown fields, and expose
small pure predicates/extractors used by the converters and the tool-call
interception runtime.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


TOOL_CALL_SUFFIX = "ToolCall"


class _EventModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ─────────────────────────────────────────────────────────────────────
# CONTENT BLOCKS
# ─────────────────────────────────────────────────────────────────────

class ContentBlock(_EventModel):
    """One block of a message. Unknown block types are kept and ignored."""

    type: str
    text: Optional[str] = None
    thinking: Optional[str] = None


class EventMessage(_EventModel):
    role: str = "assistant"
    content: list[ContentBlock] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_string_content(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [{"type": "text", "text": value}]
        return value


# ─────────────────────────────────────────────────────────────────────
# EVENTS
# ─────────────────────────────────────────────────────────────────────

class SystemEvent(_EventModel):
    type: Literal["system"]
    subtype: Optional[str] = None
    timestamp: Optional[float] = None
    session_id: Optional[str] = None
    cwd: Optional[str] = None
    model: Optional[str] = None
    permission_mode: Optional[str] = Field(default=None, alias="permissionMode")
    tools: Optional[list[dict[str, Any]]] = None
    message: Optional[str] = None


class UserEvent(_EventModel):
    type: Literal["user"]
    timestamp: Optional[float] = None
    session_id: Optional[str] = None
    message: EventMessage


class AssistantEvent(_EventModel):
    type: Literal["assistant"]
    timestamp: Optional[float] = None
    session_id: Optional[str] = None
    message: EventMessage


class ThinkingEvent(_EventModel):
    """Standalone reasoning event, either message-shaped or a bare ``text``."""

    type: Literal["thinking"]
    subtype: Optional[str] = None
    timestamp: Optional[float] = None
    session_id: Optional[str] = None
    message: Optional[EventMessage] = None
    text: Optional[str] = None


class ToolCallEvent(_EventModel):
    """A tool invocation or its completion.

    ``tool_call`` is normally a single-key mapping from the raw tool key
    (e.g. ``readToolCall``) to a payload holding ``args`` and/or ``result``.
    It is left untyped so extraction boundaries can decide how strict to be.
    """

    type: Literal["tool_call"]
    subtype: Optional[str] = None
    timestamp: Optional[float] = None
    session_id: Optional[str] = None
    call_id: Optional[str] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    tool_call: Any = None


class ResultError(_EventModel):
    message: Optional[str] = None
    code: Optional[Union[int, str]] = None
    details: Optional[str] = None


class ResultEvent(_EventModel):
    type: Literal["result"]
    subtype: Optional[str] = None
    timestamp: Optional[float] = None
    session_id: Optional[str] = None
    is_error: Optional[bool] = None
    error: Optional[ResultError] = None
    result: Optional[str] = None
    duration_ms: Optional[float] = None


StreamEvent = Annotated[
    Union[SystemEvent, UserEvent, AssistantEvent, ThinkingEvent, ToolCallEvent, ResultEvent],
    Field(discriminator="type"),
]


# ─────────────────────────────────────────────────────────────────────
# PREDICATES
# ─────────────────────────────────────────────────────────────────────

def _has_block(event: AssistantEvent, block_type: str) -> bool:
    return any(block.type == block_type for block in event.message.content)


def is_assistant_text(event: Any) -> bool:
    return isinstance(event, AssistantEvent) and _has_block(event, "text")


def is_thinking(event: Any) -> bool:
    """True for thinking events and for assistant events carrying thinking blocks."""
    if isinstance(event, ThinkingEvent):
        return True
    return isinstance(event, AssistantEvent) and _has_block(event, "thinking")


def is_tool_call(event: Any) -> bool:
    return isinstance(event, ToolCallEvent)


def is_result(event: Any) -> bool:
    return isinstance(event, ResultEvent)


def is_error_result(event: Any) -> bool:
    if not isinstance(event, ResultEvent):
        return False
    return bool(event.is_error) or event.subtype == "error"


# ─────────────────────────────────────────────────────────────────────
# EXTRACTORS
# ─────────────────────────────────────────────────────────────────────

def extract_text(event: AssistantEvent) -> str:
    return "".join(
        block.text or "" for block in event.message.content if block.type == "text"
    )


def extract_thinking(event: Union[AssistantEvent, ThinkingEvent]) -> str:
    if isinstance(event, ThinkingEvent):
        if event.message is None:
            return event.text or ""
        return "".join(
            block.thinking if block.thinking is not None else (block.text or "")
            for block in event.message.content
        )
    return "".join(
        block.thinking or "" for block in event.message.content if block.type == "thinking"
    )


def infer_tool_name(event: ToolCallEvent) -> str:
    """Tool name from the first tool_call key, e.g. ``readToolCall`` -> ``read``."""
    if not isinstance(event.tool_call, dict) or not event.tool_call:
        return ""
    key = next(iter(event.tool_call))
    if key.endswith(TOOL_CALL_SUFFIX):
        base = key[: -len(TOOL_CALL_SUFFIX)]
        return base[:1].lower() + base[1:]
    return key


def extract_error_message(event: ResultEvent) -> str:
    if event.error is not None and event.error.message:
        return event.error.message
    if event.result:
        return event.result
    return "Unknown error"

"""
OpenAI ``chat.completion`` / ``chat.completion.chunk`` builders and SSE framing.
"""

import time
from typing import Any, Optional

from pydantic import BaseModel

from agent_relay.config import DEFAULT_PROVIDER_ID, SSE_DONE_MARKER
from agent_relay.serialization import dump_json
from agent_relay.tools.schemas import OpenAiToolCall


SSE_DONE = f"data: {SSE_DONE_MARKER}\n\n"


class ResponseMeta(BaseModel):
    """Identity shared by every chunk of one response."""

    id: str
    created: int
    model: str


def new_response_meta(model: str, provider_id: str = DEFAULT_PROVIDER_ID) -> ResponseMeta:
    now = time.time()
    return ResponseMeta(
        id=f"{provider_id}-{int(now * 1000)}",
        created=int(now),
        model=model,
    )


def _chunk(meta: ResponseMeta, delta: dict[str, Any], finish_reason: Optional[str]) -> dict[str, Any]:
    return {
        "id": meta.id,
        "object": "chat.completion.chunk",
        "created": meta.created,
        "model": meta.model,
        "choices": [
            {
                "index": 0,
                "delta": delta,
                "finish_reason": finish_reason,
            }
        ],
    }


def create_chat_completion_response(meta: ResponseMeta, content: str) -> dict[str, Any]:
    return {
        "id": meta.id,
        "object": "chat.completion",
        "created": meta.created,
        "model": meta.model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def create_chat_completion_chunk(
    meta: ResponseMeta,
    content: str = "",
    done: bool = False,
) -> dict[str, Any]:
    """Content delta chunk; an empty delta when there is no content."""
    delta = {"content": content} if content else {}
    return _chunk(meta, delta, "stop" if done else None)


def create_tool_result_chunk(meta: ResponseMeta, content: str) -> dict[str, Any]:
    """Assistant-visible content chunk for tool results and relay hints."""
    return _chunk(meta, {"role": "assistant", "content": content}, None)


def create_tool_call_completion_response(meta: ResponseMeta, tool_call: OpenAiToolCall) -> dict[str, Any]:
    return {
        "id": meta.id,
        "object": "chat.completion",
        "created": meta.created,
        "model": meta.model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [tool_call.to_dict()],
                },
                "finish_reason": "tool_calls",
            }
        ],
    }


def create_tool_call_stream_chunks(meta: ResponseMeta, tool_call: OpenAiToolCall) -> list[dict[str, Any]]:
    """Tool call delta chunk followed by the ``tool_calls`` finish chunk."""
    tool_delta = _chunk(
        meta,
        {
            "role": "assistant",
            "tool_calls": [{"index": 0, **tool_call.to_dict()}],
        },
        None,
    )
    return [tool_delta, _chunk(meta, {}, "tool_calls")]


def format_sse(payload: Any) -> str:
    return f"data: {dump_json(payload)}\n\n"

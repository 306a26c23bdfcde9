"""
Stream translators: agent NDJSON in, OpenAI chunks or AI-SDK parts out.

Both translators consume raw stdout chunks (``str`` or ``bytes``, sync or
async iterables), reassemble lines, parse events and route ``tool_call``
events through a ToolCallInterceptor when a ToolLoopContext is given.
Processing is strictly one event at a time; an abort event is checked
between events only.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Iterable, Optional, Union

from pydantic import BaseModel, Field

from agent_relay.interception.boundary import ToolCallBoundary
from agent_relay.interception.runtime import (
    Callback,
    InterceptionDecision,
    Termination,
    ToolCallInterceptor,
    ToolLoopContext,
    invoke_callback,
)
from agent_relay.streaming.ai_sdk_parts import (
    AiSdkStreamPart,
    StreamToAiSdkParts,
    TextDeltaPart,
    ToolCallDeltaPart,
    ToolCallStreamingStartPart,
    ToolInputAvailablePart,
)
from agent_relay.streaming.delta_tracker import DeltaTracker
from agent_relay.streaming.events import (
    extract_error_message,
    extract_text,
    extract_thinking,
    is_assistant_text,
    is_error_result,
    is_thinking,
    is_tool_call,
)
from agent_relay.streaming.openai_chunks import (
    SSE_DONE,
    ResponseMeta,
    create_chat_completion_chunk,
    create_chat_completion_response,
    create_tool_call_completion_response,
    create_tool_call_stream_chunks,
    format_sse,
)
from agent_relay.streaming.parser import NdjsonLineBuffer, parse_stream_json_line
from agent_relay.tools.schemas import OpenAiToolCall

logger = logging.getLogger(__name__)

Chunk = Union[str, bytes]
ChunkSource = Union[Iterable[Chunk], AsyncIterator[Chunk]]


async def iter_lines(source: ChunkSource) -> AsyncIterator[str]:
    """Complete lines from a stream of arbitrarily split chunks."""
    buffer = NdjsonLineBuffer()
    if hasattr(source, "__aiter__"):
        async for chunk in source:
            for line in buffer.feed(chunk):
                yield line
    else:
        for chunk in source:
            for line in buffer.feed(chunk):
                yield line
    for line in buffer.flush():
        yield line


class TranslationOutcome(BaseModel):
    """What one translated turn produced."""

    text: str = ""
    tool_calls: list[OpenAiToolCall] = Field(default_factory=list)
    termination: Optional[Termination] = None
    error: Optional[str] = None
    finish_reason: Optional[str] = None


def _chain(first: Callback, second: Optional[Callback]) -> Callback:
    async def chained(payload: Any) -> None:
        await invoke_callback(first, payload)
        await invoke_callback(second, payload)
    return chained


class _InterceptingTranslator:
    """Shared wiring between a translator and its interceptor.

    The translator works on a copy of the context whose ``on_tool_result``
    and ``on_intercepted_tool_call`` callbacks also feed the translator;
    callbacks set on the original context still run. The original is not
    modified.
    """

    def __init__(
        self,
        context: Optional[ToolLoopContext] = None,
        boundary: Optional[ToolCallBoundary] = None,
        auto_fallback_to_legacy: bool = True,
        on_fallback_to_legacy: Optional[Callback] = None,
        abort: Optional[asyncio.Event] = None,
    ):
        self.abort = abort
        self.outcome = TranslationOutcome()
        self._tool_results: list[dict[str, Any]] = []
        self._intercepted: list[OpenAiToolCall] = []
        self.interceptor: Optional[ToolCallInterceptor] = None
        if context is not None:
            context = replace(
                context,
                on_tool_result=_chain(self._collect_result, context.on_tool_result),
                on_intercepted_tool_call=_chain(self._collect_call, context.on_intercepted_tool_call),
            )
            self.interceptor = ToolCallInterceptor(
                context,
                boundary,
                auto_fallback_to_legacy=auto_fallback_to_legacy,
                on_fallback_to_legacy=on_fallback_to_legacy,
            )

    def _collect_result(self, chunk: dict[str, Any]) -> None:
        self._tool_results.append(chunk)

    def _collect_call(self, call: OpenAiToolCall) -> None:
        self._intercepted.append(call)

    def _aborted(self) -> bool:
        if self.abort is not None and self.abort.is_set():
            logger.info("Translation aborted between events")
            return True
        return False

    async def _intercept(self, event: Any) -> Optional[InterceptionDecision]:
        if self.interceptor is None or not is_tool_call(event):
            return None
        return await self.interceptor.handle(event)

    def _drain(self) -> tuple[list[dict[str, Any]], list[OpenAiToolCall]]:
        results, self._tool_results = self._tool_results, []
        calls, self._intercepted = self._intercepted, []
        return results, calls


# ─────────────────────────────────────────────────────────────────────
# OPENAI
# ─────────────────────────────────────────────────────────────────────

class OpenAiStreamTranslator(_InterceptingTranslator):
    """Agent events to ``chat.completion.chunk`` dicts."""

    def __init__(self, meta: ResponseMeta, context: Optional[ToolLoopContext] = None, **kwargs):
        super().__init__(context, **kwargs)
        self.meta = meta
        self.tracker = DeltaTracker()

    async def translate(self, source: ChunkSource) -> AsyncIterator[dict[str, Any]]:
        async for line in iter_lines(source):
            if self._aborted():
                return
            event = parse_stream_json_line(line)
            if event is None:
                continue
            for chunk in await self._handle_event(event):
                yield chunk
            if self.outcome.finish_reason is not None:
                return

        if self.outcome.finish_reason is None and not self._aborted():
            self.outcome.finish_reason = "stop"
            yield create_chat_completion_chunk(self.meta, done=True)

    async def _handle_event(self, event: Any) -> list[dict[str, Any]]:
        decision = await self._intercept(event)
        results, calls = self._drain()
        chunks = list(results)

        if decision is not None and decision.terminate is not None:
            self.outcome.termination = decision.terminate
            self.outcome.finish_reason = "stop"
            chunks.append(create_chat_completion_chunk(self.meta, decision.terminate.message, done=True))
            return chunks

        if calls:
            self.outcome.tool_calls.extend(calls)
            self.outcome.finish_reason = "tool_calls"
            for call in calls:
                chunks.extend(create_tool_call_stream_chunks(self.meta, call))
            return chunks

        if is_tool_call(event):
            return chunks

        if is_assistant_text(event):
            delta = self.tracker.next_text(extract_text(event))
            if delta:
                self.outcome.text += delta
                chunks.append(create_chat_completion_chunk(self.meta, delta))
        elif is_thinking(event):
            # Reasoning is tracked so later snapshots diff correctly but is not surfaced.
            self.tracker.next_thinking(extract_thinking(event))
        elif is_error_result(event):
            message = extract_error_message(event)
            self.outcome.error = message
            chunks.append(create_chat_completion_chunk(self.meta, f"Error: {message}"))

        return chunks

    async def iter_sse(self, source: ChunkSource) -> AsyncIterator[str]:
        """SSE-framed chunks followed by the ``[DONE]`` marker."""
        async for chunk in self.translate(source):
            yield format_sse(chunk)
        yield SSE_DONE

    async def collect_completion(self, source: ChunkSource) -> dict[str, Any]:
        """Drain the stream into one non-streaming ``chat.completion``."""
        async for _ in self.translate(source):
            pass
        if self.outcome.tool_calls:
            return create_tool_call_completion_response(self.meta, self.outcome.tool_calls[0])
        if self.outcome.termination is not None:
            return create_chat_completion_response(self.meta, self.outcome.termination.message)
        content = self.outcome.text
        if self.outcome.error:
            content = f"{content}Error: {self.outcome.error}"
        return create_chat_completion_response(self.meta, content)


# ─────────────────────────────────────────────────────────────────────
# AI-SDK
# ─────────────────────────────────────────────────────────────────────

def _tool_result_part(chunk: dict[str, Any]) -> Optional[AiSdkStreamPart]:
    delta = chunk["choices"][0]["delta"]
    if delta.get("tool_calls"):
        call = delta["tool_calls"][0]
        return ToolInputAvailablePart(
            tool_call_id=call["id"],
            tool_name=call["function"]["name"],
            input_text=call["function"]["arguments"],
        )
    if delta.get("content"):
        return TextDeltaPart(text_delta=delta["content"])
    return None


class AiSdkStreamTranslator(_InterceptingTranslator):
    """Agent events to AI-SDK stream parts."""

    def __init__(self, context: Optional[ToolLoopContext] = None, **kwargs):
        super().__init__(context, **kwargs)
        self.converter = StreamToAiSdkParts()

    async def translate(self, source: ChunkSource) -> AsyncIterator[AiSdkStreamPart]:
        async for line in iter_lines(source):
            if self._aborted():
                return
            event = parse_stream_json_line(line)
            if event is None:
                continue
            for part in await self._handle_event(event):
                yield part
            if self.outcome.finish_reason is not None:
                return

        if self.outcome.finish_reason is None:
            self.outcome.finish_reason = "stop"

    async def _handle_event(self, event: Any) -> list[AiSdkStreamPart]:
        decision = await self._intercept(event)
        results, calls = self._drain()
        parts = [part for part in (_tool_result_part(chunk) for chunk in results) if part is not None]

        if decision is not None and decision.terminate is not None:
            self.outcome.termination = decision.terminate
            self.outcome.finish_reason = "stop"
            parts.append(TextDeltaPart(text_delta=decision.terminate.message))
            return parts

        for call in calls:
            self.outcome.tool_calls.append(call)
            self.outcome.finish_reason = "tool_calls"
            parts.append(ToolCallStreamingStartPart(tool_call_id=call.id, tool_name=call.function.name))
            parts.append(ToolCallDeltaPart(
                tool_call_id=call.id,
                tool_name=call.function.name,
                args_text_delta=call.function.arguments,
            ))

        if decision is not None and decision.skip_converter:
            return parts

        converted = self.converter.handle_event(event)
        for part in converted:
            if isinstance(part, TextDeltaPart):
                self.outcome.text += part.text_delta
        return parts + converted

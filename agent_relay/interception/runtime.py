"""
Tool-call interception runtime.

Every upstream ``tool_call`` event passes through one decision:

    RECEIVED -> EXTRACTED -> SCHEMA_CHECKED -> LOOP_CHECKED
             -> INTERCEPTED | EXECUTED | TERMINATED

with FALLBACK to the legacy boundary when a versioned boundary cannot
decode the payload. ``intercept`` mode hands the repaired call back to the
client (which runs the tool itself); ``proxy_execute`` mode runs it
through the ToolRouter and streams the result back to the model.
"""

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel, Field

from agent_relay.config import DEFAULT_MODEL
from agent_relay.interception.boundary import (
    BoundaryExtractionError,
    LegacyBoundary,
    ToolCallBoundary,
    V1Boundary,
)
from agent_relay.loop.guard import LoopGuardDecision, ToolLoopGuard
from agent_relay.streaming.events import ToolCallEvent
from agent_relay.streaming.openai_chunks import (
    ResponseMeta,
    create_tool_result_chunk,
    new_response_meta,
)
from agent_relay.tools.compat import apply_tool_schema_compat, validation_signature
from agent_relay.tools.mapper import ToolMapper
from agent_relay.tools.parameters import ToolSchema
from agent_relay.tools.router import ToolRouter
from agent_relay.tools.schemas import ArgumentTypeError, CompatResult, OpenAiToolCall

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Optional[Awaitable[None]]]


class InterceptionState(str, Enum):
    RECEIVED = "received"
    EXTRACTED = "extracted"
    SCHEMA_CHECKED = "schema_checked"
    LOOP_CHECKED = "loop_checked"
    INTERCEPTED = "intercepted"
    EXECUTED = "executed"
    TERMINATED = "terminated"
    FALLBACK = "fallback"


class Termination(BaseModel):
    """Why the current turn must end."""

    reason: Literal["schema_validation", "loop_guard"]
    message: str
    error_class: Optional[str] = None
    tool_name: Optional[str] = None
    fingerprint: Optional[str] = None
    missing: list[str] = Field(default_factory=list)
    type_errors: list[ArgumentTypeError] = Field(default_factory=list)


class InterceptionDecision(BaseModel):
    intercepted: bool
    skip_converter: bool
    terminate: Optional[Termination] = None


async def invoke_callback(callback: Optional[Callback], payload: Any) -> None:
    if callback is None:
        return
    outcome = callback(payload)
    if inspect.isawaitable(outcome):
        await outcome


# ─────────────────────────────────────────────────────────────────────
# CONTEXT
# ─────────────────────────────────────────────────────────────────────

@dataclass
class ToolLoopContext:
    """Session-scoped collaborators for tool-call decisions."""

    allowed_tool_names: set[str]
    tool_loop_guard: ToolLoopGuard
    tool_loop_mode: Literal["intercept", "proxy_execute"] = "intercept"
    tool_schema_map: dict[str, ToolSchema] = field(default_factory=dict)
    schema_failure_mode: Literal["strict", "pass_through"] = "pass_through"
    response_meta: ResponseMeta = field(default_factory=lambda: new_response_meta(DEFAULT_MODEL))
    tool_router: Optional[ToolRouter] = None
    tool_mapper: Optional[ToolMapper] = None
    session_id: str = "default"
    emit_tool_updates: bool = False
    on_tool_update: Optional[Callback] = None
    on_tool_result: Optional[Callback] = None
    on_intercepted_tool_call: Optional[Callback] = None

    def __post_init__(self):
        if self.tool_loop_mode == "proxy_execute" and self.tool_router is None:
            raise ValueError("proxy_execute mode requires a tool_router")

    def effective_allowed_names(self) -> set[str]:
        """Declared tools, plus router tools when the relay executes them."""
        if self.tool_loop_mode == "proxy_execute" and self.tool_router is not None:
            return set(self.allowed_tool_names) | self.tool_router.tool_names
        return set(self.allowed_tool_names)


# ─────────────────────────────────────────────────────────────────────
# MESSAGES
# ─────────────────────────────────────────────────────────────────────

def _describe_problems(compat: CompatResult) -> str:
    problems = []
    if compat.validation.missing:
        problems.append("missing required arguments: " + ", ".join(compat.validation.missing))
    if compat.validation.type_errors:
        problems.append("type errors: " + ", ".join(
            f"{err.name} (expected {err.expected_type}, got {err.actual_type})"
            for err in compat.validation.type_errors
        ))
    return "; ".join(problems)


def malformed_call_hint(call: OpenAiToolCall, compat: CompatResult) -> str:
    return (
        f"Skipped malformed tool call '{call.function.name}': {_describe_problems(compat)}. "
        "Retry the call with all required arguments."
    )


def schema_termination(call: OpenAiToolCall, compat: CompatResult) -> Termination:
    return Termination(
        reason="schema_validation",
        message=f"Tool call '{call.function.name}' failed schema validation: {_describe_problems(compat)}",
        error_class="validation",
        tool_name=call.function.name,
        missing=list(compat.validation.missing),
        type_errors=list(compat.validation.type_errors),
    )


def loop_guard_termination(call: OpenAiToolCall, decision: LoopGuardDecision) -> Termination:
    return Termination(
        reason="loop_guard",
        message=(
            f"Tool call '{call.function.name}' failed {decision.repeat_count} times with "
            f"{decision.error_class} errors (limit {decision.max_repeat}); stopping to avoid a loop."
        ),
        error_class=decision.error_class,
        tool_name=call.function.name,
        fingerprint=decision.fingerprint,
    )


def _terminated(termination: Termination) -> InterceptionDecision:
    logger.warning("Terminating turn (%s): %s", termination.reason, termination.message)
    return InterceptionDecision(intercepted=False, skip_converter=True, terminate=termination)


# ─────────────────────────────────────────────────────────────────────
# INTERCEPTOR
# ─────────────────────────────────────────────────────────────────────

class ToolCallInterceptor:
    """
    Runs the decision for each tool_call event of one turn.

    Only BoundaryExtractionError from a non-legacy boundary triggers the
    legacy fallback; schema and loop-guard terminations are values, and any
    other exception (router, mapper, callbacks) propagates.
    """

    def __init__(
        self,
        context: ToolLoopContext,
        boundary: Optional[ToolCallBoundary] = None,
        auto_fallback_to_legacy: bool = True,
        on_fallback_to_legacy: Optional[Callback] = None,
    ):
        self.context = context
        self.boundary = boundary or V1Boundary()
        self.auto_fallback_to_legacy = auto_fallback_to_legacy
        self.on_fallback_to_legacy = on_fallback_to_legacy
        self._legacy = LegacyBoundary(self.boundary.provider_id)

    async def _extract(self, event: ToolCallEvent, allowed: set[str]) -> Optional[OpenAiToolCall]:
        try:
            return self.boundary.maybe_extract_tool_call(event, allowed)
        except BoundaryExtractionError as e:
            if self.boundary.mode == "legacy" or not self.auto_fallback_to_legacy:
                raise
            logger.info(
                "Boundary %s failed on %s (%s); falling back to legacy",
                self.boundary.mode, event.call_id, e,
            )
            logger.debug("state=%s call=%s", InterceptionState.FALLBACK.value, event.call_id)
            await invoke_callback(self.on_fallback_to_legacy, e)
            return self._legacy.maybe_extract_tool_call(event, allowed)

    async def handle(self, event: Any) -> Optional[InterceptionDecision]:
        """Decide one event; None means the converter should handle it as usual."""
        if not isinstance(event, ToolCallEvent):
            return None
        ctx = self.context

        logger.debug("state=%s call=%s", InterceptionState.RECEIVED.value, event.call_id)
        call = await self._extract(event, ctx.effective_allowed_names())
        if call is None:
            return None
        logger.debug("state=%s call=%s name=%s", InterceptionState.EXTRACTED.value, call.id, call.function.name)

        compat = apply_tool_schema_compat(call, ctx.tool_schema_map)
        call = compat.tool_call
        logger.debug("state=%s call=%s ok=%s", InterceptionState.SCHEMA_CHECKED.value, call.id, compat.validation.ok)
        if not compat.validation.ok:
            return await self._handle_invalid(call, compat)

        guard_decision = ctx.tool_loop_guard.evaluate(call)
        logger.debug("state=%s call=%s tracked=%s", InterceptionState.LOOP_CHECKED.value, call.id, guard_decision.tracked)
        if guard_decision.triggered:
            return _terminated(loop_guard_termination(call, guard_decision))

        if ctx.tool_loop_mode == "intercept":
            logger.info("Intercepted tool call %s (%s)", call.function.name, call.id)
            await invoke_callback(ctx.on_intercepted_tool_call, call)
            return InterceptionDecision(intercepted=True, skip_converter=True)

        return await self._execute(event, call, compat.normalized_args)

    async def _handle_invalid(self, call: OpenAiToolCall, compat: CompatResult) -> InterceptionDecision:
        ctx = self.context
        guard_decision = ctx.tool_loop_guard.evaluate_validation(call, validation_signature(compat.validation))
        if guard_decision.triggered:
            return _terminated(loop_guard_termination(call, guard_decision))

        if compat.validation.type_errors or ctx.schema_failure_mode == "strict":
            return _terminated(schema_termination(call, compat))

        hint = malformed_call_hint(call, compat)
        logger.info("%s", hint)
        await invoke_callback(ctx.on_tool_result, create_tool_result_chunk(ctx.response_meta, hint))
        return InterceptionDecision(intercepted=False, skip_converter=True)

    async def _execute(
        self, event: ToolCallEvent, call: OpenAiToolCall, args: dict[str, Any]
    ) -> InterceptionDecision:
        ctx = self.context
        if ctx.emit_tool_updates and ctx.tool_mapper is not None:
            for update in ctx.tool_mapper.map_event(event, ctx.session_id):
                await invoke_callback(ctx.on_tool_update, update)

        result = await ctx.tool_router.execute(call.function.name, args)
        chunk = ctx.tool_router.build_result_chunk(ctx.response_meta, call.id, call.function.name, result)
        await invoke_callback(ctx.on_tool_result, chunk)
        ctx.tool_loop_guard.observe_result(call.id, result.content())

        logger.debug("state=%s call=%s status=%s", InterceptionState.EXECUTED.value, call.id, result.status)
        return InterceptionDecision(intercepted=False, skip_converter=True)


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINTS
# ─────────────────────────────────────────────────────────────────────

async def handle_tool_loop_event_legacy(
    event: Any, context: ToolLoopContext
) -> Optional[InterceptionDecision]:
    interceptor = ToolCallInterceptor(context, LegacyBoundary(), auto_fallback_to_legacy=False)
    return await interceptor.handle(event)


async def handle_tool_loop_event_v1(
    event: Any, context: ToolLoopContext, boundary: Optional[ToolCallBoundary] = None
) -> Optional[InterceptionDecision]:
    interceptor = ToolCallInterceptor(context, boundary or V1Boundary(), auto_fallback_to_legacy=False)
    return await interceptor.handle(event)


async def handle_tool_loop_event_with_fallback(
    event: Any,
    context: ToolLoopContext,
    boundary: ToolCallBoundary,
    auto_fallback_to_legacy: bool = True,
    on_fallback_to_legacy: Optional[Callback] = None,
) -> Optional[InterceptionDecision]:
    interceptor = ToolCallInterceptor(
        context,
        boundary,
        auto_fallback_to_legacy=auto_fallback_to_legacy,
        on_fallback_to_legacy=on_fallback_to_legacy,
    )
    return await interceptor.handle(event)

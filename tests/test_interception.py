"""Tests for extraction boundaries and the tool-call interception runtime."""

import json
from unittest.mock import MagicMock

import pytest

from agent_relay.interception.boundary import (
    BoundaryExtractionError,
    LegacyBoundary,
    V1Boundary,
    create_provider_boundary,
)
from agent_relay.interception.runtime import (
    ToolCallInterceptor,
    ToolLoopContext,
    handle_tool_loop_event_legacy,
    handle_tool_loop_event_v1,
    handle_tool_loop_event_with_fallback,
)
from agent_relay.loop.guard import ToolLoopGuard
from agent_relay.streaming.parser import parse_stream_json_line
from agent_relay.tools.mapper import ToolMapper
from agent_relay.tools.router import LocalToolExecutor, ToolRouter

from tests.conftest import READ_EVENT, tool_call_event


def parse(event: dict):
    return parse_stream_json_line(json.dumps(event))


def tool_result(call_id: str, content: str) -> dict:
    return {"role": "tool", "tool_call_id": call_id, "content": content}


@pytest.fixture
def recorded():
    """Lists the context callbacks append to."""
    return {"calls": [], "results": [], "updates": [], "fallbacks": []}


@pytest.fixture
def make_context(schema_map, response_meta, recorded):
    def _make(**overrides):
        kwargs = dict(
            allowed_tool_names={"read", "write", "edit", "todowrite"},
            tool_loop_guard=ToolLoopGuard(),
            tool_schema_map=schema_map,
            response_meta=response_meta,
            on_intercepted_tool_call=recorded["calls"].append,
            on_tool_result=recorded["results"].append,
            on_tool_update=recorded["updates"].append,
        )
        kwargs.update(overrides)
        return ToolLoopContext(**kwargs)
    return _make


# ─────────────────────────────────────────────────────────────────────
# BOUNDARIES
# ─────────────────────────────────────────────────────────────────────

class TestBoundaries:

    def test_legacy_and_v1_agree_on_standard_payload(self):
        event = parse(READ_EVENT)
        legacy = LegacyBoundary().maybe_extract_tool_call(event, {"read"})
        v1 = V1Boundary().maybe_extract_tool_call(event, {"read"})
        assert legacy == v1
        assert v1.function.arguments == '{"path":"foo.txt"}'

    def test_v1_understands_function_shaped_payload(self):
        event = parse(tool_call_event("function", {"name": "read", "arguments": {"path": "a"}}))
        call = V1Boundary().maybe_extract_tool_call(event, {"read"})
        assert call.function.name == "read"
        assert json.loads(call.function.arguments) == {"path": "a"}

    def test_v1_rejects_multi_key_mapping(self):
        event = parse({"type": "tool_call", "call_id": "c1", "tool_call": {"readToolCall": {}, "other": {}}})
        with pytest.raises(BoundaryExtractionError):
            V1Boundary().maybe_extract_tool_call(event, {"read"})

    def test_v1_rejects_non_object_payload(self):
        event = parse(tool_call_event("readToolCall", ["path"]))
        with pytest.raises(BoundaryExtractionError):
            V1Boundary().maybe_extract_tool_call(event, {"read"})

    def test_v1_empty_allowed_set(self):
        event = parse({"type": "tool_call", "tool_call": "garbage"})
        assert V1Boundary().maybe_extract_tool_call(event, set()) is None

    def test_v1_skips_result_only_payload(self):
        event = parse(tool_call_event("readToolCall", {"result": {"content": "x"}}))
        assert V1Boundary().maybe_extract_tool_call(event, {"read"}) is None

    def test_create_provider_boundary(self):
        assert create_provider_boundary("v1").mode == "v1"
        assert create_provider_boundary("legacy", provider_id="p").provider_id == "p"
        with pytest.raises(ValueError):
            create_provider_boundary("v2")


# ─────────────────────────────────────────────────────────────────────
# INTERCEPT MODE
# ─────────────────────────────────────────────────────────────────────

class TestInterceptMode:
    """Tests for the intercept decision path."""

    @pytest.mark.asyncio
    async def test_declared_tool_is_intercepted(self, make_context, recorded):
        decision = await handle_tool_loop_event_v1(parse(READ_EVENT), make_context())
        assert decision.intercepted is True
        assert decision.skip_converter is True
        assert decision.terminate is None
        (call,) = recorded["calls"]
        assert call.id == "c1"
        assert call.function.arguments == '{"path":"foo.txt"}'

    @pytest.mark.asyncio
    async def test_legacy_entry_point_matches_v1(self, make_context, recorded):
        decision = await handle_tool_loop_event_legacy(parse(READ_EVENT), make_context())
        assert decision.intercepted is True
        assert recorded["calls"][0].function.arguments == '{"path":"foo.txt"}'

    @pytest.mark.asyncio
    async def test_repaired_arguments_reach_callback(self, make_context, recorded):
        event = parse(tool_call_event("editToolCall", {"args": {"path": "T.md", "content": "X"}}))
        decision = await handle_tool_loop_event_v1(event, make_context())
        assert decision.intercepted
        assert json.loads(recorded["calls"][0].function.arguments) == {
            "path": "T.md", "old_string": "", "new_string": "X",
        }

    @pytest.mark.asyncio
    async def test_non_tool_events_are_not_decided(self, make_context):
        assert await handle_tool_loop_event_v1(parse({"type": "system"}), make_context()) is None

    @pytest.mark.asyncio
    async def test_undeclared_tool_is_not_decided(self, make_context, recorded):
        event = parse(tool_call_event("bashToolCall", {"args": {"command": "ls"}}))
        assert await handle_tool_loop_event_v1(event, make_context()) is None
        assert recorded["calls"] == []

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self, make_context):
        seen = []

        async def on_call(call):
            seen.append(call.id)

        await handle_tool_loop_event_v1(parse(READ_EVENT), make_context(on_intercepted_tool_call=on_call))
        assert seen == ["c1"]

    @pytest.mark.asyncio
    async def test_decisions_are_independent(self, make_context):
        context = make_context()
        first = await handle_tool_loop_event_v1(parse(READ_EVENT), context)
        first.intercepted = False
        second_event = parse(tool_call_event("readToolCall", {"args": {"path": "b"}}, call_id="c2"))
        second = await handle_tool_loop_event_v1(second_event, context)
        assert second.intercepted is True
        assert first is not second


# ─────────────────────────────────────────────────────────────────────
# SCHEMA FAILURES
# ─────────────────────────────────────────────────────────────────────

class TestSchemaFailures:

    @pytest.mark.asyncio
    async def test_pass_through_emits_hint_instead_of_terminating(self, make_context, recorded):
        event = parse(tool_call_event("editToolCall", {"args": {"path": "a", "old_string": "x"}}))
        decision = await handle_tool_loop_event_v1(event, make_context())

        assert decision.intercepted is False
        assert decision.skip_converter is True
        assert decision.terminate is None
        assert recorded["calls"] == []
        (chunk,) = recorded["results"]
        assert "Skipped malformed tool call" in chunk["choices"][0]["delta"]["content"]
        assert "new_string" in chunk["choices"][0]["delta"]["content"]

    @pytest.mark.asyncio
    async def test_type_errors_terminate_in_pass_through(self, make_context):
        event = parse(tool_call_event("readToolCall", {"args": {"path": 42}}))
        decision = await handle_tool_loop_event_v1(event, make_context())

        assert decision.terminate is not None
        assert decision.terminate.reason == "schema_validation"
        assert "type errors" in decision.terminate.message
        assert decision.terminate.type_errors[0].name == "path"

    @pytest.mark.asyncio
    async def test_strict_mode_terminates_on_missing(self, make_context):
        event = parse(tool_call_event("editToolCall", {"args": {"content": "X"}}))
        decision = await handle_tool_loop_event_v1(event, make_context(schema_failure_mode="strict"))

        assert decision.intercepted is False
        assert decision.terminate.reason == "schema_validation"
        assert decision.terminate.missing == ["path"]

    @pytest.mark.asyncio
    async def test_repeated_validation_failures_trip_loop_guard(self, make_context, recorded):
        context = make_context(tool_loop_guard=ToolLoopGuard(max_repeat=1))
        first = parse(tool_call_event("editToolCall", {"args": {"path": "a", "old_string": "x"}}, call_id="c1"))
        second = parse(tool_call_event("editToolCall", {"args": {"old_string": "x", "new_string": "y"}}, call_id="c2"))

        assert (await handle_tool_loop_event_v1(first, context)).terminate is None
        decision = await handle_tool_loop_event_v1(second, context)

        assert decision.terminate.reason == "loop_guard"
        assert decision.terminate.error_class == "validation"
        assert decision.terminate.fingerprint == "edit|validation"


# ─────────────────────────────────────────────────────────────────────
# LOOP GUARD
# ─────────────────────────────────────────────────────────────────────

class TestLoopGuardTermination:

    @pytest.mark.asyncio
    async def test_repeated_failing_call_terminates(self, make_context, recorded):
        guard = ToolLoopGuard(history=[tool_result("prev", "Error: file not found")], max_repeat=1)
        context = make_context(tool_loop_guard=guard)

        assert (await handle_tool_loop_event_v1(parse(READ_EVENT), context)).intercepted
        decision = await handle_tool_loop_event_v1(parse(READ_EVENT), context)

        assert decision.intercepted is False
        assert decision.skip_converter is True
        assert decision.terminate.reason == "loop_guard"
        assert decision.terminate.error_class == "not_found"
        assert len(recorded["calls"]) == 1

    @pytest.mark.asyncio
    async def test_termination_never_falls_back(self, make_context, recorded):
        guard = ToolLoopGuard(history=[tool_result("prev", "Error: file not found")], max_repeat=0)
        decision = await handle_tool_loop_event_with_fallback(
            parse(READ_EVENT),
            make_context(tool_loop_guard=guard),
            V1Boundary(),
            on_fallback_to_legacy=recorded["fallbacks"].append,
        )
        assert decision.terminate.reason == "loop_guard"
        assert recorded["fallbacks"] == []


# ─────────────────────────────────────────────────────────────────────
# FALLBACK
# ─────────────────────────────────────────────────────────────────────

class TestBoundaryFallback:

    MULTI_KEY_EVENT = {
        "type": "tool_call",
        "call_id": "c1",
        "tool_call": {"readToolCall": {"args": {"path": "foo.txt"}}, "extra": {}},
    }

    @pytest.mark.asyncio
    async def test_extraction_error_falls_back_to_legacy(self, make_context, recorded):
        decision = await handle_tool_loop_event_with_fallback(
            parse(self.MULTI_KEY_EVENT),
            make_context(),
            V1Boundary(),
            on_fallback_to_legacy=recorded["fallbacks"].append,
        )
        assert decision.intercepted is True
        assert recorded["calls"][0].function.arguments == '{"path":"foo.txt"}'
        (error,) = recorded["fallbacks"]
        assert isinstance(error, BoundaryExtractionError)

    @pytest.mark.asyncio
    async def test_fallback_disabled_propagates(self, make_context):
        with pytest.raises(BoundaryExtractionError):
            await handle_tool_loop_event_with_fallback(
                parse(self.MULTI_KEY_EVENT), make_context(), V1Boundary(), auto_fallback_to_legacy=False
            )

    @pytest.mark.asyncio
    async def test_custom_boundary_failure_falls_back(self, make_context, recorded):
        boundary = MagicMock()
        boundary.mode = "v2"
        boundary.provider_id = "test"
        boundary.maybe_extract_tool_call.side_effect = BoundaryExtractionError("unsupported")

        decision = await handle_tool_loop_event_with_fallback(
            parse(READ_EVENT), make_context(), boundary, on_fallback_to_legacy=recorded["fallbacks"].append
        )
        assert decision.intercepted is True
        assert str(recorded["fallbacks"][0]) == "unsupported"

    @pytest.mark.asyncio
    async def test_other_boundary_errors_propagate(self, make_context, recorded):
        boundary = MagicMock()
        boundary.mode = "v1"
        boundary.provider_id = "test"
        boundary.maybe_extract_tool_call.side_effect = KeyError("bug")

        with pytest.raises(KeyError):
            await handle_tool_loop_event_with_fallback(parse(READ_EVENT), make_context(), boundary)
        assert recorded["fallbacks"] == []


# ─────────────────────────────────────────────────────────────────────
# PROXY EXECUTE
# ─────────────────────────────────────────────────────────────────────

class TestProxyExecute:

    @pytest.fixture
    def router(self):
        return ToolRouter([LocalToolExecutor({
            "read": lambda args: f"contents of {args['path']}",
            "grep": lambda args: "Error: pattern invalid",
            "bash": lambda args: f"ran {args}",
        })])

    @pytest.mark.asyncio
    async def test_executes_through_router(self, make_context, recorded, router):
        context = make_context(tool_loop_mode="proxy_execute", tool_router=router)
        decision = await handle_tool_loop_event_v1(parse(READ_EVENT), context)

        assert decision.intercepted is False
        assert decision.skip_converter is True
        assert decision.terminate is None
        assert recorded["calls"] == []
        (chunk,) = recorded["results"]
        call = chunk["choices"][0]["delta"]["tool_calls"][0]
        assert call["id"] == "c1"
        assert json.loads(call["function"]["arguments"]) == {"result": "contents of foo.txt"}
        assert context.tool_loop_guard.result_for("c1") == "contents of foo.txt"

    @pytest.mark.asyncio
    async def test_router_tools_are_allowed(self, make_context, recorded, router):
        context = make_context(allowed_tool_names=set(), tool_loop_mode="proxy_execute", tool_router=router)
        event = parse(tool_call_event("grepToolCall", {"args": {"pattern": "("}}))
        decision = await handle_tool_loop_event_v1(event, context)
        assert decision.terminate is None
        assert len(recorded["results"]) == 1

    @pytest.mark.asyncio
    async def test_emits_tool_updates(self, make_context, recorded, router):
        context = make_context(
            tool_loop_mode="proxy_execute",
            tool_router=router,
            tool_mapper=ToolMapper(),
            emit_tool_updates=True,
            session_id="s1",
        )
        await handle_tool_loop_event_v1(parse(READ_EVENT), context)
        assert [u.status for u in recorded["updates"]] == ["pending", "in_progress"]
        assert recorded["updates"][0].session_id == "s1"

    @pytest.mark.asyncio
    async def test_string_args_with_tool_updates(self, make_context, recorded, router):
        context = make_context(
            tool_loop_mode="proxy_execute", tool_router=router, tool_mapper=ToolMapper(), emit_tool_updates=True
        )
        event = parse(tool_call_event("bashToolCall", {"args": "echo ok"}))
        decision = await handle_tool_loop_event_v1(event, context)

        assert decision.terminate is None
        assert recorded["updates"][0].kind == "execute"
        assert len(recorded["results"]) == 1

    @pytest.mark.asyncio
    async def test_mapper_errors_propagate(self, make_context, recorded, router):
        mapper = MagicMock()
        mapper.map_event.side_effect = RuntimeError("mapper broke")
        context = make_context(
            tool_loop_mode="proxy_execute", tool_router=router, tool_mapper=mapper, emit_tool_updates=True
        )
        with pytest.raises(RuntimeError, match="mapper broke"):
            await handle_tool_loop_event_with_fallback(
                parse(READ_EVENT), context, V1Boundary(), on_fallback_to_legacy=recorded["fallbacks"].append
            )
        assert recorded["fallbacks"] == []

    def test_proxy_mode_requires_router(self, make_context):
        with pytest.raises(ValueError):
            make_context(tool_loop_mode="proxy_execute")


class TestToolCallInterceptor:

    def test_defaults_to_v1_boundary(self, make_context):
        interceptor = ToolCallInterceptor(make_context())
        assert interceptor.boundary.mode == "v1"
        assert interceptor.auto_fallback_to_legacy is True

"""Tests for OpenAI chunk builders and SSE framing."""

import json

from agent_relay.streaming.openai_chunks import (
    SSE_DONE,
    create_chat_completion_chunk,
    create_chat_completion_response,
    create_tool_call_completion_response,
    create_tool_call_stream_chunks,
    create_tool_result_chunk,
    format_sse,
    new_response_meta,
)
from agent_relay.tools.schemas import OpenAiFunction, OpenAiToolCall


def make_call() -> OpenAiToolCall:
    return OpenAiToolCall(id="c1", function=OpenAiFunction(name="read", arguments='{"path":"foo.txt"}'))


class TestCompletionBuilders:

    def test_chat_completion_response(self, response_meta):
        payload = create_chat_completion_response(response_meta, "Paris")
        assert payload["object"] == "chat.completion"
        assert payload["id"] == "resp-1"
        assert payload["choices"][0]["message"] == {"role": "assistant", "content": "Paris"}
        assert payload["choices"][0]["finish_reason"] == "stop"

    def test_content_chunk(self, response_meta):
        chunk = create_chat_completion_chunk(response_meta, "Hi")
        assert chunk["object"] == "chat.completion.chunk"
        assert chunk["choices"][0]["delta"] == {"content": "Hi"}
        assert chunk["choices"][0]["finish_reason"] is None

    def test_done_chunk_has_empty_delta(self, response_meta):
        chunk = create_chat_completion_chunk(response_meta, done=True)
        assert chunk["choices"][0]["delta"] == {}
        assert chunk["choices"][0]["finish_reason"] == "stop"

    def test_tool_result_chunk(self, response_meta):
        chunk = create_tool_result_chunk(response_meta, "Skipped malformed tool call")
        assert chunk["choices"][0]["delta"]["content"] == "Skipped malformed tool call"


class TestToolCallBuilders:

    def test_tool_call_completion(self, response_meta):
        payload = create_tool_call_completion_response(response_meta, make_call())
        choice = payload["choices"][0]
        assert choice["finish_reason"] == "tool_calls"
        assert choice["message"]["content"] is None
        assert choice["message"]["tool_calls"] == [{
            "id": "c1",
            "type": "function",
            "function": {"name": "read", "arguments": '{"path":"foo.txt"}'},
        }]

    def test_tool_call_stream_chunks(self, response_meta):
        delta_chunk, finish_chunk = create_tool_call_stream_chunks(response_meta, make_call())
        delta = delta_chunk["choices"][0]["delta"]
        assert delta["role"] == "assistant"
        assert delta["tool_calls"][0]["index"] == 0
        assert delta["tool_calls"][0]["id"] == "c1"
        assert delta["tool_calls"][0]["function"]["name"] == "read"
        assert delta_chunk["choices"][0]["finish_reason"] is None
        assert finish_chunk["choices"][0]["delta"] == {}
        assert finish_chunk["choices"][0]["finish_reason"] == "tool_calls"


class TestSse:

    def test_format_sse(self):
        assert format_sse({"a": 1}) == 'data: {"a":1}\n\n'

    def test_done_marker(self):
        assert SSE_DONE == "data: [DONE]\n\n"

    def test_frame_round_trips_as_json(self, response_meta):
        frame = format_sse(create_chat_completion_chunk(response_meta, "héllo"))
        assert json.loads(frame[len("data: "):])["choices"][0]["delta"]["content"] == "héllo"


class TestResponseMeta:

    def test_new_response_meta(self):
        meta = new_response_meta("gpt-x", provider_id="cursor-acp")
        assert meta.id.startswith("cursor-acp-")
        assert meta.model == "gpt-x"
        assert meta.created > 0

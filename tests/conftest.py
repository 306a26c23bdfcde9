"""Shared test fixtures for agent-relay tests."""

import json

import pytest

from agent_relay.streaming.openai_chunks import ResponseMeta
from agent_relay.tools.parameters import build_tool_schema_map


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

EDIT_PARAMETERS = {
    "type": "object",
    "properties": {
        "path": {"type": "string"},
        "old_string": {"type": "string"},
        "new_string": {"type": "string"},
    },
    "required": ["path", "old_string", "new_string"],
    "additionalProperties": False,
}

WRITE_PARAMETERS = {
    "type": "object",
    "properties": {
        "path": {"type": "string"},
        "content": {"type": "string"},
    },
    "required": ["path", "content"],
}

READ_PARAMETERS = {
    "type": "object",
    "properties": {"path": {"type": "string"}},
    "required": ["path"],
}

TODOWRITE_PARAMETERS = {
    "type": "object",
    "properties": {"todos": {"type": "array"}},
    "required": ["todos"],
    "additionalProperties": False,
}

MOCK_TOOLS = [
    {"type": "function", "function": {"name": "read", "parameters": READ_PARAMETERS}},
    {"type": "function", "function": {"name": "write", "parameters": WRITE_PARAMETERS}},
    {"type": "function", "function": {"name": "edit", "parameters": EDIT_PARAMETERS}},
    {"name": "todowrite", "parameters": TODOWRITE_PARAMETERS},
]

READ_EVENT = {
    "type": "tool_call",
    "subtype": "started",
    "call_id": "c1",
    "tool_call": {"readToolCall": {"args": {"path": "foo.txt"}}},
}


def ndjson(*events) -> list[str]:
    """Serialize events as newline-terminated NDJSON lines."""
    return [json.dumps(event) + "\n" for event in events]


def assistant(text: str) -> dict:
    return {
        "type": "assistant",
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
    }


def tool_call_event(key: str, payload: dict, call_id: str = "c1", **extra) -> dict:
    return {"type": "tool_call", "call_id": call_id, "tool_call": {key: payload}, **extra}


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_tools():
    """Return declared tools in both OpenAI and flat shapes."""
    return json.loads(json.dumps(MOCK_TOOLS))


@pytest.fixture
def schema_map(mock_tools):
    return build_tool_schema_map(mock_tools)


@pytest.fixture
def response_meta():
    return ResponseMeta(id="resp-1", created=123, model="auto")


@pytest.fixture
def tools_file(tmp_path, mock_tools):
    """Write declared tools to a temporary JSON file."""
    path = tmp_path / "tools.json"
    path.write_text(json.dumps(mock_tools))
    return path


@pytest.fixture(autouse=True)
def clean_relay_env(monkeypatch):
    """Keep AGENT_RELAY_* settings from the host environment out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("AGENT_RELAY_"):
            monkeypatch.delenv(key, raising=False)

"""Tests for declared tool schemas and OpenAI parameter cleanup."""

from agent_relay.tools.parameters import (
    ToolSchema,
    build_tool_schema_map,
    describe_tool,
    to_openai_parameters,
    to_openai_tools,
)

from tests.conftest import EDIT_PARAMETERS, MOCK_TOOLS


class TestToolSchema:

    def test_from_json_schema(self):
        schema = ToolSchema.from_json_schema(EDIT_PARAMETERS)
        assert schema.required == ["path", "old_string", "new_string"]
        assert schema.declares("old_string")
        assert not schema.declares("content")
        assert schema.additional_properties is False

    def test_additional_properties_default_true(self):
        schema = ToolSchema.from_json_schema({"type": "object", "properties": {}})
        assert schema.additional_properties is True

    def test_property_type(self):
        schema = ToolSchema.from_json_schema({
            "properties": {"a": {"type": "string"}, "b": {"type": ["string", "null"]}, "c": {}},
        })
        assert schema.property_type("a") == "string"
        assert schema.property_type("b") == ["string", "null"]
        assert schema.property_type("c") is None
        assert schema.property_type("missing") is None

    def test_malformed_fields_are_ignored(self):
        schema = ToolSchema.from_json_schema({"properties": "nope", "required": [1, "x"]})
        assert schema.properties == {}
        assert schema.required == ["x"]


class TestBuildToolSchemaMap:

    def test_both_shapes(self, schema_map):
        assert set(schema_map) == {"read", "write", "edit", "todowrite"}
        assert schema_map["todowrite"].required == ["todos"]

    def test_skips_tools_without_parameters(self):
        assert build_tool_schema_map([{"name": "bare"}, {"function": {"name": "x", "parameters": "bad"}}]) == {}

    def test_none(self):
        assert build_tool_schema_map(None) == {}


class TestToOpenAiParameters:

    def test_strips_rejected_keywords_recursively(self):
        cleaned = to_openai_parameters({
            "$schema": "http://json-schema.org/draft-07/schema#",
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "todos": {
                    "type": "array",
                    "items": {"type": "object", "additionalProperties": False, "properties": {}},
                },
            },
            "required": ["todos"],
        })
        assert "$schema" not in cleaned
        assert "additionalProperties" not in cleaned
        assert "additionalProperties" not in cleaned["properties"]["todos"]["items"]
        assert cleaned["required"] == ["todos"]

    def test_does_not_mutate_input(self):
        original = dict(EDIT_PARAMETERS)
        to_openai_parameters(original)
        assert original["additionalProperties"] is False

    def test_forces_object_shape(self):
        assert to_openai_parameters(None) == {"type": "object", "properties": {}}
        assert to_openai_parameters({"type": "string"}) == {"type": "object", "properties": {}, "required": []}


class TestDescribeTool:

    def test_default_description(self):
        assert describe_tool(None) == "OpenCode tool"

    def test_truncates(self):
        assert len(describe_tool("x" * 1000)) == 400


class TestToOpenAiTools:

    def test_both_declaration_shapes(self):
        tools = to_openai_tools(MOCK_TOOLS + [{"description": "nameless"}, "junk"])
        assert [t["function"]["name"] for t in tools] == ["read", "write", "edit", "todowrite"]
        assert all(t["type"] == "function" for t in tools)
        edit = tools[2]["function"]
        assert edit["description"] == "OpenCode tool"
        assert "additionalProperties" not in edit["parameters"]
        assert edit["parameters"]["required"] == ["path", "old_string", "new_string"]

    def test_keeps_description(self):
        (tool,) = to_openai_tools([{"name": "grep", "description": "Search files"}])
        assert tool["function"] == {
            "name": "grep",
            "description": "Search files",
            "parameters": {"type": "object", "properties": {}},
        }

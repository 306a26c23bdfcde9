"""
Caller-declared tool parameter schemas.

Tool declarations arrive in either the OpenAI shape
``{"type": "function", "function": {"name", "parameters"}}`` or the flat
``{"name", "parameters"}`` shape. Only the top level of each parameter
schema matters for reconciliation: property names and their declared
primitive types, ``required`` and ``additionalProperties``.
"""

import copy
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel, Field

from agent_relay.config import TOOL_DESCRIPTION_MAX_CHARS


class ToolSchema(BaseModel):
    properties: dict[str, dict[str, Any]] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    additional_properties: bool = True

    @classmethod
    def from_json_schema(cls, schema: dict[str, Any]) -> "ToolSchema":
        properties = schema.get("properties")
        required = schema.get("required")
        return cls(
            properties={
                name: declared if isinstance(declared, dict) else {}
                for name, declared in (properties.items() if isinstance(properties, dict) else [])
            },
            required=[r for r in required if isinstance(r, str)] if isinstance(required, list) else [],
            additional_properties=schema.get("additionalProperties") is not False,
        )

    def declares(self, name: str) -> bool:
        return name in self.properties

    def property_type(self, name: str) -> Optional[Union[str, list[str]]]:
        """Declared ``type`` of a property, None when undeclared or untyped."""
        declared = self.properties.get(name, {}).get("type")
        if isinstance(declared, (str, list)):
            return declared
        return None


def build_tool_schema_map(tools: Optional[Iterable[Any]]) -> dict[str, ToolSchema]:
    schema_map: dict[str, ToolSchema] = {}
    for tool in tools or []:
        if not isinstance(tool, dict):
            continue
        fn = tool.get("function") if isinstance(tool.get("function"), dict) else tool
        name = fn.get("name")
        parameters = fn.get("parameters")
        if not isinstance(name, str) or not name or not isinstance(parameters, dict):
            continue
        schema_map[name] = ToolSchema.from_json_schema(parameters)
    return schema_map


# ─────────────────────────────────────────────────────────────────────
# OPENAI PARAMETER CLEANUP
# ─────────────────────────────────────────────────────────────────────

_STRIP_KEYS = ("additionalProperties", "$schema", "$id", "unevaluatedProperties", "definitions", "$defs")


def _strip_unsupported(node: Any) -> None:
    if not isinstance(node, dict):
        return
    for key in _STRIP_KEYS:
        node.pop(key, None)
    properties = node.get("properties")
    if isinstance(properties, dict):
        for child in properties.values():
            _strip_unsupported(child)
    if "items" in node:
        _strip_unsupported(node["items"])
    for combinator in ("anyOf", "oneOf", "allOf"):
        if isinstance(node.get(combinator), list):
            for child in node[combinator]:
                _strip_unsupported(child)


def to_openai_parameters(schema: Any) -> dict[str, Any]:
    """Copy of a JSON schema with keywords OpenAI tools reject removed."""
    if not isinstance(schema, dict):
        return {"type": "object", "properties": {}}

    cleaned = copy.deepcopy(schema)
    _strip_unsupported(cleaned)

    if cleaned.get("type") != "object":
        cleaned["type"] = "object"
        cleaned.setdefault("properties", {})
    if not isinstance(cleaned.get("required"), list):
        cleaned["required"] = []
    return cleaned


def describe_tool(description: Optional[str]) -> str:
    base = description or "OpenCode tool"
    return base[:TOOL_DESCRIPTION_MAX_CHARS]


def to_openai_tools(tools: Optional[Iterable[Any]]) -> list[dict[str, Any]]:
    """Declared tools in the OpenAI ``function`` shape with cleaned parameters."""
    converted = []
    for tool in tools or []:
        if not isinstance(tool, dict):
            continue
        fn = tool.get("function") if isinstance(tool.get("function"), dict) else tool
        name = fn.get("name")
        if not isinstance(name, str) or not name:
            continue
        converted.append({
            "type": "function",
            "function": {
                "name": name,
                "description": describe_tool(fn.get("description")),
                "parameters": to_openai_parameters(fn.get("parameters")),
            },
        })
    return converted

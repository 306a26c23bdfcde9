"""
Schema compatibility: repair tool-call arguments toward the declared schema.

Agents routinely send near-miss arguments (``filePath`` for ``path``, a
whole-file ``content`` for an ``edit`` that wants ``old_string`` and
``new_string``, ``"done"`` for a todo status of ``"completed"``). The
engine applies a fixed sequence of repairs and then validates what is left:

    1. argument alias normalization (canonical key wins on collision)
    2. ``edit`` full-replacement repair
    3. ``todowrite`` status/priority repair
    4. unexpected-field stripping under ``additionalProperties: false``
    5. validation (missing required keys, primitive type mismatches)

Tools without a declared schema are passed through untouched.
"""

import json
import logging
from typing import Any, Mapping, Optional

from agent_relay.serialization import dump_json
from agent_relay.tools.extraction import normalize_alias_key
from agent_relay.tools.parameters import ToolSchema
from agent_relay.tools.schemas import (
    ArgumentTypeError,
    CompatResult,
    OpenAiFunction,
    OpenAiToolCall,
    ValidationResult,
)

logger = logging.getLogger(__name__)


ARGUMENT_ALIASES: dict[str, str] = {
    "filePath": "path",
    "file_path": "path",
    "filename": "path",
    "fileName": "path",
    "contents": "content",
    "oldString": "old_string",
    "old_str": "old_string",
    "newString": "new_string",
    "new_str": "new_string",
    "cmd": "command",
}

EDIT_CONTENT_KEYS = ("content", "streamContent")

TODO_STATUS_SYNONYMS: dict[str, str] = {
    "todo": "pending",
    "not_started": "pending",
    "not-started": "pending",
    "in-progress": "in_progress",
    "inprogress": "in_progress",
    "in progress": "in_progress",
    "doing": "in_progress",
    "done": "completed",
    "complete": "completed",
    "finished": "completed",
    "canceled": "cancelled",
}

DEFAULT_TODO_PRIORITY = "medium"


# ─────────────────────────────────────────────────────────────────────
# REPAIR STEPS
# ─────────────────────────────────────────────────────────────────────

def _normalize_aliases(
    args: dict[str, Any], schema: ToolSchema, collisions: list[str], repairs: list[str]
) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in args.items():
        canonical = ARGUMENT_ALIASES.get(key)
        if canonical is None or schema.declares(key) or not schema.declares(canonical):
            normalized[key] = value
            continue
        if canonical in args or canonical in normalized:
            collisions.append(key)
            continue
        normalized[canonical] = value
        repairs.append(f"alias:{key}->{canonical}")
    return normalized


def _coerce_text(value: Any) -> Optional[str]:
    """Flatten string / list-of-strings / ``{text}`` chunk payloads."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        text = value.get("text")
        return text if isinstance(text, str) else None
    if isinstance(value, list):
        pieces = [_coerce_text(item) for item in value]
        if any(piece is None for piece in pieces):
            return None
        return "".join(pieces)
    return None


def _repair_edit(args: dict[str, Any], schema: ToolSchema, repairs: list[str]) -> None:
    wants_strings = any(
        key in schema.required or schema.declares(key) for key in ("old_string", "new_string")
    )
    if not wants_strings or "old_string" in args or "new_string" in args:
        return

    source = next((key for key in EDIT_CONTENT_KEYS if key in args), None)
    if source is None:
        return
    text = _coerce_text(args[source])
    if text is None:
        return

    for key in EDIT_CONTENT_KEYS:
        args.pop(key, None)
    args["old_string"] = ""
    args["new_string"] = text
    repairs.append(f"edit:{source}->new_string")


def _repair_todos(args: dict[str, Any], repairs: list[str]) -> None:
    todos = args.get("todos")
    if not isinstance(todos, list):
        return
    for item in todos:
        if not isinstance(item, dict):
            continue
        status = item.get("status")
        if isinstance(status, str):
            mapped = TODO_STATUS_SYNONYMS.get(status.strip().lower())
            if mapped is not None and mapped != status:
                item["status"] = mapped
                repairs.append(f"todowrite:status:{status}->{mapped}")
        if "priority" not in item:
            item["priority"] = DEFAULT_TODO_PRIORITY
            repairs.append("todowrite:priority")


def _strip_unexpected(args: dict[str, Any], schema: ToolSchema) -> list[str]:
    if schema.additional_properties:
        return []
    unexpected = [key for key in args if not schema.declares(key)]
    for key in unexpected:
        del args[key]
    return unexpected


# ─────────────────────────────────────────────────────────────────────
# VALIDATION
# ─────────────────────────────────────────────────────────────────────

def json_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "integer":
        if isinstance(value, bool):
            return False
        return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, list)
    if expected == "object":
        return isinstance(value, dict)
    if expected == "null":
        return value is None
    # Unknown type keywords are not checked.
    return True


def _validate(args: dict[str, Any], schema: ToolSchema, unexpected: list[str]) -> ValidationResult:
    missing = [key for key in schema.required if key not in args]
    type_errors: list[ArgumentTypeError] = []
    for key, value in args.items():
        declared = schema.property_type(key)
        if declared is None:
            continue
        expected = [declared] if isinstance(declared, str) else [t for t in declared if isinstance(t, str)]
        if expected and not any(_matches_type(value, t) for t in expected):
            type_errors.append(ArgumentTypeError(
                name=key,
                expected_type="|".join(expected),
                actual_type=json_type_name(value),
            ))
    return ValidationResult(missing=missing, type_errors=type_errors, unexpected=unexpected)


def validation_signature(validation: ValidationResult) -> str:
    """Stable failure key, e.g. ``missing:old_string,new_string;type:path``."""
    parts = []
    if validation.missing:
        parts.append("missing:" + ",".join(validation.missing))
    if validation.type_errors:
        parts.append("type:" + ",".join(err.name for err in validation.type_errors))
    return ";".join(parts) or "ok"


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────

def parse_arguments(tool_call: OpenAiToolCall) -> dict[str, Any]:
    """Decode a tool call's argument string; non-object payloads give {}."""
    try:
        parsed = json.loads(tool_call.function.arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def apply_tool_schema_compat(
    tool_call: OpenAiToolCall,
    schema_map: Mapping[str, ToolSchema],
) -> CompatResult:
    """
    Repair and validate a tool call against its declared schema.

    Returns the repaired call (arguments re-serialized), the normalized
    argument dict, the validation outcome, alias keys dropped because
    their canonical key was also present, and a log of applied repairs.
    """
    args = parse_arguments(tool_call)
    schema = schema_map.get(tool_call.function.name)
    if schema is None:
        return CompatResult(tool_call=tool_call, normalized_args=args)

    collisions: list[str] = []
    repairs: list[str] = []
    tool_key = normalize_alias_key(tool_call.function.name)

    args = _normalize_aliases(args, schema, collisions, repairs)
    if tool_key == "edit":
        _repair_edit(args, schema, repairs)
    if tool_key == "todowrite":
        _repair_todos(args, repairs)
    unexpected = _strip_unexpected(args, schema)
    validation = _validate(args, schema, unexpected)

    if repairs or collisions or unexpected:
        logger.debug(
            "Repaired %s (%s): repairs=%s collisions=%s unexpected=%s",
            tool_call.function.name, tool_call.id, repairs, collisions, unexpected,
        )

    repaired = OpenAiToolCall(
        id=tool_call.id,
        function=OpenAiFunction(name=tool_call.function.name, arguments=dump_json(args)),
    )
    return CompatResult(
        tool_call=repaired,
        normalized_args=args,
        validation=validation,
        collision_keys=collisions,
        repairs=repairs,
    )

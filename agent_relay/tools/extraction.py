"""
Tool-call extraction from upstream ``tool_call`` events.

The agent reports tools as single-key mappings whose key uses a PascalCase
``<name>ToolCall`` convention and whose payload is either wrapped
(``{"args": {...}}``), flat (``{"path": ...}``) or a bare ``{"result": ...}``
re-broadcast. Decoding reduces all of these to one ToolCallCandidate,
which is then resolved against the tools the caller declared.
"""

import json
import logging
import re
from typing import Any, Iterable, Optional

from agent_relay.serialization import dump_json
from agent_relay.streaming.events import TOOL_CALL_SUFFIX, ToolCallEvent
from agent_relay.tools.schemas import OpenAiFunction, OpenAiToolCall, ToolCallCandidate

logger = logging.getLogger(__name__)


UNKNOWN_CALL_ID = "call_unknown"

# Keys are normalize_alias_key() forms.
TOOL_NAME_ALIASES: dict[str, str] = {
    # todo write
    "updatetodos": "todowrite",
    "updatetodostoolcall": "todowrite",
    "todowrite": "todowrite",
    "todowritetoolcall": "todowrite",
    "writetodos": "todowrite",
    "todowritefn": "todowrite",
    # todo read
    "readtodos": "todoread",
    "readtodostoolcall": "todoread",
    "todoread": "todoread",
    "todoreadtoolcall": "todoread",
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


# ─────────────────────────────────────────────────────────────────────
# NAME RESOLUTION
# ─────────────────────────────────────────────────────────────────────

def normalize_tool_name(raw: str) -> str:
    """``readToolCall`` -> ``read``; names without the suffix are unchanged."""
    if raw.endswith(TOOL_CALL_SUFFIX):
        base = raw[: -len(TOOL_CALL_SUFFIX)]
        return base[:1].lower() + base[1:]
    return raw


def normalize_alias_key(value: str) -> str:
    return _NON_ALNUM.sub("", value.lower())


def _match_insensitive(key: str, allowed: Iterable[str]) -> Optional[str]:
    for allowed_name in allowed:
        if normalize_alias_key(allowed_name) == key:
            return allowed_name
    return None


def resolve_allowed_tool_name(name: str, allowed: set[str]) -> Optional[str]:
    """
    Resolve a tool name to the caller's spelling of it.

    Exact match first, then case/punctuation-insensitive, then the alias
    table followed by an insensitive match on the alias target.
    """
    if name in allowed:
        return name

    key = normalize_alias_key(name)
    matched = _match_insensitive(key, allowed)
    if matched is not None:
        return matched

    canonical = TOOL_NAME_ALIASES.get(key)
    if canonical is None:
        return None
    return _match_insensitive(normalize_alias_key(canonical), allowed)


def extract_allowed_tool_names(tools: Optional[Iterable[Any]]) -> set[str]:
    """Names from OpenAI ``{"type", "function": {...}}`` or flat ``{"name"}`` declarations."""
    names: set[str] = set()
    for tool in tools or []:
        if not isinstance(tool, dict):
            continue
        fn = tool.get("function") or tool
        name = fn.get("name") if isinstance(fn, dict) else None
        if isinstance(name, str) and name:
            names.add(name)
    return names


# ─────────────────────────────────────────────────────────────────────
# DECODING
# ─────────────────────────────────────────────────────────────────────

def decode_tool_call(event: ToolCallEvent) -> Optional[ToolCallCandidate]:
    """
    Reduce a tool_call event to a ToolCallCandidate.

    Returns None when no tool name can be determined. A payload holding
    only ``result`` decodes with ``is_result_only=True``.
    """
    name = event.name if isinstance(event.name, str) and event.name else None
    args: Any = None
    result_only = False

    if isinstance(event.tool_call, dict) and event.tool_call:
        raw_name, payload = next(iter(event.tool_call.items()))
        if name is None:
            name = raw_name
        if isinstance(payload, dict):
            args = payload.get("args")
            if args is None:
                rest = {k: v for k, v in payload.items() if k != "result"}
                if rest:
                    args = rest
                else:
                    result_only = True

    if not name:
        return None

    return ToolCallCandidate(
        id=event.call_id or event.tool_call_id or UNKNOWN_CALL_ID,
        raw_name=normalize_tool_name(name),
        args=args,
        is_result_only=result_only,
    )


def to_openai_arguments(args: Any) -> str:
    """Serialize arguments to a compact JSON object string."""
    if args is None:
        return "{}"

    if isinstance(args, str):
        try:
            parsed = json.loads(args)
        except json.JSONDecodeError:
            return dump_json({"value": args})
        if isinstance(parsed, (dict, list)):
            return dump_json(parsed)
        return dump_json({"value": parsed})

    if isinstance(args, (dict, list)):
        return dump_json(args)

    return dump_json({"value": args})


def candidate_to_tool_call(candidate: ToolCallCandidate, allowed: set[str]) -> Optional[OpenAiToolCall]:
    """Resolve a decoded candidate against the allowed set."""
    if candidate.is_result_only:
        return None

    resolved = resolve_allowed_tool_name(candidate.raw_name, allowed)
    if resolved is None:
        logger.debug("Dropping undeclared tool call %s (%s)", candidate.raw_name, candidate.id)
        return None

    return OpenAiToolCall(
        id=candidate.id,
        function=OpenAiFunction(name=resolved, arguments=to_openai_arguments(candidate.args)),
    )


def extract_openai_tool_call(event: ToolCallEvent, allowed: set[str]) -> Optional[OpenAiToolCall]:
    """Extract an OpenAI tool call for a declared tool, or None."""
    if not allowed:
        return None

    candidate = decode_tool_call(event)
    if candidate is None:
        return None

    if candidate.args is None and event.subtype == "started":
        logger.debug("Tool call %s started without arguments", candidate.raw_name)

    return candidate_to_tool_call(candidate, allowed)

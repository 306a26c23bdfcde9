"""
Agent tool_call events to client-facing tool progress updates.

A ``started`` event yields a ``pending`` update (title, kind, locations)
followed by ``in_progress``; a ``completed``/``failed`` event yields one
final update carrying result content and the raw result payload.
"""

import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from agent_relay.serialization import dump_json
from agent_relay.streaming.events import ToolCallEvent

ToolKind = Literal["read", "edit", "search", "execute", "other"]
ToolStatus = Literal["pending", "in_progress", "completed", "failed"]


class ToolLocation(BaseModel):
    path: str
    line: Optional[int] = None


class ToolUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    tool_call_id: str
    title: Optional[str] = None
    kind: Optional[ToolKind] = None
    status: Optional[ToolStatus] = None
    locations: Optional[list[ToolLocation]] = None
    content: Optional[list[dict[str, Any]]] = None
    raw_output: Optional[str] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _now_ms() -> float:
    return time.time() * 1000


def _entries(event: ToolCallEvent) -> list[tuple[str, dict[str, Any]]]:
    if not isinstance(event.tool_call, dict):
        return []
    return [
        (key.lower(), payload if isinstance(payload, dict) else {})
        for key, payload in event.tool_call.items()
    ]


def _args(payload: dict[str, Any]) -> dict[str, Any]:
    args = payload.get("args")
    return args if isinstance(args, dict) else {}


def _locations_from(values: list[Any]) -> list[ToolLocation]:
    locations = []
    for value in values:
        if isinstance(value, str):
            locations.append(ToolLocation(path=value))
        elif isinstance(value, dict) and isinstance(value.get("path"), str):
            line = value.get("line")
            locations.append(ToolLocation(path=value["path"], line=line if isinstance(line, int) else None))
    return locations


class ToolMapper:
    def map_event(self, event: Any, session_id: str) -> list[ToolUpdate]:
        if not isinstance(event, ToolCallEvent):
            return []

        tool_call_id = event.call_id or event.tool_call_id or "unknown"
        subtype = event.subtype or "started"

        if subtype in ("completed", "failed"):
            error, content, result_locations, raw_output = self._extract_result(event)
            return [ToolUpdate(
                session_id=session_id,
                tool_call_id=tool_call_id,
                title=self.build_title(event),
                kind=self.infer_kind(event),
                status="failed" if error or subtype == "failed" else "completed",
                content=content or ([{"type": "content", "content": {"text": error}}] if error else None),
                locations=result_locations or self.extract_locations(event),
                raw_output=raw_output,
                end_time=_now_ms(),
            )]

        return [
            ToolUpdate(
                session_id=session_id,
                tool_call_id=tool_call_id,
                title=self.build_title(event),
                kind=self.infer_kind(event),
                status="pending",
                locations=self.extract_locations(event),
                start_time=_now_ms(),
            ),
            ToolUpdate(session_id=session_id, tool_call_id=tool_call_id, status="in_progress"),
        ]

    def infer_kind(self, event: ToolCallEvent) -> ToolKind:
        for key, _ in _entries(event):
            if "read" in key:
                return "read"
            if "write" in key or "edit" in key:
                return "edit"
            if "grep" in key or "glob" in key:
                return "search"
            if "bash" in key or "shell" in key:
                return "execute"
        return "other"

    def build_title(self, event: ToolCallEvent) -> str:
        for key, payload in _entries(event):
            args = _args(payload)
            if "read" in key and args.get("path"):
                return f"Read {args['path']}"
            if "write" in key and args.get("path"):
                return f"Write {args['path']}"
            if "edit" in key and args.get("path"):
                return f"Edit {args['path']}"
            if "grep" in key:
                pattern = args.get("pattern") or "pattern"
                if args.get("path"):
                    return f"Search {args['path']} for {pattern}"
                return f"Search for {pattern}"
            if "glob" in key and args.get("pattern"):
                return f"Glob {args['pattern']}"
            if "bash" in key or "shell" in key:
                command = args.get("command") or args.get("cmd")
                if command:
                    return f"`{command}`"
                if isinstance(args.get("commands"), list):
                    return "`" + " && ".join(str(c) for c in args["commands"]) + "`"
        return "other"

    def extract_locations(self, event: ToolCallEvent) -> Optional[list[ToolLocation]]:
        for _, payload in _entries(event):
            args = _args(payload)
            path = args.get("path")
            if isinstance(path, str) and path:
                line = args.get("line")
                return [ToolLocation(path=path, line=line if isinstance(line, int) else None)]
            if isinstance(path, list):
                return _locations_from(path)
            if isinstance(args.get("paths"), list):
                return _locations_from(args["paths"])
        return None

    def _extract_result(self, event: ToolCallEvent):
        """Returns (error, content, locations, raw_output) for the first entry."""
        for key, payload in _entries(event):
            result = payload.get("result") or {}
            if not isinstance(result, dict):
                return None, [{"type": "content", "content": {"text": str(result)}}], None, dump_json(result)
            if result.get("error"):
                return str(result["error"]), None, None, dump_json(result)

            locations: list[ToolLocation] = []
            if isinstance(result.get("matches"), list):
                locations.extend(_locations_from(result["matches"]))
            if isinstance(result.get("files"), list):
                locations.extend(_locations_from(result["files"]))
            if isinstance(result.get("path"), str):
                line = result.get("line")
                locations.append(ToolLocation(path=result["path"], line=line if isinstance(line, int) else None))

            content: list[dict[str, Any]] = []
            if "write" in key and ("newText" in result or "oldText" in result):
                args = _args(payload)
                content.append({
                    "type": "diff",
                    "path": args.get("path") or result.get("path"),
                    "oldText": result.get("oldText"),
                    "newText": result.get("newText"),
                })
            if result.get("content"):
                content.append({"type": "content", "content": {"text": result["content"]}})
            if "output" in result or "exitCode" in result:
                exit_code = result.get("exitCode")
                output = result.get("output") or "(no output)"
                content.append({
                    "type": "content",
                    "content": {"text": f"Exit code: {exit_code if exit_code is not None else 0}\n{output}"},
                })

            return None, content or None, locations or None, dump_json(result)
        return None, None, None, None

"""CLI entry point for agent-relay.

Translates a captured (or piped) agent NDJSON stream and checks tool-call
arguments against declared tool schemas, using the same internals as an
embedding server.

Entry point:
    agent-relay translate [--format openai|ai-sdk] [--tools tools.json] < agent.ndjson
    agent-relay check-args --tools tools.json --name edit --args '{"path": "a.md"}'
    agent-relay list-tools --tools tools.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-relay",
        description="Translate coding-agent NDJSON streams into OpenAI / AI-SDK output.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command")

    # translate
    tr_p = sub.add_parser("translate", help="Translate an agent NDJSON stream")
    tr_p.add_argument("--input", "-i", default=None, help="NDJSON file (default: stdin)")
    tr_p.add_argument(
        "--format", choices=("openai", "ai-sdk"), default="openai", dest="output_format",
        help="Output format (SSE chunks or AI-SDK parts)",
    )
    tr_p.add_argument("--tools", default=None, help="JSON file with declared tools")
    tr_p.add_argument("--history", default=None, help="JSON file with prior chat messages")
    tr_p.add_argument("--model", default=None, help="Model name for response metadata")
    tr_p.add_argument(
        "--mode", choices=("intercept", "proxy_execute"), default=None,
        help="Tool loop mode (default: AGENT_RELAY_TOOL_LOOP_MODE)",
    )
    tr_p.add_argument("--tool-server", default=None, help="Base URL of a remote tool server (proxy_execute)")
    tr_p.add_argument("--strict", action="store_true", help="Terminate on any schema validation failure")
    tr_p.add_argument(
        "--boundary", choices=("v1", "legacy"), default=None,
        help="Tool call extraction boundary (default: AGENT_RELAY_PROVIDER_BOUNDARY)",
    )

    # check-args
    ck_p = sub.add_parser("check-args", help="Repair and validate tool call arguments")
    ck_p.add_argument("--tools", required=True, help="JSON file with declared tools")
    ck_p.add_argument("--name", required=True, help="Tool name")
    ck_p.add_argument("--args", required=True, dest="args_json", help="Arguments as JSON")

    # list-tools
    ls_p = sub.add_parser("list-tools", help="Print declared tools in OpenAI function shape")
    ls_p.add_argument("--tools", required=True, help="JSON file with declared tools")

    return parser


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


def _load_json_list(path: Optional[str]) -> list[Any]:
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict) and isinstance(data.get("tools"), list):
        return data["tools"]
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON list")
    return data


async def _cmd_translate(
    input_path: Optional[str] = None,
    output_format: str = "openai",
    tools_path: Optional[str] = None,
    history_path: Optional[str] = None,
    model: Optional[str] = None,
    mode: Optional[str] = None,
    tool_server: Optional[str] = None,
    strict: bool = False,
    boundary_mode: Optional[str] = None,
) -> int:
    """Translate a stream to stdout. Returns exit code (2 when the turn was terminated)."""
    from agent_relay.config import DEFAULT_MODEL, load_settings
    from agent_relay.interception.boundary import create_provider_boundary
    from agent_relay.interception.runtime import ToolLoopContext
    from agent_relay.loop.guard import ToolLoopGuard
    from agent_relay.streaming.openai_chunks import new_response_meta
    from agent_relay.tools.extraction import extract_allowed_tool_names
    from agent_relay.tools.mapper import ToolMapper
    from agent_relay.tools.parameters import build_tool_schema_map
    from agent_relay.tools.router import HttpToolExecutor, ToolRouter
    from agent_relay.translator import AiSdkStreamTranslator, OpenAiStreamTranslator

    settings = load_settings()
    tools = _load_json_list(tools_path)
    history = _load_json_list(history_path)
    meta = new_response_meta(model or DEFAULT_MODEL, settings.provider_id)

    context = None
    if tools:
        allowed = extract_allowed_tool_names(tools)
        loop_mode = mode or settings.tool_loop_mode
        router = None
        if loop_mode == "proxy_execute":
            if not tool_server:
                print("proxy_execute mode requires --tool-server", file=sys.stderr)
                return 1
            router = ToolRouter([HttpToolExecutor(
                tool_server,
                allowed,
                timeout_seconds=settings.tool_timeout_seconds,
                retry_attempts=settings.tool_retry_attempts,
            )])
        context = ToolLoopContext(
            allowed_tool_names=allowed,
            tool_loop_guard=ToolLoopGuard(history, max_repeat=settings.tool_loop_max_repeat),
            tool_loop_mode=loop_mode,
            tool_schema_map=build_tool_schema_map(tools),
            schema_failure_mode="strict" if strict else settings.schema_failure_mode,
            response_meta=meta,
            tool_router=router,
            tool_mapper=ToolMapper() if router else None,
            emit_tool_updates=router is not None,
            on_tool_update=lambda update: logger.info("tool update: %s", update.to_dict()),
        )

    options = dict(
        boundary=create_provider_boundary(boundary_mode or settings.boundary_mode, settings.provider_id),
        auto_fallback_to_legacy=settings.boundary_auto_fallback,
        on_fallback_to_legacy=lambda err: logger.warning("Boundary fallback: %s", err),
    )

    source = open(input_path, "r", encoding="utf-8") if input_path else sys.stdin
    try:
        if output_format == "ai-sdk":
            translator = AiSdkStreamTranslator(context, **options)
            async for part in translator.translate(source):
                sys.stdout.write(json.dumps(part.to_dict(), ensure_ascii=False) + "\n")
        else:
            translator = OpenAiStreamTranslator(meta, context, **options)
            async for frame in translator.iter_sse(source):
                sys.stdout.write(frame)
        sys.stdout.flush()
    finally:
        if input_path:
            source.close()

    if translator.outcome.termination is not None:
        print(translator.outcome.termination.message, file=sys.stderr)
        return 2
    return 0


async def _cmd_check_args(tools_path: str, name: str, args_json: str) -> int:
    """Print repaired arguments and validation. Returns exit code (1 when invalid)."""
    from agent_relay.tools.compat import apply_tool_schema_compat
    from agent_relay.tools.extraction import to_openai_arguments
    from agent_relay.tools.parameters import build_tool_schema_map
    from agent_relay.tools.schemas import OpenAiFunction, OpenAiToolCall

    schema_map = build_tool_schema_map(_load_json_list(tools_path))
    if name not in schema_map:
        print(f"Warning: no schema declared for '{name}'", file=sys.stderr)

    call = OpenAiToolCall(
        id="cli",
        function=OpenAiFunction(name=name, arguments=to_openai_arguments(args_json)),
    )
    result = apply_tool_schema_compat(call, schema_map)

    json.dump(
        {
            "normalized_args": result.normalized_args,
            "validation": result.validation.model_dump(),
            "collision_keys": result.collision_keys,
            "repairs": result.repairs,
        },
        sys.stdout,
        indent=2,
    )
    sys.stdout.write("\n")

    return 0 if result.validation.ok else 1


async def _cmd_list_tools(tools_path: str) -> int:
    """Print declared tools as OpenAI tool definitions. Returns exit code."""
    from agent_relay.tools.parameters import to_openai_tools

    tools = to_openai_tools(_load_json_list(tools_path))
    if not tools:
        print(f"No named tools declared in {tools_path}", file=sys.stderr)
        return 1

    json.dump(tools, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


def main():
    parser = _build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)

    # Load env
    from dotenv import load_dotenv
    load_dotenv()

    # Dispatch
    if args.command == "translate":
        code = asyncio.run(_cmd_translate(
            input_path=args.input,
            output_format=args.output_format,
            tools_path=args.tools,
            history_path=args.history,
            model=args.model,
            mode=args.mode,
            tool_server=args.tool_server,
            strict=args.strict,
            boundary_mode=args.boundary,
        ))
    elif args.command == "check-args":
        code = asyncio.run(_cmd_check_args(
            tools_path=args.tools,
            name=args.name,
            args_json=args.args_json,
        ))
    elif args.command == "list-tools":
        code = asyncio.run(_cmd_list_tools(tools_path=args.tools))
    else:
        parser.print_help()
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()

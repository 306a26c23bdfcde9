"""
Tool execution for proxy-execute mode.

The relay does not implement tools itself. A ToolRouter fronts a chain of
executors; the first executor that claims a tool runs it. Executors turn
their own failures into error results so a broken tool surfaces to the
model as ``Error: ...`` rather than ending the stream.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Literal, Optional, Protocol, Union, runtime_checkable

import httpx
from pydantic import BaseModel
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from agent_relay.config import (
    TOOL_RESULT_MAX_CHARS,
    get_tool_retry_attempts,
    get_tool_retry_max_wait,
    get_tool_retry_min_wait,
    get_tool_timeout_seconds,
)
from agent_relay.serialization import dump_json
from agent_relay.streaming.openai_chunks import ResponseMeta

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


class ToolExecuteResult(BaseModel):
    status: Literal["success", "error"]
    output: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def content(self) -> str:
        """Model-facing text: the output, or ``Error: ...``."""
        if self.ok:
            return self.output or ""
        return f"Error: {self.error or 'unknown'}"


def _stringify_output(value: Any) -> str:
    if isinstance(value, str):
        return value
    return dump_json(value)


# ─────────────────────────────────────────────────────────────────────
# EXECUTORS
# ─────────────────────────────────────────────────────────────────────

@runtime_checkable
class ToolExecutor(Protocol):
    """Anything that can run some set of tools."""

    @property
    def tool_names(self) -> set[str]:
        ...

    def can_execute(self, tool_id: str) -> bool:
        ...

    async def execute(self, tool_id: str, args: dict[str, Any]) -> ToolExecuteResult:
        ...


class LocalToolExecutor:
    """In-process handlers, sync or async, keyed by tool name."""

    def __init__(self, handlers: Optional[dict[str, ToolHandler]] = None):
        self._handlers: dict[str, ToolHandler] = dict(handlers or {})

    def register(self, name: str, handler: ToolHandler) -> None:
        self._handlers[name] = handler

    @property
    def tool_names(self) -> set[str]:
        return set(self._handlers)

    def can_execute(self, tool_id: str) -> bool:
        return tool_id in self._handlers

    async def execute(self, tool_id: str, args: dict[str, Any]) -> ToolExecuteResult:
        handler = self._handlers.get(tool_id)
        if handler is None:
            return ToolExecuteResult(status="error", error=f"Unknown tool {tool_id}")
        try:
            output = handler(args)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            logger.warning("Local tool %s failed: %s", tool_id, e)
            return ToolExecuteResult(status="error", error=str(e))
        return ToolExecuteResult(status="success", output=_stringify_output(output))


def is_retryable_error(exception: BaseException) -> bool:
    """Transient transport failures and gateway errors are worth retrying."""
    if isinstance(exception, (httpx.ConnectError, httpx.TimeoutException, httpx.RemoteProtocolError)):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in (502, 503, 504)
    return False


class HttpToolExecutor:
    """
    Runs tools on a remote tool server.

    POSTs ``{"tool": <id>, "args": {...}}`` to ``{base_url}/tools/<id>`` and
    expects ``{"output": ...}`` or ``{"error": ...}`` back.
    """

    def __init__(
        self,
        base_url: str,
        tool_names: set[str],
        timeout_seconds: Optional[float] = None,
        retry_attempts: Optional[int] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._tool_names = set(tool_names)
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else get_tool_timeout_seconds()
        self.retry_attempts = retry_attempts if retry_attempts is not None else get_tool_retry_attempts()

    @property
    def tool_names(self) -> set[str]:
        return set(self._tool_names)

    def can_execute(self, tool_id: str) -> bool:
        return tool_id in self._tool_names

    async def _post(self, tool_id: str, args: dict[str, Any]) -> dict[str, Any]:
        @retry(
            stop=stop_after_attempt(max(1, self.retry_attempts)),
            wait=wait_exponential(multiplier=1, min=get_tool_retry_min_wait(), max=get_tool_retry_max_wait()),
            retry=retry_if_exception(is_retryable_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def post_with_retry() -> dict[str, Any]:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.base_url}/tools/{tool_id}",
                    json={"tool": tool_id, "args": args},
                )
                response.raise_for_status()
                body = response.json()
                return body if isinstance(body, dict) else {"output": body}

        return await post_with_retry()

    async def execute(self, tool_id: str, args: dict[str, Any]) -> ToolExecuteResult:
        try:
            body = await self._post(tool_id, args)
        except httpx.HTTPStatusError as e:
            logger.warning("Remote tool %s returned %d", tool_id, e.response.status_code)
            return ToolExecuteResult(
                status="error",
                error=f"HTTP {e.response.status_code}: {e.response.text[:200]}",
            )
        except httpx.HTTPError as e:
            logger.warning("Remote tool %s unreachable: %s", tool_id, e)
            return ToolExecuteResult(status="error", error=f"{type(e).__name__}: {e}")
        except ValueError as e:
            return ToolExecuteResult(status="error", error=f"Invalid response: {e}")

        if body.get("error"):
            return ToolExecuteResult(status="error", error=_stringify_output(body["error"]))
        return ToolExecuteResult(status="success", output=_stringify_output(body.get("output", "")))


async def execute_with_chain(
    executors: list[ToolExecutor],
    tool_id: str,
    args: dict[str, Any],
) -> ToolExecuteResult:
    """Run with the first executor that claims ``tool_id``."""
    for executor in executors:
        if not executor.can_execute(tool_id):
            continue
        try:
            return await executor.execute(tool_id, args)
        except Exception as e:
            logger.warning("Executor %s raised for %s: %s", type(executor).__name__, tool_id, e)
            return ToolExecuteResult(status="error", error=str(e))
    return ToolExecuteResult(status="error", error=f"No executor available for {tool_id}")


# ─────────────────────────────────────────────────────────────────────
# ROUTER
# ─────────────────────────────────────────────────────────────────────

class ToolRouter:
    def __init__(self, executors: Optional[list[ToolExecutor]] = None):
        self.executors: list[ToolExecutor] = list(executors or [])

    @property
    def tool_names(self) -> set[str]:
        names: set[str] = set()
        for executor in self.executors:
            names |= executor.tool_names
        return names

    async def execute(self, tool_name: str, args: dict[str, Any]) -> ToolExecuteResult:
        return await execute_with_chain(self.executors, tool_name, args)

    def build_result_chunk(
        self,
        meta: ResponseMeta,
        call_id: str,
        tool_name: str,
        result: ToolExecuteResult,
    ) -> dict[str, Any]:
        """Assistant tool_calls chunk carrying ``{"result": <content>}`` as arguments."""
        content = result.content()[:TOOL_RESULT_MAX_CHARS]
        return {
            "id": meta.id,
            "object": "chat.completion.chunk",
            "created": meta.created,
            "model": meta.model,
            "choices": [
                {
                    "index": 0,
                    "delta": {
                        "role": "assistant",
                        "tool_calls": [
                            {
                                "id": call_id,
                                "type": "function",
                                "function": {
                                    "name": tool_name,
                                    "arguments": dump_json({"result": content}),
                                },
                            }
                        ],
                    },
                    "finish_reason": None,
                }
            ],
        }

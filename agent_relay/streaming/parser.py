"""
NDJSON line parsing for the upstream agent stream.

Malformed lines are dropped rather than raised: the agent occasionally
interleaves non-JSON diagnostics with its event stream.
"""

import codecs
import json
import logging
from typing import Iterable, Iterator, Optional, Union

from pydantic import TypeAdapter, ValidationError

from agent_relay.streaming.events import StreamEvent

logger = logging.getLogger(__name__)

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(StreamEvent)


def parse_stream_json_line(line: str) -> Optional[StreamEvent]:
    """
    Parse one line into a typed event.

    Returns None for blank lines, invalid JSON, non-object roots, unknown
    event types and shapes that fail validation. Never raises.
    """
    trimmed = line.strip()
    if not trimmed:
        return None

    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON line: %.80s", trimmed)
        return None

    if not isinstance(data, dict):
        return None

    try:
        return _EVENT_ADAPTER.validate_python(data)
    except ValidationError as e:
        logger.debug("Skipping unrecognized event (%s): %s", data.get("type"), e.error_count())
        return None


def iter_stream_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    for line in lines:
        event = parse_stream_json_line(line)
        if event is not None:
            yield event


class NdjsonLineBuffer:
    """Reassembles complete lines from arbitrarily split stdout chunks."""

    def __init__(self) -> None:
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: Union[str, bytes]) -> list[str]:
        """Add a chunk; return every line it completed (without newlines)."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._pending += chunk
        *complete, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in complete]

    def flush(self) -> list[str]:
        """Return the trailing partial line, if any, and reset."""
        self._pending += self._decoder.decode(b"", final=True)
        remainder, self._pending = self._pending, ""
        return [remainder] if remainder.strip() else []

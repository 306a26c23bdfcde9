"""
Heuristic classification of tool-result text.

Whether a tool result "looks like" a failure is decided by marker
substrings, which misfires on results that merely mention the words.
The classifier is injected into ToolLoopGuard so callers with better
signal (structured results, exit codes) can replace it.
"""

import json
from typing import Any, Protocol, runtime_checkable


VALIDATION = "validation"
TIMEOUT = "timeout"
NOT_FOUND = "not_found"
PERMISSION = "permission"
EXECUTION = "execution"

ERROR_MARKERS = (
    "error",
    "invalid",
    "missing",
    "failed",
    "failure",
    "exception",
    "timeout",
    "timed out",
    "not found",
    "denied",
    "required",
)

# Checked in order; first hit wins.
CLASS_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (VALIDATION, ("invalid", "missing", "required", "schema", "argument")),
    (TIMEOUT, ("timeout", "timed out")),
    (NOT_FOUND, ("not found", "no such file", "enoent")),
    (PERMISSION, ("denied", "permission", "eacces")),
)


def message_text(content: Any) -> str:
    """Flatten chat message content (string or list of parts) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces = []
        for part in content:
            if isinstance(part, str):
                pieces.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                pieces.append(part["text"])
        return "".join(pieces)
    return json.dumps(content)


@runtime_checkable
class ResultClassifier(Protocol):
    def looks_like_error(self, content: str) -> bool:
        ...

    def classify(self, content: str) -> str:
        ...


class SubstringResultClassifier:
    """Default marker-substring classifier."""

    def _structured_verdict(self, content: str):
        try:
            payload = json.loads(content)
        except (json.JSONDecodeError, TypeError):
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("success") is True or payload.get("ok") is True:
            return False
        if payload.get("status") in ("success", "ok", "completed"):
            return False
        if payload.get("success") is False or payload.get("error"):
            return True
        return None

    def looks_like_error(self, content: str) -> bool:
        if not content or not content.strip():
            return False
        verdict = self._structured_verdict(content)
        if verdict is not None:
            return verdict
        lowered = content.lower()
        return any(marker in lowered for marker in ERROR_MARKERS)

    def classify(self, content: str) -> str:
        lowered = content.lower()
        for error_class, markers in CLASS_MARKERS:
            if any(marker in lowered for marker in markers):
                return error_class
        return EXECUTION

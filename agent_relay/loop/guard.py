"""
Repeated tool-failure detection.

A fingerprint groups failures by ``tool|error_class`` and ignores argument
values, so cosmetically different malformed payloads for the same defect
share one counter. The guard is session scoped: it is constructed from the
conversation history (which seeds prior failure counts) and is then fed
every tool call of the turn. Once a counter exceeds ``max_repeat`` the
caller ends the turn instead of letting the model retry forever.
"""

import json
import logging
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel

from agent_relay.config import DEFAULT_TOOL_LOOP_MAX_REPEAT, get_tool_loop_max_repeat
from agent_relay.loop.classifier import (
    VALIDATION,
    ResultClassifier,
    SubstringResultClassifier,
    message_text,
)
from agent_relay.tools.extraction import normalize_alias_key
from agent_relay.tools.schemas import OpenAiToolCall

logger = logging.getLogger(__name__)

ValidationSeed = Callable[[str, dict[str, Any]], bool]


class MaxRepeatSetting(BaseModel):
    value: int
    valid: bool


class LoopGuardDecision(BaseModel):
    """Result of one guard evaluation.

    ``tracked`` is False when the call's associated result looked
    successful (or there was none); nothing was counted in that case.
    """

    triggered: bool = False
    repeat_count: int = 0
    fingerprint: Optional[str] = None
    error_class: Optional[str] = None
    tracked: bool = False
    max_repeat: int = DEFAULT_TOOL_LOOP_MAX_REPEAT


def parse_tool_loop_max_repeat(raw: Any) -> MaxRepeatSetting:
    """
    Parse a configured max-repeat value.

    Unset gives the default as valid; zero, negative or non-numeric
    values give the default flagged invalid.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return MaxRepeatSetting(value=DEFAULT_TOOL_LOOP_MAX_REPEAT, valid=True)
    try:
        value = int(str(raw).strip())
    except ValueError:
        return MaxRepeatSetting(value=DEFAULT_TOOL_LOOP_MAX_REPEAT, valid=False)
    if value <= 0:
        return MaxRepeatSetting(value=DEFAULT_TOOL_LOOP_MAX_REPEAT, valid=False)
    return MaxRepeatSetting(value=value, valid=True)


def build_fingerprint(tool_name: str, error_class: str) -> str:
    return f"{tool_name}|{error_class}"


def _arguments_dict(arguments: Any) -> dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str):
        try:
            parsed = json.loads(arguments)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def looks_like_malformed_edit(tool_name: str, args: dict[str, Any]) -> bool:
    """An edit that sent a full-file payload instead of old/new strings."""
    if normalize_alias_key(tool_name) != "edit":
        return False
    has_payload = "content" in args or "streamContent" in args
    return has_payload and "old_string" not in args and "new_string" not in args


class ToolLoopGuard:
    """Fingerprint counters for one conversation session.

    Not thread-safe; one writer per session.
    """

    def __init__(
        self,
        history: Optional[Iterable[dict[str, Any]]] = None,
        max_repeat: int = DEFAULT_TOOL_LOOP_MAX_REPEAT,
        classifier: Optional[ResultClassifier] = None,
        validation_seed: Optional[ValidationSeed] = looks_like_malformed_edit,
    ):
        self.max_repeat = max_repeat
        self.classifier = classifier or SubstringResultClassifier()
        self.validation_seed = validation_seed
        self._counts: dict[str, int] = {}
        self._results_by_id: dict[str, str] = {}
        self._latest_result: Optional[str] = None
        self._seed(list(history or []))

    # ─────────────────────────────────────────────────────────────────
    # SEEDING
    # ─────────────────────────────────────────────────────────────────

    def _seed(self, history: list[dict[str, Any]]) -> None:
        calls: dict[str, tuple[str, dict[str, Any]]] = {}
        answered: set[str] = set()

        for message in history:
            if not isinstance(message, dict):
                continue
            role = message.get("role")

            if role == "assistant":
                for call in message.get("tool_calls") or []:
                    if not isinstance(call, dict):
                        continue
                    fn = call.get("function") or {}
                    name = fn.get("name")
                    if isinstance(call.get("id"), str) and isinstance(name, str):
                        calls[call["id"]] = (name, _arguments_dict(fn.get("arguments")))

            elif role == "tool":
                content = message_text(message.get("content"))
                call_id = message.get("tool_call_id")
                self._latest_result = content
                if not isinstance(call_id, str):
                    continue
                self._results_by_id[call_id] = content
                paired = calls.get(call_id)
                if paired is None:
                    continue
                answered.add(call_id)
                if self.classifier.looks_like_error(content):
                    self._increment(build_fingerprint(paired[0], self.classifier.classify(content)))

        if self.validation_seed is None:
            return
        for call_id, (name, args) in calls.items():
            if call_id not in answered and self.validation_seed(name, args):
                self._increment(build_fingerprint(name, VALIDATION))

        if self._counts:
            logger.debug("Seeded loop guard: %s", self._counts)

    # ─────────────────────────────────────────────────────────────────
    # COUNTERS
    # ─────────────────────────────────────────────────────────────────

    def _increment(self, fingerprint: str) -> int:
        self._counts[fingerprint] = self._counts.get(fingerprint, 0) + 1
        return self._counts[fingerprint]

    def _decide(self, fingerprint: str, error_class: str) -> LoopGuardDecision:
        count = self._increment(fingerprint)
        triggered = count > self.max_repeat
        if triggered:
            logger.info("Loop guard triggered for %s (%d > %d)", fingerprint, count, self.max_repeat)
        return LoopGuardDecision(
            triggered=triggered,
            repeat_count=count,
            fingerprint=fingerprint,
            error_class=error_class,
            tracked=True,
            max_repeat=self.max_repeat,
        )

    def count(self, fingerprint: str) -> int:
        return self._counts.get(fingerprint, 0)

    @property
    def counts(self) -> dict[str, int]:
        return dict(self._counts)

    def reset_fingerprint(self, fingerprint: str) -> None:
        self._counts[fingerprint] = 0

    # ─────────────────────────────────────────────────────────────────
    # EVALUATION
    # ─────────────────────────────────────────────────────────────────

    def result_for(self, call_id: str) -> Optional[str]:
        """Result recorded for the call, else the latest result seen."""
        return self._results_by_id.get(call_id, self._latest_result)

    def evaluate(self, call: OpenAiToolCall) -> LoopGuardDecision:
        content = self.result_for(call.id)
        if content is None or not self.classifier.looks_like_error(content):
            return LoopGuardDecision(tracked=False, max_repeat=self.max_repeat)
        error_class = self.classifier.classify(content)
        return self._decide(build_fingerprint(call.function.name, error_class), error_class)

    def evaluate_validation(self, call: OpenAiToolCall, signature: str) -> LoopGuardDecision:
        logger.debug("Validation failure for %s (%s): %s", call.function.name, call.id, signature)
        return self._decide(build_fingerprint(call.function.name, VALIDATION), VALIDATION)

    def observe_result(self, call_id: str, content: str) -> None:
        """Record a tool result produced during this turn."""
        self._results_by_id[call_id] = content
        self._latest_result = content


def create_tool_loop_guard(
    history: Optional[Iterable[dict[str, Any]]] = None,
    max_repeat: Optional[int] = None,
    classifier: Optional[ResultClassifier] = None,
) -> ToolLoopGuard:
    """Guard with the configured threshold when ``max_repeat`` is not given."""
    if max_repeat is None:
        max_repeat = get_tool_loop_max_repeat()
    return ToolLoopGuard(history=history, max_repeat=max_repeat, classifier=classifier)

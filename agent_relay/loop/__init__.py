"""
Loop guard for repeated tool-call failures.
"""

from agent_relay.loop.classifier import ResultClassifier, SubstringResultClassifier
from agent_relay.loop.guard import (
    LoopGuardDecision,
    MaxRepeatSetting,
    ToolLoopGuard,
    build_fingerprint,
    create_tool_loop_guard,
    parse_tool_loop_max_repeat,
)

__all__ = [
    "ResultClassifier",
    "SubstringResultClassifier",
    "LoopGuardDecision",
    "MaxRepeatSetting",
    "ToolLoopGuard",
    "build_fingerprint",
    "create_tool_loop_guard",
    "parse_tool_loop_max_repeat",
]

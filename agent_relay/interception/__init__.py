"""
Tool-call interception: extraction boundaries and the per-event decision.

Protocol defines WHAT a boundary extracts, implementations define HOW.
"""

from agent_relay.interception.boundary import (
    BoundaryExtractionError,
    LegacyBoundary,
    ToolCallBoundary,
    V1Boundary,
    create_provider_boundary,
)
from agent_relay.interception.runtime import (
    InterceptionDecision,
    Termination,
    ToolCallInterceptor,
    ToolLoopContext,
    handle_tool_loop_event_legacy,
    handle_tool_loop_event_v1,
    handle_tool_loop_event_with_fallback,
)

__all__ = [
    "BoundaryExtractionError",
    "LegacyBoundary",
    "ToolCallBoundary",
    "V1Boundary",
    "create_provider_boundary",
    "InterceptionDecision",
    "Termination",
    "ToolCallInterceptor",
    "ToolLoopContext",
    "handle_tool_loop_event_legacy",
    "handle_tool_loop_event_v1",
    "handle_tool_loop_event_with_fallback",
]

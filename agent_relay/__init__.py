"""
agent-relay: streaming translator and tool-call reconciliation.

Turns the NDJSON stream of a coding-agent process into OpenAI-compatible
chat completion chunks and AI-SDK stream parts, repairing tool-call
arguments against caller-declared schemas and halting repeated failures.
"""

__version__ = "0.1.0"

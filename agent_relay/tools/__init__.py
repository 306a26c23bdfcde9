"""
Tool-call extraction, schema reconciliation and execution.
"""

"""
Snapshot-to-delta conversion.

The agent re-sends the whole accumulated assistant text on every event.
Downstream consumers expect append-only deltas, so each stream keeps the
last snapshot it saw and emits only what was appended since.
"""


def diff_snapshot(previous: str, current: str) -> str:
    """Suffix of ``current`` past ``previous``; the full snapshot if they diverged."""
    if not previous:
        return current
    if current.startswith(previous):
        return current[len(previous):]
    return current


class DeltaTracker:
    """Independent text and thinking baselines for one logical stream."""

    def __init__(self) -> None:
        self._text = ""
        self._thinking = ""

    def next_text(self, snapshot: str) -> str:
        delta = diff_snapshot(self._text, snapshot)
        self._text = snapshot
        return delta

    def next_thinking(self, snapshot: str) -> str:
        delta = diff_snapshot(self._thinking, snapshot)
        self._thinking = snapshot
        return delta

    def reset(self) -> None:
        self._text = ""
        self._thinking = ""

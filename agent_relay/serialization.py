"""Compact JSON encoding shared by the wire builders."""

import json
from typing import Any


def dump_json(value: Any) -> str:
    """Serialize without whitespace, keeping non-ASCII text as-is."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)

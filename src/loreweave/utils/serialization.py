from __future__ import annotations

import json
import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def make_json_safe(value: Any) -> Any:
    """Convert arbitrary Python objects into JSON-serializable structures.

    Unknown objects fall back to `str(value)`; sets are sorted so that
    cache keys built from them are stable.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value

    if isinstance(value, Enum):
        return value.value

    if isinstance(value, datetime):
        return value.isoformat()

    if isinstance(value, BaseModel):
        return make_json_safe(value.model_dump(mode="json"))

    if isinstance(value, dict):
        return {str(k): make_json_safe(v) for k, v in value.items()}

    if isinstance(value, (set, frozenset)):
        return sorted((make_json_safe(v) for v in value), key=str)

    if isinstance(value, (list, tuple)):
        return [make_json_safe(v) for v in value]

    return str(value)


def json_dumps_safe(value: Any, *, sort_keys: bool = True) -> str:
    """`json.dumps` that won't fail on non-serializable input."""
    return json.dumps(make_json_safe(value), ensure_ascii=False, sort_keys=sort_keys)


def json_loads_dict(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    try:
        loaded = json.loads(value)
        return loaded if isinstance(loaded, dict) else {}
    except (json.JSONDecodeError, TypeError, ValueError):
        return {}


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Pull the first JSON object out of a model reply.

    Handles fenced code blocks and leading/trailing prose. Returns None when
    nothing parseable is found.
    """
    if not text:
        return None
    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else text
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    loaded = json_loads_dict(candidate[start : end + 1])
    return loaded or None

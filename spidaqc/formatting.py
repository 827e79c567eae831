"""formatting.py – string coercion and display helpers shared by every module."""

from __future__ import annotations

import json
import math
from typing import Any


def safe_display_value(value: Any) -> str:
    """Coerce any JSON value to a string.

    SPIDA exports sometimes carry objects where strings are expected
    (owner ids, descriptions, sizes).  ``None`` becomes ``""``, lists are
    comma-joined element by element, dicts are JSON-stringified.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(safe_display_value(v) for v in value)
    if isinstance(value, dict):
        try:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def lower_text(value: Any) -> str:
    return safe_display_value(value).lower()


def to_float(value: Any) -> float | None:
    """Best-effort float conversion; ``None`` when the value is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def meters_to_feet_inches(meters: float) -> str:
    """Convert metres to a feet/inches label such as ``15' 6"``."""
    total_feet = meters * 3.28084
    feet = math.floor(total_feet)
    inches = math.floor((total_feet - feet) * 12 + 0.5)
    if inches == 12:
        return f"{feet + 1}' 0\""
    return f"{feet}' {inches}\""

from __future__ import annotations

import math
from typing import Any


def clean_str(value: Any) -> str:
    """Form values arrive as str or None; anything else is stringified."""
    if value is None:
        return ""
    return str(value).strip()


def safe_float(value: Any, default: float) -> float:
    """Float conversion that never raises; NaN/inf and garbage fall back to default."""
    s = clean_str(value)
    if not s:
        return default
    try:
        f = float(s)
    except (ValueError, TypeError, OverflowError):
        return default
    if not math.isfinite(f):
        return default
    return f


def safe_int(value: Any, default: int) -> int:
    """Integer conversion that never raises.

    Terminals sometimes send integral fields as "1.0", so floats with no
    fractional part are accepted; anything else falls back to default.
    """
    s = clean_str(value)
    if not s:
        return default
    try:
        return int(s)
    except (ValueError, TypeError):
        pass
    f = safe_float(s, math.nan)
    if math.isnan(f) or not f.is_integer():
        return default
    return int(f)

"""Environment parsing helpers for consistent string/numeric handling. [IV]"""
from __future__ import annotations

import os
from typing import Optional


def _clean(raw: Optional[str]) -> Optional[str]:
    """Strip inline comments and whitespace from a raw env value."""
    if raw is None:
        return None
    value = raw.split("#", 1)[0].strip()
    return value or None


def get_str(name: str, default: str = "") -> str:
    value = _clean(os.getenv(name))
    return value if value is not None else default


def get_float(name: str, default: float) -> float:
    """Parse a float env var; unparseable values fall back to the default."""
    raw = _clean(os.getenv(name))
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default

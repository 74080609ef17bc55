from __future__ import annotations

import math
from datetime import date

from flask import g

from app.arsd.models import User


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def parse_iso_date(value: str | None) -> date | None:
    v = (value or "").strip()
    if not v:
        return None
    try:
        return date.fromisoformat(v[:10])
    except ValueError:
        return None


def parse_int(value: str | None) -> int | None:
    v = (value or "").strip() if isinstance(value, str) else value
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def parse_float(value, default: float | None = None) -> float | None:
    """Lenient number parsing for form/JSON input ("1,250.5" → 1250.5)."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else default
    v = str(value).replace(",", "").strip()
    if not v:
        return default
    try:
        f = float(v)
    except ValueError:
        return default
    return f if math.isfinite(f) else default


def clean_str(value) -> str | None:
    v = (value or "").strip() if isinstance(value, str) else value
    return v or None

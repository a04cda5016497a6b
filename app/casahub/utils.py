from __future__ import annotations

import math
import re
from datetime import date, datetime, time

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def clean_str(value: str | None) -> str | None:
    """Strip form input; empty becomes None."""
    return (value or "").strip() or None


def parse_number(raw: str | None, label: str, errors: list[str], *, integer: bool = False) -> float | int | None:
    """
    Parse an optional numeric form field. Blank gives None; garbage records an
    error and gives None.
    """
    v = (raw or "").strip().replace(",", ".")
    if not v:
        return None
    try:
        n = int(v) if integer else float(v)
    except ValueError:
        errors.append(f"{label} must be {'a whole number' if integer else 'a number'}.")
        return None
    # float() also accepts "nan", "inf" and overflowing exponents.
    if not math.isfinite(n):
        errors.append(f"{label} must be a finite number.")
        return None
    return n


def parse_int_id(raw: str | None) -> int | None:
    v = (raw or "").strip()
    if not v:
        return None
    try:
        return int(v)
    except ValueError:
        return None


def parse_datetime(raw: str | None, label: str, errors: list[str]) -> datetime | None:
    """Accepts ``YYYY-MM-DD`` (read as midnight) or an HTML datetime-local value."""
    v = (raw or "").strip()
    if not v:
        return None
    try:
        if len(v) == 10:
            return datetime.combine(date.fromisoformat(v), time.min)
        return datetime.fromisoformat(v)
    except ValueError:
        errors.append(f"{label} must be a date (YYYY-MM-DD).")
        return None


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def is_valid_url(url: str) -> bool:
    return (url or "").startswith(("http://", "https://")) and " " not in url

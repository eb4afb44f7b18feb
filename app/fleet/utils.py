from __future__ import annotations

import math
import re
import time
from datetime import date
from decimal import Decimal, InvalidOperation

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
AU_PHONE_RE = re.compile(r"^(\+61|0)[2-478](\s?\d{4}\s?\d{4}|\d{8})$")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string. Raises ValueError on malformed input."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def is_valid_date(s: str | None) -> bool:
    try:
        parse_date(s)
    except ValueError:
        return False
    return True


def parse_int(value, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_decimal(value) -> Decimal | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid number: {value}") from e
    if not d.is_finite():
        raise ValueError(f"Invalid number: {value}")
    return d


def parse_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def clean_str(value) -> str | None:
    """Strip a form/JSON value, mapping blanks to None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def is_valid_au_phone(phone: str) -> bool:
    return bool(AU_PHONE_RE.match(phone or ""))


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", filename or "") or "file"


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def page_window(page, limit, *, default_limit: int = 10, max_limit: int = 100) -> tuple[int, int, int]:
    """Normalize page/limit query params. Returns (page, limit, offset)."""
    page = max(parse_int(page, 1) or 1, 1)
    limit = parse_int(limit, default_limit) or default_limit
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0

"""
Scalar coercion helpers for untrusted extraction output.

Every function here is total: malformed input yields a fallback value,
never an exception.  The normalizer, ledger and stats code all lean on
these so they can treat OCR / LLM payloads as "shape we will coerce".
"""
import math
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from models.schemas import CATEGORIES

# After cleaning, only digits , . - remain; read the longest leading decimal
# the same way a browser's parseFloat would ("1.2.3" → 1.2, "12-3" → 12).
_NUMBER_PREFIX_RE = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)")
_NUMBER_STRIP_RE = re.compile(r"[^0-9,.\-]")
_DMY_RE = re.compile(r"(\d{2})[./-](\d{2})[./-](\d{4})")


def create_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return format_instant(datetime.now(timezone.utc))


def format_instant(value: datetime) -> str:
    """Render as `YYYY-MM-DDTHH:MM:SS.mmmZ`; naive datetimes are local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def safe_string(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return str(value)
    return ""


def to_number(value: Any, fallback: float = 0.0) -> float:
    """
    Coerce a number-ish value to float.

    Numbers pass through when finite.  Strings are cleaned down to digits,
    commas, dots and minus signs; the first comma is treated as the decimal
    separator ("12,50 Kč" → 12.5).  Anything that does not yield a finite
    number returns `fallback`.
    """
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return fallback
        return number if math.isfinite(number) else fallback
    if isinstance(value, str):
        cleaned = _NUMBER_STRIP_RE.sub("", value).replace(",", ".", 1)
        m = _NUMBER_PREFIX_RE.match(cleaned)
        if m:
            try:
                number = float(m.group(0))
            except ValueError:
                return fallback
            if math.isfinite(number):
                return number
    return fallback


def parse_date(value: Any) -> Optional[str]:
    """
    Parse a purchase date into a UTC instant string, or None.

    ISO-8601 strings are taken as-is (a bare date or a date-time without an
    offset means local time).  Otherwise the first DD.MM.YYYY / DD-MM-YYYY /
    DD/MM/YYYY occurrence is read as local midnight.
    """
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    try:
        parsed: Optional[datetime] = datetime.fromisoformat(trimmed)
    except ValueError:
        parsed = None
    if parsed is None:
        m = _DMY_RE.search(trimmed)
        if not m:
            return None
        day, month, year = m.groups()
        try:
            parsed = datetime(int(year), int(month), int(day))
        except ValueError:
            return None
    try:
        return format_instant(parsed)
    except (ValueError, OverflowError, OSError):
        return None


def parse_instant(value: Any) -> Optional[datetime]:
    """Read a stored instant back as an aware datetime."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        try:
            parsed = parsed.astimezone()
        except (ValueError, OverflowError, OSError):
            return None
    return parsed


def is_category(value: Any) -> bool:
    return isinstance(value, str) and value in CATEGORIES

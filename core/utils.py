"""
General utility functions.

Provides clock helpers, text sanitization, and validation functions.
"""
from __future__ import annotations

import datetime as dt
import re
from typing import Any, Optional

UTC = dt.timezone.utc

CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
MENTION_RE = re.compile(r"^<(?:@!?|@&|#)(\d+)>$")
CLOCK_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

MS_PER_SECOND = 1000
MS_PER_DAY = 24 * 60 * 60 * 1000


def utcnow() -> dt.datetime:
    return dt.datetime.now(tz=UTC)


def now_ms() -> int:
    return int(utcnow().timestamp() * MS_PER_SECOND)


def ms_from_days(days: int) -> int:
    return int(days) * MS_PER_DAY


def dt_to_ms(value: dt.datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * MS_PER_SECOND)


def ms_to_iso(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    stamp = dt.datetime.fromtimestamp(value / MS_PER_SECOND, tz=UTC).replace(microsecond=0)
    return stamp.isoformat().replace("+00:00", "Z")


def sanitize_text(text: Any, max_len: int = 1500) -> str:
    if text is None:
        return ""
    text = str(text)
    text = CONTROL_RE.sub("", text)
    text = text.replace("@", "@\u200b")
    if len(text) > max_len:
        text = text[: max_len - 3] + "..."
    return text


def is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_valid_id(value: Any) -> bool:
    return is_int(value) and 1 <= value <= 2**63 - 1


def safe_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            try:
                return int(stripped)
            except ValueError:
                return default
    return default


def parse_snowflake(value: Optional[str]) -> Optional[int]:
    """Parse a raw id or a user/role/channel mention into an id."""
    if not value:
        return None
    value = value.strip()
    match = MENTION_RE.match(value)
    if match:
        value = match.group(1)
    parsed = safe_int(value)
    if parsed is None or not is_valid_id(parsed):
        return None
    return parsed


def parse_clock(value: str) -> dt.time:
    """Parse ``HH:MM`` into a time of day."""
    match = CLOCK_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")
    return dt.time(int(match.group(1)), int(match.group(2)))


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))

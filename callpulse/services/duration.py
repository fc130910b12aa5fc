"""
Duration parsing for heterogeneous spreadsheet time cells.

Call exports mix several encodings for the same quantity: "02:35", "1:02:35",
"155", "155s", "2.5m", "2,5". parse_duration() turns all of them into integer
seconds and never raises.

Shapes, tried in order:
1. HH:MM:SS or MM:SS -> weighted sum
2. <n>s / <n>m suffix -> seconds or minutes * 60
3. Bare integer -> seconds
4. Decimal ("3.5" or "3,5") -> minutes, rounded half-up to whole seconds

Empty input and anything unrecognized yield 0. Negative values clamp to 0.
Values above 24h pass through; DataQualityAuditor flags them.
"""

import math
import re
from typing import Optional

# Shape labels returned by detect_duration_format
FORMAT_HMS = 'hh:mm:ss'
FORMAT_MS = 'mm:ss'
FORMAT_SUFFIX = 'suffix'
FORMAT_SECONDS = 'seconds'
FORMAT_DECIMAL = 'decimal'

SECONDS_PER_DAY = 24 * 3600

_SIGNED_INT = re.compile(r'^-?\d+$')
_UNSIGNED_INT = re.compile(r'^\d+$')
_SUFFIX = re.compile(r'^(-?\d+(?:[.,]\d+)?)\s*([sm])$')
_DECIMAL = re.compile(r'^-?\d*[.,]\d+$')


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _to_float(text: str) -> float:
    return float(text.replace(',', '.'))


def _clean(raw: Optional[str]) -> str:
    if raw is None:
        return ''
    return str(raw).strip().lower()


def _colon_parts(text: str) -> Optional[list]:
    parts = text.split(':')
    if len(parts) not in (2, 3):
        return None
    if not _SIGNED_INT.match(parts[0]):
        return None
    if not all(_UNSIGNED_INT.match(p) for p in parts[1:]):
        return None
    return [int(p) for p in parts]


def detect_duration_format(raw: Optional[str]) -> Optional[str]:
    """
    Name the shape of a duration string.

    Returns:
        One of 'hh:mm:ss', 'mm:ss', 'suffix', 'seconds', 'decimal', or None
        when the value is empty or unrecognized.
    """
    text = _clean(raw)
    if not text:
        return None
    if ':' in text:
        parts = _colon_parts(text)
        if parts is None:
            return None
        return FORMAT_HMS if len(parts) == 3 else FORMAT_MS
    if _SUFFIX.match(text):
        return FORMAT_SUFFIX
    if _SIGNED_INT.match(text):
        return FORMAT_SECONDS
    if _DECIMAL.match(text):
        return FORMAT_DECIMAL
    return None


def parse_duration(raw: Optional[str]) -> int:
    """
    Convert a duration or time-of-day string into whole seconds.

    Total function: unparseable input returns 0 instead of raising.

    Examples:
        >>> parse_duration("02:35")
        155
        >>> parse_duration("1:02:35")
        3755
        >>> parse_duration("3.5")
        210
        >>> parse_duration("45s")
        45
        >>> parse_duration("-12")
        0
    """
    text = _clean(raw)
    shape = detect_duration_format(text)

    if shape is None:
        return 0

    if shape in (FORMAT_HMS, FORMAT_MS):
        parts = _colon_parts(text)
        if shape == FORMAT_HMS:
            hours, minutes, seconds = parts
            total = hours * 3600 + (minutes * 60 + seconds) * (-1 if hours < 0 else 1)
        else:
            minutes, seconds = parts
            total = minutes * 60 + seconds * (-1 if minutes < 0 else 1)
        return max(0, total)

    if shape == FORMAT_SUFFIX:
        match = _SUFFIX.match(text)
        number = _to_float(match.group(1))
        seconds = number * 60 if match.group(2) == 'm' else number
        return max(0, _round_half_up(seconds))

    if shape == FORMAT_SECONDS:
        return max(0, int(text))

    # FORMAT_DECIMAL: minutes
    return max(0, _round_half_up(_to_float(text) * 60))


def format_duration(seconds: int) -> str:
    """
    Render seconds as M:SS below one hour and H:MM:SS otherwise.

    parse_duration(format_duration(s)) == s for every non-negative s.
    """
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"

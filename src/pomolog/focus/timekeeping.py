"""Pure time arithmetic for timer sessions.

Every function takes ``now`` explicitly; nothing here reads the system clock.
Elapsed time is always derived from absolute timestamps so that a host which
stops calling back (suspended, backgrounded) gets the right answer on the
next call.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta


def elapsed_seconds(start: datetime, now: datetime) -> int:
    """Whole seconds between ``start`` and ``now`` (never negative)."""
    return max(0, math.floor((now - start).total_seconds()))


def remaining_seconds(elapsed: int, target: int) -> int:
    return max(0, target - elapsed)


def is_overtime(elapsed: int, target: int) -> bool:
    return elapsed > target


def overtime_seconds(elapsed: int, target: int) -> int:
    return max(0, elapsed - target)


def exceeds_overtime_allowance(elapsed: int, target: int, allowance_minutes: int) -> bool:
    """True when overtime has run past the configured allowance."""
    return overtime_seconds(elapsed, target) > allowance_minutes * 60


def progress_percent(elapsed: int, target: int) -> float:
    """Progress through a session (0-100)."""
    if target <= 0:
        return 0.0
    return min(100.0, max(0.0, (elapsed / target) * 100))


def minutes_to_seconds(minutes: float) -> int:
    return int(round(minutes * 60))


def seconds_to_minutes(seconds: int) -> float:
    return round(seconds / 60, 2)


def shift(moment: datetime, seconds: float) -> datetime:
    """Move a timestamp by ``seconds`` (negative moves it back)."""
    return moment + timedelta(seconds=seconds)


def validate_time_input(minutes: float, minimum: float = 1, maximum: float = 180) -> bool:
    """Check a minutes value is a finite number within [minimum, maximum]."""
    if isinstance(minutes, bool) or not isinstance(minutes, (int, float)):
        return False
    if math.isnan(minutes) or math.isinf(minutes):
        return False
    return minimum <= minutes <= maximum


def format_time(seconds: int, style: str = "mm:ss") -> str:
    """Format a number of seconds for display.

    Styles:
        mm:ss     total minutes and seconds ("90:05")
        hh:mm:ss  zero-padded hours, minutes, seconds
        minimal   "1h 30m", "4m 5s", "9s"
        verbose   "1 hour, 30 minutes"
    """
    total = abs(int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)

    if style == "hh:mm:ss":
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    if style == "minimal":
        if hours > 0:
            return f"{hours}h {minutes}m"
        if minutes > 0:
            return f"{minutes}m {secs}s"
        return f"{secs}s"
    if style == "verbose":
        parts = []
        if hours > 0:
            parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
        if minutes > 0:
            parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
        if secs > 0 or not parts:
            parts.append(f"{secs} second{'s' if secs != 1 else ''}")
        return ", ".join(parts)
    if style != "mm:ss":
        raise ValueError(f"Unknown time format: {style}")

    total_minutes, secs = divmod(total, 60)
    return f"{total_minutes:02d}:{secs:02d}"


def parse_time_string(text: str) -> int:
    """Parse "mm:ss" or "hh:mm:ss" into seconds.

    Non-numeric parts count as zero; anything without a colon is read as a
    plain number of minutes.
    """
    def _num(part: str) -> int:
        try:
            return int(part)
        except ValueError:
            return 0

    parts = [_num(p.strip()) for p in text.strip().split(":")]
    if len(parts) == 2:
        minutes, secs = parts
        return minutes * 60 + secs
    if len(parts) == 3:
        hours, minutes, secs = parts
        return hours * 3600 + minutes * 60 + secs
    return parts[0] * 60

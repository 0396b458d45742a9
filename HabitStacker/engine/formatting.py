"""Display strings for countdowns and schedule drift."""

from __future__ import annotations

import math
from datetime import datetime

ON_SCHEDULE = "On schedule"


def format_remaining(seconds: float) -> str:
    """MM:SS countdown; overrun time is shown with a leading minus sign."""
    is_negative = seconds < 0
    whole = int(math.floor(abs(seconds)))
    text = f"{whole // 60:02d}:{whole % 60:02d}"
    # -0.4s still reads as 00:00, not -00:00
    return f"-{text}" if is_negative and whole > 0 else text


def format_offset_duration(seconds: float) -> str:
    total = int(abs(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_schedule_offset(offset_seconds: float) -> str:
    if abs(offset_seconds) < 1.0:
        return ON_SCHEDULE
    direction = "ahead of" if offset_seconds < 0 else "behind"
    return f"{format_offset_duration(offset_seconds)} {direction} schedule"


def format_finish_time(finish: datetime | None) -> str:
    if finish is None:
        return ""
    return f"Est. finish: {finish.strftime('%H:%M')}"

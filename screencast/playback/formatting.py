import math
from datetime import datetime
from typing import Optional


def format_time(seconds: Optional[float]) -> str:
    """Player clock, e.g. 0:07 or 12:30."""
    if seconds is None or math.isnan(seconds) or seconds < 0:
        return "0:00"
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{mins}:{secs:02d}"


def format_duration(seconds: int) -> str:
    """Recorder clock, zero-padded minutes: 00:05."""
    seconds = max(int(seconds), 0)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def format_size(num_bytes: int) -> str:
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


def format_date(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return ""
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"

import datetime as dt
from zoneinfo import ZoneInfo

from loguru import logger

from clinicflow.domain.models import Slot


def date_to_long(date: dt.date) -> str:
    """Convert ``date(2025, 9, 2)`` → ``Tuesday, September 2, 2025``."""
    return f"{date.strftime('%A')}, {date.strftime('%B')} {date.day}, {date.year}"


def time_to_12h(time: dt.time) -> str:
    """Convert ``time(14, 30)`` → ``2:30 PM``, with no leading zero on the hour."""
    hour = time.hour % 12 or 12
    period = "AM" if time.hour < 12 else "PM"
    return f"{hour}:{time.strftime('%M')} {period}"


def describe_slot(slot: Slot) -> str:
    """Human-readable slot, e.g. ``Tuesday, September 2, 2025 at 2:00 PM (45 min)``."""
    return f"{date_to_long(slot.date)} at {time_to_12h(slot.time)} ({slot.duration} min)"


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)

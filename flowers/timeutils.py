from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def same_local_day(first: datetime, second: datetime, tz: Optional[timezone] = None) -> bool:
    """True when both instants fall on the same calendar day in ``tz`` (system local time by default)."""
    first = ensure_aware(first).astimezone(tz)
    second = ensure_aware(second).astimezone(tz)
    return first.date() == second.date()


def to_epoch_seconds(value: Optional[datetime]) -> float:
    if value is None:
        return 0
    return ensure_aware(value).timestamp()


def from_epoch_seconds(value) -> Optional[datetime]:
    """Inverse of ``to_epoch_seconds``; zero, negatives and junk mean "never"."""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def format_countdown(remaining: timedelta) -> str:
    """``HH:MM:SS`` countdown shown while a bouquet is on display."""
    total = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_time_remaining(remaining: timedelta) -> str:
    """Short form used on the home screen, e.g. ``07h 05m remaining``."""
    total = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(total, 3600)
    return f"{hours:02d}h {rest // 60:02d}m remaining"

"""
Clock and calendar rules shared by the ledgers: academic year, term bands
and gate operating hours. All times are naive local school time.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

OPENING_HOUR = 6
CLOSING_HOUR = 17


def get_now() -> datetime:
    """FastAPI dependency for the current time; overridden in tests."""
    return datetime.now()


def current_academic_year(now: datetime) -> str:
    # Academic year starts in January
    return str(now.year)


def current_term(now: datetime) -> str:
    if now.month <= 4:
        return "Term 1"
    if now.month <= 8:
        return "Term 2"
    return "Term 3"


def day_name(now: datetime) -> str:
    return DAY_NAMES[now.weekday()]


@dataclass
class OperatingStatus:
    is_open: bool
    message: str


def operating_status(now: datetime) -> OperatingStatus:
    if now.weekday() >= 5:
        return OperatingStatus(False, "Closed on weekends")
    if OPENING_HOUR <= now.hour < CLOSING_HOUR:
        return OperatingStatus(True, "Open")
    return OperatingStatus(False, "Closed - Operating hours: 6:00 AM - 5:00 PM")


def format_time(moment: datetime) -> str:
    """e.g. 10:05 AM"""
    return moment.strftime("%I:%M %p")


def format_long_date(moment: datetime) -> str:
    """e.g. March 4, 2025"""
    return f"{moment.strftime('%B')} {moment.day}, {moment.year}"


def as_local(moment: Optional[datetime]) -> Optional[datetime]:
    """Drop tzinfo after converting to local time, to match stored naive datetimes."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)

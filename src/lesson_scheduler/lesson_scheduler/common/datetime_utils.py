from __future__ import annotations

from datetime import date, datetime, time
from typing import Union

from ..core.constants import DATE_FORMAT, TIME_FORMAT
from ..core.exceptions import ValidationError


def parse_iso_date(value: Union[str, date]) -> date:
    """Parse YYYY-MM-DD string into date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"Invalid date (YYYY-MM-DD): {value!r}")
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValidationError(f"Invalid date (YYYY-MM-DD): {value!r}")


def parse_hhmm(value: Union[str, time]) -> time:
    """Parse a 24-hour HH:MM string into time."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        raise ValidationError(f"Invalid time (HH:MM): {value!r}")
    try:
        return datetime.strptime(value.strip(), TIME_FORMAT).time()
    except ValueError:
        raise ValidationError(f"Invalid time (HH:MM): {value!r}")


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def format_hhmm(value: time) -> str:
    return value.strftime(TIME_FORMAT)


def now_local() -> datetime:
    """Current local time in the organization's timezone.

    Note: Wrapped so tests can patch/mocked easier.
    """
    return datetime.now().replace(microsecond=0)

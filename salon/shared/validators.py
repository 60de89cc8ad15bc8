"""Shared validation utilities"""

import re
from datetime import datetime, time
from typing import Optional

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> time:
    """
    Parse a wall-clock time in HH:MM format.

    Raises:
        ValueError: If the value is not a valid HH:MM time
    """
    if not isinstance(value, str):
        raise ValueError("Time must be a string in HH:MM format")
    match = HHMM_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def validate_hhmm(value: Optional[str]) -> Optional[str]:
    """Validate and normalize an optional HH:MM string"""
    if value is None:
        return value
    parsed = parse_hhmm(value)
    return parsed.strftime("%H:%M")


def to_local_naive(value: datetime) -> datetime:
    """
    Normalize a datetime to naive local wall-clock time.

    Appointments are stored in the business's local time. Aware values
    are converted to the server's local zone and stripped of tzinfo.
    """
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


def validate_positive_amount(value: Optional[float]) -> Optional[float]:
    if value is not None and value < 0:
        raise ValueError("Amount cannot be negative")
    return value

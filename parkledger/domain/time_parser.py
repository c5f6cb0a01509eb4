"""
Parsing of 12-hour clock strings such as ``"9:30 AM"``.

The clock string carries no date, so it is anchored to the calendar day of
a caller-supplied reference instant.
"""

import re

from pendulum import DateTime

from .exceptions import ParseError

_CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2}) ([AaPp][Mm])$")


def parse_clock_time(text: str, reference: DateTime) -> DateTime:
    """
    Resolve a clock string to an instant on the reference day.

    Args:
        text: Clock string in ``H:MM AM|PM`` form (leading zero allowed)
        reference: Instant whose calendar day and timezone are used

    Returns:
        Pendulum DateTime with seconds zeroed

    Raises:
        ParseError: If the string is malformed or out of range
    """
    match = _CLOCK_PATTERN.match((text or "").strip())
    if not match:
        raise ParseError(f"Time must look like '9:30 AM', got {text!r}")

    hour = int(match.group(1))
    minute = int(match.group(2))
    period = match.group(3).upper()

    if not 1 <= hour <= 12:
        raise ParseError(f"Hour must be between 1 and 12, got {hour}")
    if not 0 <= minute <= 59:
        raise ParseError(f"Minute must be between 00 and 59, got {minute:02d}")

    # 12 AM is midnight, 12 PM is noon
    hour24 = hour % 12
    if period == "PM":
        hour24 += 12

    return reference.set(hour=hour24, minute=minute, second=0, microsecond=0)


def format_clock_time(moment: DateTime) -> str:
    """Format an instant as ``H:MM AM|PM`` without a leading zero."""
    hour12 = moment.hour % 12 or 12
    period = "AM" if moment.hour < 12 else "PM"
    return f"{hour12}:{moment.minute:02d} {period}"

"""
Fee and duration calculation for parking sessions.

Pure domain logic: no store access. Amounts are kept at full Decimal
precision and only rounded when formatted for display.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

import pendulum
from pendulum import DateTime

from .exceptions import ParseError
from .models import PricingConfig, to_money
from .time_parser import parse_clock_time

logger = logging.getLogger(__name__)

EntryMarker = Union[str, DateTime]

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "CA$",
    "AUD": "A$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
}

_CENT = Decimal("0.01")
_SECONDS_PER_HOUR = Decimal(3600)


def round_money(amount) -> Decimal:
    """Round to the smallest currency unit (half up)."""
    return to_money(amount).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_currency(amount, currency: str = "USD") -> str:
    """
    Format an amount for display, e.g. ``$1,234.50`` or ``CHF 12.00``.
    """
    rounded = round_money(amount)
    sign = "-" if rounded < 0 else ""
    digits = f"{abs(rounded):,.2f}"
    code = currency.upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{sign}{symbol}{digits}"
    return f"{sign}{code} {digits}"


class FeeCalculator:
    """
    Computes how long a vehicle has been parked and what it owes.

    Entry and exit markers may be clock strings (anchored to the day of
    ``now``) or absolute instants. A missing exit means ``now``.
    """

    def __init__(self, pricing: PricingConfig, timezone: str = "UTC"):
        self.pricing = pricing
        self.timezone = timezone

    def _now(self, now: DateTime | None) -> DateTime:
        return now if now is not None else pendulum.now(self.timezone)

    def _resolve(self, marker: EntryMarker, now: DateTime) -> DateTime:
        if isinstance(marker, DateTime):
            return marker
        return parse_clock_time(marker, now)

    def elapsed_seconds(
        self,
        entry: EntryMarker,
        exit: EntryMarker | None = None,
        now: DateTime | None = None,
    ) -> Decimal:
        """
        Seconds between entry and exit; negative if exit precedes entry.

        Raises:
            ParseError: If a clock string cannot be parsed
        """
        now = self._now(now)
        entry_at = self._resolve(entry, now)
        exit_at = self._resolve(exit, now) if exit is not None else now
        seconds = exit_at.timestamp() - entry_at.timestamp()
        return Decimal(str(round(seconds, 6)))

    def compute_fee(
        self,
        entry: EntryMarker,
        exit: EntryMarker | None = None,
        now: DateTime | None = None,
    ) -> Decimal:
        """
        Fee owed for the session, never below the minimum charge.

        Unparseable times fall back to the minimum charge so a fee can
        always be shown.
        """
        try:
            seconds = self.elapsed_seconds(entry, exit, now)
        except ParseError as exc:
            logger.warning("Falling back to minimum charge: %s", exc)
            return self.pricing.minimum_charge

        hours = seconds / _SECONDS_PER_HOUR
        return max(hours * self.pricing.hourly_rate, self.pricing.minimum_charge)

    def format_duration(
        self,
        entry: EntryMarker,
        exit: EntryMarker | None = None,
        now: DateTime | None = None,
    ) -> str:
        """Format the elapsed time as ``2h 35m`` or ``35m``."""
        try:
            seconds = self.elapsed_seconds(entry, exit, now)
        except ParseError:
            return "0m"

        total_minutes = max(int(seconds // 60), 0)
        hours, minutes = divmod(total_minutes, 60)
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"

    def format_currency(self, amount, currency: str | None = None) -> str:
        return format_currency(amount, currency or self.pricing.currency)

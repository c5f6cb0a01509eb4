"""
Domain layer - Pure business logic without external dependencies.
"""

from .fee_calculator import FeeCalculator, format_currency, round_money
from .models import (
    ImageMetadata,
    Occupancy,
    ParkingSlot,
    PricingConfig,
    Settlement,
    StoredImage,
    UserProfile,
)
from .time_parser import format_clock_time, parse_clock_time

__all__ = [
    "FeeCalculator",
    "ImageMetadata",
    "Occupancy",
    "ParkingSlot",
    "PricingConfig",
    "Settlement",
    "StoredImage",
    "UserProfile",
    "format_clock_time",
    "format_currency",
    "parse_clock_time",
    "round_money",
]

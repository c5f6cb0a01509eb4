"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .accounts import AccountService, AccountStoreProtocol
from .photo_log import ImageStoreProtocol, PhotoLogService
from .pricing import PricingService, PricingStoreProtocol
from .slot_ledger import SlotLedger, SlotStoreProtocol

__all__ = [
    "AccountService",
    "AccountStoreProtocol",
    "ImageStoreProtocol",
    "PhotoLogService",
    "PricingService",
    "PricingStoreProtocol",
    "SlotLedger",
    "SlotStoreProtocol",
]

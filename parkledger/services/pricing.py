"""
Access to the singleton pricing document.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import pendulum

from ..domain.models import PricingConfig, to_money

logger = logging.getLogger(__name__)


class PricingStoreProtocol(Protocol):
    """Protocol describing the pricing store behaviour needed by the service."""

    async def get_pricing(self) -> Optional[PricingConfig]:
        """Return the stored pricing or None if it was never saved."""

    async def save_pricing(self, pricing: PricingConfig) -> None:
        """Persist the pricing document."""


class PricingService:
    """Creates the pricing document with defaults on first access."""

    def __init__(self, store: PricingStoreProtocol, defaults: PricingConfig) -> None:
        self._store = store
        self._defaults = defaults

    async def get_pricing(self) -> PricingConfig:
        pricing = await self._store.get_pricing()
        if pricing is not None:
            return pricing

        logger.info("No pricing stored yet, saving defaults")
        await self._store.save_pricing(self._defaults)
        return self._defaults

    async def update_pricing(
        self,
        hourly_rate,
        minimum_charge,
        updated_by: str,
    ) -> PricingConfig:
        """
        Replace the hourly rate and minimum charge.

        Raises:
            ValueError: If either amount is not positive
        """
        current = await self.get_pricing()
        pricing = PricingConfig(
            hourly_rate=to_money(hourly_rate),
            minimum_charge=to_money(minimum_charge),
            currency=current.currency,
            updated_by=updated_by,
            updated_at=pendulum.now("UTC"),
        )
        await self._store.save_pricing(pricing)
        logger.info(
            "Pricing updated by %s: %s/h, minimum %s",
            updated_by,
            pricing.hourly_rate,
            pricing.minimum_charge,
        )
        return pricing

"""
Tests for the pricing document service.
"""

import asyncio
from decimal import Decimal

import pytest

from parkledger.adapters.memory_store import InMemoryBackend
from parkledger.domain.models import PricingConfig
from parkledger.services.pricing import PricingService

DEFAULTS = PricingConfig(hourly_rate=Decimal("5.00"), minimum_charge=Decimal("2.00"), currency="EUR")


def test_defaults_are_saved_on_first_access():
    """The pricing document is created with defaults when missing."""
    backend = InMemoryBackend(seed_file=None)
    service = PricingService(backend, DEFAULTS)

    pricing = asyncio.run(service.get_pricing())

    assert pricing == DEFAULTS
    assert asyncio.run(backend.get_pricing()).hourly_rate == Decimal("5")


def test_stored_pricing_wins_over_defaults():
    backend = InMemoryBackend(seed_file=None)
    asyncio.run(backend.save_pricing(PricingConfig(hourly_rate="3", minimum_charge="1")))

    pricing = asyncio.run(PricingService(backend, DEFAULTS).get_pricing())

    assert pricing.hourly_rate == Decimal("3")
    assert pricing.currency == "USD"


def test_update_pricing_keeps_currency_and_records_editor():
    backend = InMemoryBackend(seed_file=None)
    service = PricingService(backend, DEFAULTS)

    updated = asyncio.run(service.update_pricing("7.25", "3", updated_by="admin-1"))

    assert updated.hourly_rate == Decimal("7.25")
    assert updated.minimum_charge == Decimal("3")
    assert updated.currency == "EUR"
    assert updated.updated_by == "admin-1"
    assert updated.updated_at is not None
    assert asyncio.run(service.get_pricing()).hourly_rate == Decimal("7.25")


@pytest.mark.parametrize("rate, minimum", [("0", "1"), ("5", "-1")])
def test_update_rejects_non_positive_amounts(rate, minimum):
    service = PricingService(InMemoryBackend(seed_file=None), DEFAULTS)
    with pytest.raises(ValueError):
        asyncio.run(service.update_pricing(rate, minimum, updated_by="admin-1"))
    assert asyncio.run(service.get_pricing()) == DEFAULTS

"""
Account access for the ledger: profile lookup, deposits and admin checks.

Balance updates for one account are serialized through a per-account lock
so a deposit and a settlement can never interleave their read-modify-write.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Dict, Optional, Protocol

from ..domain.exceptions import (
    AccountNotFoundError,
    InvalidAmountError,
    PermissionDeniedError,
)
from ..domain.models import ROLE_USER, UserProfile, to_money

logger = logging.getLogger(__name__)


class AccountStoreProtocol(Protocol):
    """Protocol describing the account store behaviour needed by the service."""

    async def get_profile(self, uid: str) -> Optional[UserProfile]:
        """Return the profile or None when it does not exist."""

    async def find_by_email(self, email: str) -> Optional[UserProfile]:
        """Return the profile registered with a (lower-cased) email."""

    async def create_profile(self, profile: UserProfile) -> None:
        """Persist a new profile."""

    async def set_balance(self, uid: str, balance: Decimal) -> None:
        """Overwrite the stored balance."""


class AccountService:
    """
    Wraps an account store with validation and per-account serialization.
    """

    def __init__(
        self,
        store: AccountStoreProtocol,
        max_deposit: Decimal = Decimal("1000"),
    ) -> None:
        self._store = store
        self._max_deposit = to_money(max_deposit)
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> AccountStoreProtocol:
        return self._store

    @asynccontextmanager
    async def lock(self, uid: str) -> AsyncIterator[None]:
        """Hold the balance lock of one account."""
        account_lock = self._locks.setdefault(uid, asyncio.Lock())
        async with account_lock:
            yield

    async def get_profile(self, uid: str) -> UserProfile:
        profile = await self._store.get_profile(uid)
        if profile is None:
            raise AccountNotFoundError(f"No account found for user id '{uid}'.")
        return profile

    async def find_by_email(self, email: str) -> Optional[UserProfile]:
        return await self._store.find_by_email(email.strip().lower())

    async def require_by_email(self, email: str) -> UserProfile:
        profile = await self.find_by_email(email)
        if profile is None:
            raise AccountNotFoundError()
        return profile

    async def require_admin(self, uid: str) -> UserProfile:
        profile = await self.get_profile(uid)
        if not profile.is_admin:
            raise PermissionDeniedError()
        return profile

    async def create_profile(
        self,
        uid: str,
        email: str,
        display_name: str,
        role: str = ROLE_USER,
        created_at=None,
    ) -> UserProfile:
        """Create a profile with an empty balance."""
        profile = UserProfile(
            uid=uid,
            email=email,
            display_name=display_name,
            role=role,
            balance=Decimal("0"),
            created_at=created_at,
        )
        await self._store.create_profile(profile)
        logger.info("Created profile for %s", profile.email)
        return profile

    async def deposit(self, uid: str, amount) -> Decimal:
        """
        Add funds to an account.

        Args:
            uid: Account to credit
            amount: Positive amount up to the configured maximum

        Returns:
            The new balance

        Raises:
            InvalidAmountError: If the amount is not positive or too large
            AccountNotFoundError: If the account does not exist
        """
        try:
            value = to_money(amount)
        except ValueError as exc:
            raise InvalidAmountError() from exc

        if not value.is_finite() or value <= 0:
            raise InvalidAmountError()
        if value > self._max_deposit:
            raise InvalidAmountError(f"Maximum amount is {self._max_deposit:.2f}.")

        async with self.lock(uid):
            profile = await self.get_profile(uid)
            new_balance = profile.balance + value
            await self._store.set_balance(uid, new_balance)

        logger.info("Deposited %s for %s, balance now %s", value, uid, new_balance)
        return new_balance

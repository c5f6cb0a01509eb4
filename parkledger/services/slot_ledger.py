"""
Slot ledger: the only place where slots change state.

A slot moves Available -> Occupied on registration and Occupied -> Available
on settlement or an administrative release. Both transitions rely on
conditional single-document updates offered by the slot store, so two
attendants cannot book the same slot and a slot cannot be released twice.
Settlement couples the release with a balance debit and undoes the release
when the debit cannot be written.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple

import pendulum
from pendulum import DateTime

from ..domain.exceptions import (
    InsufficientBalanceError,
    NotSlotOwnerError,
    ParkLedgerError,
    SlotAlreadyExistsError,
    SlotAlreadyOccupiedError,
    SlotNotFoundError,
    SlotNotOccupiedError,
)
from ..domain.fee_calculator import FeeCalculator
from ..domain.models import ImageMetadata, Occupancy, ParkingSlot, Settlement
from ..domain.time_parser import format_clock_time, parse_clock_time
from .accounts import AccountService
from .photo_log import ImageStoreProtocol
from .pricing import PricingService

logger = logging.getLogger(__name__)


class SlotStoreProtocol(Protocol):
    """Protocol describing the slot persistence needed by the ledger."""

    async def list_slots(self) -> List[ParkingSlot]:
        """Return every slot in any order."""

    async def get_slot(self, slot_id: str) -> Optional[ParkingSlot]:
        """Return one slot or None."""

    async def create_slot(self, slot: ParkingSlot) -> bool:
        """Create the slot unless its id already exists. Returns False if it did."""

    async def occupy_if_available(self, slot_id: str, occupancy: Occupancy) -> bool:
        """Atomically occupy a free slot. Returns False if it was not free."""

    async def release_if_occupied_by(self, slot_id: str, owner_id: Optional[str]) -> bool:
        """
        Atomically free a slot held by ``owner_id`` (any owner when None).
        Returns False if the slot was free or held by someone else.
        """

    async def release_all(self) -> int:
        """Free every slot and return how many were occupied."""


class SlotLedger:
    """
    Coordinates slot transitions with fees and balances.

    All collaborators are injected; the ledger holds no global state.
    """

    def __init__(
        self,
        slot_store: SlotStoreProtocol,
        accounts: AccountService,
        pricing: PricingService,
        image_store: Optional[ImageStoreProtocol] = None,
        timezone: str = "UTC",
    ) -> None:
        self._slots = slot_store
        self._accounts = accounts
        self._pricing = pricing
        self._images = image_store
        self.timezone = timezone

    def _now(self, now: Optional[DateTime]) -> DateTime:
        return now if now is not None else pendulum.now(self.timezone)

    async def fee_calculator(self) -> FeeCalculator:
        pricing = await self._pricing.get_pricing()
        return FeeCalculator(pricing, timezone=self.timezone)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_slots(self) -> List[ParkingSlot]:
        """All slots ordered by slot number."""
        slots = await self._slots.list_slots()
        return sorted(slots, key=lambda slot: slot.slot_number)

    async def list_available(self) -> List[ParkingSlot]:
        return [slot for slot in await self.list_slots() if not slot.occupied]

    async def get_slot(self, slot_id: str) -> ParkingSlot:
        slot = await self._slots.get_slot(slot_id)
        if slot is None:
            raise SlotNotFoundError(f"Parking slot '{slot_id}' not found.")
        return slot

    async def find_by_number(self, slot_number: int) -> ParkingSlot:
        for slot in await self._slots.list_slots():
            if slot.slot_number == slot_number:
                return slot
        raise SlotNotFoundError(f"Parking slot {slot_number} not found.")

    async def quote(
        self,
        slot_id: str,
        now: Optional[DateTime] = None,
    ) -> Tuple[ParkingSlot, str, Decimal]:
        """
        Current fee and duration of an occupied slot, without settling.

        Returns:
            Tuple of (slot, formatted duration, fee)
        """
        now = self._now(now)
        slot = await self.get_slot(slot_id)
        if slot.occupancy is None:
            raise SlotNotOccupiedError()

        calculator = await self.fee_calculator()
        entry = slot.occupancy.entry_reference
        return (
            slot,
            calculator.format_duration(entry, now=now),
            calculator.compute_fee(entry, now=now),
        )

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    async def initialize_inventory(self, count: int) -> int:
        """
        Create slots 1..count when the store holds no slots yet.

        Returns:
            Number of slots created (0 if the store was already populated)
        """
        if await self._slots.list_slots():
            return 0

        for number in range(1, count + 1):
            await self._slots.create_slot(ParkingSlot(id=str(number), slot_number=number))

        logger.info("Initialized %d parking slot(s)", count)
        return count

    async def add_slot(self, slot_number: int) -> ParkingSlot:
        """
        Add a free slot with a new number.

        Raises:
            SlotAlreadyExistsError: If the number is already in use
        """
        slots = await self._slots.list_slots()
        if any(slot.slot_number == slot_number for slot in slots):
            raise SlotAlreadyExistsError(f"Parking slot {slot_number} already exists.")

        slot = ParkingSlot(id=str(slot_number), slot_number=slot_number)
        if not await self._slots.create_slot(slot):
            raise SlotAlreadyExistsError(f"Parking slot {slot_number} already exists.")

        logger.info("Added parking slot %d", slot_number)
        return slot

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def register_vehicle(
        self,
        slot_number: int,
        plate: str,
        vehicle_type: str,
        owner_id: str,
        entry_time: Optional[str] = None,
        image: Optional[bytes] = None,
        now: Optional[DateTime] = None,
    ) -> ParkingSlot:
        """
        Park a vehicle in a free slot.

        Args:
            slot_number: Human-facing slot number
            plate: License plate as typed by the attendant
            vehicle_type: One of the vehicle categories
            owner_id: Account that will pay for the session
            entry_time: Clock string; defaults to the current time
            image: Optional photo bytes to upload alongside
            now: Reference instant (defaults to the current time)

        Returns:
            The occupied slot

        Raises:
            SlotNotFoundError: If no slot has that number
            SlotAlreadyOccupiedError: If the slot is (or just became) occupied
            AccountNotFoundError: If the owner has no account
            ParseError: If ``entry_time`` is malformed
        """
        now = self._now(now)
        slot = await self.find_by_number(slot_number)
        if slot.occupied:
            raise SlotAlreadyOccupiedError(f"Parking slot {slot_number} is already occupied.")

        await self._accounts.get_profile(owner_id)

        if entry_time is None:
            entry_time = format_clock_time(now)
        entered_at = parse_clock_time(entry_time, now)

        occupancy = Occupancy(
            vehicle_plate=plate,
            vehicle_type=vehicle_type,
            entry_time=entry_time,
            owner_id=owner_id,
            entered_at=entered_at,
        )

        image_url = None
        image_name = None
        if image is not None and self._images is not None:
            metadata = ImageMetadata(
                license_plate=occupancy.vehicle_plate,
                vehicle_type=vehicle_type,
                slot_number=slot_number,
                captured_at=now,
            )
            try:
                image_url = await self._images.upload(image, metadata)
                image_name = metadata.object_name()
            except ParkLedgerError as exc:
                logger.warning("Image upload failed, registering without image: %s", exc)
            occupancy = occupancy.with_image(image_url)

        if not await self._slots.occupy_if_available(slot.id, occupancy):
            if image_name is not None:
                await self._discard_image(image_name)
            raise SlotAlreadyOccupiedError(f"Parking slot {slot_number} is already occupied.")

        logger.info(
            "Registered %s (%s) in slot %d for %s",
            occupancy.vehicle_plate,
            vehicle_type,
            slot_number,
            owner_id,
        )
        return slot.occupy(occupancy)

    async def _discard_image(self, name: str) -> None:
        try:
            await self._images.delete(name)
        except ParkLedgerError as exc:
            logger.warning("Could not delete orphaned image %s: %s", name, exc)

    async def _restore_occupancy(self, slot: ParkingSlot, occupancy: Occupancy) -> None:
        # the caller re-raises the debit error, so a failed restore is only logged
        try:
            restored = await self._slots.occupy_if_available(slot.id, occupancy)
        except ParkLedgerError as exc:
            logger.error("Could not restore slot %d: %s", slot.slot_number, exc)
            return
        if not restored:
            logger.error(
                "Could not restore slot %d: it was occupied again in the meantime",
                slot.slot_number,
            )

    async def settle_and_release(
        self,
        slot_id: str,
        payer_id: str,
        now: Optional[DateTime] = None,
    ) -> Settlement:
        """
        Charge the owner for the session and free the slot.

        Either both the debit and the release happen, or neither does.

        Raises:
            SlotNotFoundError: If the slot does not exist
            SlotNotOccupiedError: If the slot is already free
            AccountNotFoundError: If the payer has no account
            NotSlotOwnerError: If the payer is not the recorded owner
            InsufficientBalanceError: If the balance does not cover the fee
            ParkLedgerError: If the debit cannot be written; the slot is re-occupied
        """
        now = self._now(now)

        async with self._accounts.lock(payer_id):
            slot = await self.get_slot(slot_id)
            occupancy = slot.occupancy
            if occupancy is None:
                raise SlotNotOccupiedError()

            payer = await self._accounts.get_profile(payer_id)
            if occupancy.owner_id != payer_id:
                raise NotSlotOwnerError()

            calculator = await self.fee_calculator()
            fee = calculator.compute_fee(occupancy.entry_reference, now=now)
            duration = calculator.format_duration(occupancy.entry_reference, now=now)

            if payer.balance < fee:
                raise InsufficientBalanceError(
                    f"Insufficient balance: fee is {calculator.format_currency(fee)}, "
                    f"balance is {calculator.format_currency(payer.balance)}.",
                    balance=payer.balance,
                    fee=fee,
                )

            if not await self._slots.release_if_occupied_by(slot.id, payer_id):
                raise SlotNotOccupiedError(
                    f"Parking slot {slot.slot_number} changed while paying; please retry."
                )

            new_balance = payer.balance - fee
            try:
                await self._accounts.store.set_balance(payer_id, new_balance)
            except ParkLedgerError as exc:
                logger.error(
                    "Debit failed for %s (%s), restoring slot %d", payer_id, exc, slot.slot_number
                )
                await self._restore_occupancy(slot, occupancy)
                raise

        logger.info(
            "Settled slot %d for %s: fee %s, balance %s",
            slot.slot_number,
            payer_id,
            fee,
            new_balance,
        )
        return Settlement(
            slot=slot.release(),
            fee=fee,
            new_balance=new_balance,
            duration=duration,
        )

    async def force_release(self, slot_id: str, admin_id: str) -> ParkingSlot:
        """
        Free an occupied slot without payment. Administrators only.

        Raises:
            PermissionDeniedError: If the caller is not an administrator
            SlotNotFoundError: If the slot does not exist
            SlotNotOccupiedError: If the slot is already free
        """
        await self._accounts.require_admin(admin_id)
        slot = await self.get_slot(slot_id)
        if not slot.occupied:
            raise SlotNotOccupiedError()

        if not await self._slots.release_if_occupied_by(slot.id, None):
            raise SlotNotOccupiedError()

        logger.info("Slot %d released by administrator %s", slot.slot_number, admin_id)
        return slot.release()

    async def reset_all(self, admin_id: str) -> int:
        """
        Free every slot without touching balances. Administrators only.

        Returns:
            Number of slots that were occupied
        """
        await self._accounts.require_admin(admin_id)
        released = await self._slots.release_all()
        logger.info("All slots reset by %s (%d released)", admin_id, released)
        return released

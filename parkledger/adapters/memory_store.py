"""
In-memory backend for running without the hosted services.

Implements the slot, pricing, account and image store protocols. The
initial state is loaded from ``mock_parking_data.json`` (or a state file
written by a previous run) and, when a state file is configured, every
mutation is written back so consecutive CLI invocations share state.
"""

import asyncio
import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import pendulum

from ..domain.exceptions import AccountNotFoundError, BackendUnavailableError, ImageNotFoundError
from ..domain.models import (
    FREED_SLOT_FIELDS,
    ImageMetadata,
    Occupancy,
    ParkingSlot,
    PricingConfig,
    StoredImage,
    UserProfile,
)

logger = logging.getLogger(__name__)

SEED_DATA_FILE = Path(__file__).parent / "mock_parking_data.json"


class InMemoryBackend:
    """
    Mock backend that keeps documents as plain dicts.

    Conditional updates run under a single lock so occupy/release behave
    like the compare-and-set preconditions of the real document store.
    """

    def __init__(
        self,
        state_file: Optional[Path] = None,
        seed_file: Optional[Path] = SEED_DATA_FILE,
    ):
        """
        Initialize the backend.

        Args:
            state_file: Optional JSON file to load from and persist to
            seed_file: JSON file used when no state file exists yet
        """
        self.state_file = state_file
        self._lock = asyncio.Lock()
        self._slots: Dict[str, Dict[str, Any]] = {}
        self._users: Dict[str, Dict[str, Any]] = {}
        self._pricing: Optional[Dict[str, Any]] = None
        self._images: Dict[str, Dict[str, Any]] = {}
        self._load_data(seed_file)

    def _load_data(self, seed_file: Optional[Path]) -> None:
        source = None
        if self.state_file is not None and self.state_file.exists():
            source = self.state_file
        elif seed_file is not None and seed_file.exists():
            source = seed_file

        if source is None:
            return

        try:
            with open(source, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise BackendUnavailableError(f"Could not read local data from {source}: {exc}") from exc

        logger.debug("Loading local parking data from %s", source)
        for record in data.get("slots", []):
            slot_id = str(record["id"])
            self._slots[slot_id] = {**FREED_SLOT_FIELDS, **record, "id": slot_id}
        for record in data.get("users", []):
            self._users[record["uid"]] = dict(record)
        self._pricing = data.get("pricing")
        self._images = {image["name"]: image for image in data.get("images", [])}

    def _persist(self) -> None:
        if self.state_file is None:
            return

        data = {
            "slots": list(self._slots.values()),
            "users": list(self._users.values()),
            "pricing": self._pricing,
            "images": list(self._images.values()),
        }
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.state_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as exc:
            raise BackendUnavailableError(f"Could not write local state to {self.state_file}: {exc}") from exc

    # Slots ---------------------------------------------------------------

    def _to_slot(self, record: Dict[str, Any]) -> ParkingSlot:
        return ParkingSlot.from_record(record["id"], record)

    async def list_slots(self) -> List[ParkingSlot]:
        return [self._to_slot(record) for record in self._slots.values()]

    async def get_slot(self, slot_id: str) -> Optional[ParkingSlot]:
        record = self._slots.get(str(slot_id))
        return self._to_slot(record) if record is not None else None

    async def create_slot(self, slot: ParkingSlot) -> bool:
        async with self._lock:
            if slot.id in self._slots:
                return False
            self._slots[slot.id] = {"id": slot.id, **slot.to_record()}
            self._persist()
        return True

    async def occupy_if_available(self, slot_id: str, occupancy: Occupancy) -> bool:
        async with self._lock:
            record = self._slots.get(str(slot_id))
            if record is None or record.get("occupied"):
                return False
            slot = self._to_slot(record).occupy(occupancy)
            self._slots[slot.id] = {"id": slot.id, **slot.to_record()}
            self._persist()
        return True

    async def release_if_occupied_by(self, slot_id: str, owner_id: Optional[str]) -> bool:
        async with self._lock:
            record = self._slots.get(str(slot_id))
            if record is None or not record.get("occupied"):
                return False
            if owner_id is not None and record.get("userId") != owner_id:
                return False
            record.update(FREED_SLOT_FIELDS)
            self._persist()
        return True

    async def release_all(self) -> int:
        async with self._lock:
            released = 0
            for record in self._slots.values():
                if record.get("occupied"):
                    released += 1
                record.update(FREED_SLOT_FIELDS)
            self._persist()
        return released

    # Pricing -------------------------------------------------------------

    async def get_pricing(self) -> Optional[PricingConfig]:
        if self._pricing is None:
            return None
        return PricingConfig.from_record(self._pricing)

    async def save_pricing(self, pricing: PricingConfig) -> None:
        async with self._lock:
            self._pricing = pricing.to_record()
            self._persist()

    # Accounts ------------------------------------------------------------

    async def get_profile(self, uid: str) -> Optional[UserProfile]:
        record = self._users.get(uid)
        return UserProfile.from_record(record) if record is not None else None

    async def find_by_email(self, email: str) -> Optional[UserProfile]:
        for record in self._users.values():
            if record.get("email", "").lower() == email:
                return UserProfile.from_record(record)
        return None

    async def create_profile(self, profile: UserProfile) -> None:
        async with self._lock:
            self._users[profile.uid] = profile.to_record()
            self._persist()

    async def set_balance(self, uid: str, balance: Decimal) -> None:
        async with self._lock:
            record = self._users.get(uid)
            if record is None:
                raise AccountNotFoundError(f"No account found for user id '{uid}'.")
            record["balance"] = float(balance)
            self._persist()

    # Images --------------------------------------------------------------

    async def upload(self, data: bytes, metadata: ImageMetadata) -> str:
        name = metadata.object_name()
        url = f"memory://license-plates/{name}"
        async with self._lock:
            self._images[name] = {
                "name": name,
                "url": url,
                "size": len(data),
                "timeCreated": metadata.captured_at.to_iso8601_string(),
                "metadata": metadata.to_custom_metadata(),
            }
            self._persist()
        return url

    async def list_images(self) -> List[StoredImage]:
        return [
            StoredImage(
                name=image["name"],
                url=image["url"],
                timestamp=pendulum.parse(image["timeCreated"]),
                license_plate=image["metadata"].get("licensePlate"),
                vehicle_type=image["metadata"].get("vehicleType"),
                slot_number=image["metadata"].get("slotNumber"),
            )
            for image in self._images.values()
        ]

    async def delete(self, name: str) -> None:
        async with self._lock:
            if name not in self._images:
                raise ImageNotFoundError(f"Stored image '{name}' not found.")
            del self._images[name]
            self._persist()

    async def delete_all(self) -> int:
        async with self._lock:
            removed = len(self._images)
            self._images.clear()
            self._persist()
        return removed

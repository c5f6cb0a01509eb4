"""
Domain models for parking slots, pricing and accounts.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import pendulum
from pendulum import DateTime

VEHICLE_TYPES = ("Sedan", "SUV", "Truck", "Motorcycle", "Van")

ROLE_USER = "user"
ROLE_ADMIN = "admin"


def to_money(value: Any) -> Decimal:
    """Convert a number or numeric string to a Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a valid amount: {value!r}") from exc


def _parse_timestamp(value: Any) -> DateTime | None:
    if value is None or isinstance(value, DateTime):
        return value
    parsed = pendulum.parse(str(value))
    if not isinstance(parsed, DateTime):
        raise ValueError(f"Not a timestamp: {value!r}")
    return parsed


def _format_timestamp(value: DateTime | None) -> str | None:
    return value.to_iso8601_string() if value is not None else None


@dataclass(frozen=True)
class Occupancy:
    """
    The vehicle currently parked in a slot.

    Kept as one object so a slot is either fully occupied or fully free,
    never partially populated.
    """
    vehicle_plate: str
    vehicle_type: str
    entry_time: str  # clock string, e.g. "9:30 AM"
    owner_id: str
    image_url: Optional[str] = None
    entered_at: Optional[DateTime] = None

    def __post_init__(self):
        plate = (self.vehicle_plate or "").strip().upper()
        if not plate:
            raise ValueError("License plate cannot be empty")
        object.__setattr__(self, "vehicle_plate", plate)

        if not (self.vehicle_type or "").strip():
            raise ValueError("Vehicle type cannot be empty")
        if not (self.entry_time or "").strip():
            raise ValueError("Entry time cannot be empty")
        if not (self.owner_id or "").strip():
            raise ValueError("Owner id cannot be empty")

    @property
    def entry_reference(self) -> "DateTime | str":
        """The most precise entry marker available for fee calculation."""
        return self.entered_at if self.entered_at is not None else self.entry_time

    def with_image(self, image_url: Optional[str]) -> "Occupancy":
        return replace(self, image_url=image_url)


# Record fields written when a slot is freed; all occupancy fields clear together.
FREED_SLOT_FIELDS: Dict[str, Any] = {
    "occupied": False,
    "vehiclePlate": None,
    "vehicleType": None,
    "entryTime": None,
    "imageUrl": None,
    "userId": None,
    "enteredAt": None,
}


@dataclass(frozen=True)
class ParkingSlot:
    """
    A numbered parking space.

    Invariant: slot_number is a positive integer.
    """
    id: str
    slot_number: int
    occupancy: Optional[Occupancy] = None

    def __post_init__(self):
        if isinstance(self.slot_number, bool) or not isinstance(self.slot_number, int):
            raise ValueError(f"Slot number must be an integer, got {self.slot_number!r}")
        if self.slot_number <= 0:
            raise ValueError(f"Slot number must be positive, got {self.slot_number}")

    @property
    def occupied(self) -> bool:
        return self.occupancy is not None

    @property
    def owner_id(self) -> Optional[str]:
        return self.occupancy.owner_id if self.occupancy else None

    def occupy(self, occupancy: Occupancy) -> "ParkingSlot":
        return replace(self, occupancy=occupancy)

    def release(self) -> "ParkingSlot":
        return replace(self, occupancy=None)

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the document shape shared by every backend."""
        occupancy = self.occupancy
        if occupancy is None:
            return {"slotNumber": self.slot_number, **FREED_SLOT_FIELDS}
        return {
            "slotNumber": self.slot_number,
            "occupied": True,
            "vehiclePlate": occupancy.vehicle_plate,
            "vehicleType": occupancy.vehicle_type,
            "entryTime": occupancy.entry_time,
            "imageUrl": occupancy.image_url,
            "userId": occupancy.owner_id,
            "enteredAt": _format_timestamp(occupancy.entered_at),
        }

    @classmethod
    def from_record(cls, slot_id: str, record: Dict[str, Any]) -> "ParkingSlot":
        """
        Build a slot from a stored document.

        Raises:
            ValueError: If the record is occupied but misses occupancy fields
        """
        occupancy = None
        if record.get("occupied"):
            missing = [
                key for key in ("vehiclePlate", "vehicleType", "entryTime", "userId")
                if not record.get(key)
            ]
            if missing:
                raise ValueError(
                    f"Slot {slot_id} is marked occupied but lacks {', '.join(missing)}"
                )
            occupancy = Occupancy(
                vehicle_plate=record["vehiclePlate"],
                vehicle_type=record["vehicleType"],
                entry_time=record["entryTime"],
                owner_id=record["userId"],
                image_url=record.get("imageUrl"),
                entered_at=_parse_timestamp(record.get("enteredAt")),
            )

        return cls(
            id=str(slot_id),
            slot_number=int(record["slotNumber"]),
            occupancy=occupancy,
        )


@dataclass(frozen=True)
class PricingConfig:
    """
    Tariff applied to every parking session.

    Invariant: hourly_rate and minimum_charge are positive.
    """
    hourly_rate: Decimal
    minimum_charge: Decimal
    currency: str = "USD"
    updated_by: str = "system"
    updated_at: Optional[DateTime] = None

    def __post_init__(self):
        hourly_rate = to_money(self.hourly_rate)
        minimum_charge = to_money(self.minimum_charge)
        if hourly_rate <= 0:
            raise ValueError(f"Hourly rate must be positive, got {hourly_rate}")
        if minimum_charge <= 0:
            raise ValueError(f"Minimum charge must be positive, got {minimum_charge}")
        object.__setattr__(self, "hourly_rate", hourly_rate)
        object.__setattr__(self, "minimum_charge", minimum_charge)
        object.__setattr__(self, "currency", self.currency.upper())

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": "default",
            "hourlyRate": float(self.hourly_rate),
            "minimumCharge": float(self.minimum_charge),
            "currency": self.currency,
            "updatedBy": self.updated_by,
            "updatedAt": _format_timestamp(self.updated_at),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PricingConfig":
        return cls(
            hourly_rate=to_money(record["hourlyRate"]),
            minimum_charge=to_money(record["minimumCharge"]),
            currency=record.get("currency") or "USD",
            updated_by=record.get("updatedBy") or "system",
            updated_at=_parse_timestamp(record.get("updatedAt")),
        )


@dataclass
class UserProfile:
    """Account data consumed by the ledger."""
    uid: str
    email: str
    display_name: str
    role: str = ROLE_USER
    balance: Decimal = field(default_factory=lambda: Decimal("0"))
    created_at: Optional[DateTime] = None

    def __post_init__(self):
        self.email = self.email.strip().lower()
        self.balance = to_money(self.balance)
        if self.role not in (ROLE_USER, ROLE_ADMIN):
            raise ValueError(f"Unknown role: {self.role}")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_record(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "role": self.role,
            "balance": float(self.balance),
            "createdAt": _format_timestamp(self.created_at),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "UserProfile":
        return cls(
            uid=record["uid"],
            email=record["email"],
            display_name=record.get("displayName") or "",
            role=record.get("role") or ROLE_USER,
            balance=to_money(record.get("balance") or 0),
            created_at=_parse_timestamp(record.get("createdAt")),
        )


@dataclass(frozen=True)
class ImageMetadata:
    """Metadata attached to an uploaded license-plate photo."""
    license_plate: str
    vehicle_type: str
    slot_number: int
    captured_at: DateTime

    def object_name(self) -> str:
        stamp = self.captured_at.in_timezone("UTC").format("YYYYMMDD[T]HHmmss")
        return f"{self.license_plate}_{self.slot_number}_{stamp}.jpg"

    def to_custom_metadata(self) -> Dict[str, str]:
        return {
            "licensePlate": self.license_plate,
            "vehicleType": self.vehicle_type,
            "slotNumber": str(self.slot_number),
            "timestamp": self.captured_at.to_iso8601_string(),
        }


@dataclass(frozen=True)
class StoredImage:
    """A photo as listed by the image store."""
    name: str
    url: str
    timestamp: DateTime
    license_plate: Optional[str] = None
    vehicle_type: Optional[str] = None
    slot_number: Optional[str] = None


@dataclass(frozen=True)
class Settlement:
    """Outcome of paying for a session and freeing its slot."""
    slot: ParkingSlot
    fee: Decimal
    new_balance: Decimal
    duration: str

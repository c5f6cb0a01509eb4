"""
Tests for the in-memory backend used with --mock.
"""

import asyncio
from decimal import Decimal

import pendulum
import pytest

from parkledger.adapters.memory_store import InMemoryBackend
from parkledger.domain.exceptions import BackendUnavailableError, ImageNotFoundError
from parkledger.domain.models import FREED_SLOT_FIELDS, ImageMetadata, Occupancy, ParkingSlot
from parkledger.services.photo_log import PhotoLogService


def _occupancy(owner: str = "u1") -> Occupancy:
    return Occupancy(vehicle_plate="ABC123", vehicle_type="Sedan", entry_time="9:30 AM", owner_id=owner)


def _metadata(plate: str, captured: str) -> ImageMetadata:
    return ImageMetadata(
        license_plate=plate,
        vehicle_type="Sedan",
        slot_number=1,
        captured_at=pendulum.parse(captured, tz="UTC"),
    )


class TestSeedData:
    """Tests for the packaged demo data."""

    def test_seed_has_six_slots_and_demo_users(self):
        backend = InMemoryBackend()
        slots = asyncio.run(backend.list_slots())
        occupied = sorted(slot.slot_number for slot in slots if slot.occupied)

        assert len(slots) == 6
        assert occupied == [1, 3, 6]
        assert asyncio.run(backend.find_by_email("admin@example.com")).is_admin
        assert asyncio.run(backend.get_pricing()) is None

    def test_unreadable_state_file(self, tmp_path):
        state_file = tmp_path / "state.json"
        state_file.write_text("{not json", encoding="utf-8")
        with pytest.raises(BackendUnavailableError):
            InMemoryBackend(state_file=state_file)


class TestConditionalUpdates:
    """Tests for the compare-and-set slot writes."""

    def test_occupy_only_free_slot(self):
        backend = InMemoryBackend(seed_file=None)
        asyncio.run(backend.create_slot(ParkingSlot(id="1", slot_number=1)))

        assert asyncio.run(backend.occupy_if_available("1", _occupancy()))
        assert not asyncio.run(backend.occupy_if_available("1", _occupancy("u2")))
        assert asyncio.run(backend.get_slot("1")).owner_id == "u1"

    def test_occupy_missing_slot(self):
        backend = InMemoryBackend(seed_file=None)
        assert not asyncio.run(backend.occupy_if_available("9", _occupancy()))

    def test_create_existing_slot(self):
        backend = InMemoryBackend(seed_file=None)
        assert asyncio.run(backend.create_slot(ParkingSlot(id="1", slot_number=1)))
        assert not asyncio.run(backend.create_slot(ParkingSlot(id="1", slot_number=1)))

    def test_release_checks_owner(self):
        backend = InMemoryBackend(seed_file=None)
        asyncio.run(backend.create_slot(ParkingSlot(id="1", slot_number=1)))
        asyncio.run(backend.occupy_if_available("1", _occupancy("u1")))

        assert not asyncio.run(backend.release_if_occupied_by("1", "u2"))
        assert asyncio.run(backend.release_if_occupied_by("1", "u1"))
        assert not asyncio.run(backend.release_if_occupied_by("1", None))

        record = backend._slots["1"]
        assert record["occupied"] is False
        assert {key: record[key] for key in FREED_SLOT_FIELDS} == FREED_SLOT_FIELDS


class TestPersistence:
    """Tests for the JSON state file."""

    def test_state_survives_reload(self, tmp_path):
        state_file = tmp_path / "state.json"
        backend = InMemoryBackend(state_file=state_file)
        asyncio.run(backend.release_all())
        asyncio.run(backend.set_balance("demo-user-1", Decimal("42.5")))

        reloaded = InMemoryBackend(state_file=state_file)

        assert not any(slot.occupied for slot in asyncio.run(reloaded.list_slots()))
        assert asyncio.run(reloaded.get_profile("demo-user-1")).balance == Decimal("42.5")

    def test_without_state_file_nothing_is_written(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        backend = InMemoryBackend()
        asyncio.run(backend.release_all())
        assert list(tmp_path.iterdir()) == []


class TestImages:
    """Tests for the photo log backed by the in-memory store."""

    def test_list_newest_first_and_delete(self):
        backend = InMemoryBackend(seed_file=None)
        photo_log = PhotoLogService(backend)
        asyncio.run(backend.upload(b"1", _metadata("OLD1", "2024-11-24 08:00")))
        url = asyncio.run(backend.upload(b"2", _metadata("NEW1", "2024-11-25 08:00")))

        images = asyncio.run(photo_log.list_images())

        assert url == "memory://license-plates/NEW1_1_20241125T080000.jpg"
        assert [image.license_plate for image in images] == ["NEW1", "OLD1"]
        asyncio.run(photo_log.delete_image(images[0].name))
        assert [image.license_plate for image in asyncio.run(photo_log.list_images())] == ["OLD1"]

    def test_delete_missing_image(self):
        photo_log = PhotoLogService(InMemoryBackend(seed_file=None))
        with pytest.raises(ImageNotFoundError):
            asyncio.run(photo_log.delete_image("nope.jpg"))

    def test_delete_all(self):
        backend = InMemoryBackend(seed_file=None)
        for day in ("22", "23", "24"):
            asyncio.run(backend.upload(b"x", _metadata("P" + day, f"2024-11-{day} 08:00")))

        assert asyncio.run(PhotoLogService(backend).delete_all()) == 3
        assert asyncio.run(backend.list_images()) == []

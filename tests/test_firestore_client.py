"""
Tests for the hosted backend REST clients using a fake HTTP session.
"""

import asyncio
from decimal import Decimal
from typing import Any, List

import pendulum
import pytest
import requests

from parkledger.adapters.firestore_client import (
    FirestoreClient,
    decode_fields,
    decode_value,
    encode_fields,
    encode_value,
)
from parkledger.adapters.storage_client import FirebaseStorageClient
from parkledger.domain.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    BackendUnavailableError,
    ImageNotFoundError,
)
from parkledger.domain.models import ImageMetadata, Occupancy, ParkingSlot

UPDATE_TIME = "2024-11-25T09:00:00.123456Z"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = ""
        self.reason = "reason"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        return self._payload


class FakeSession:
    """Replays canned responses and records every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[tuple] = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _slot_document(slot: ParkingSlot) -> dict:
    return {
        "name": f"projects/demo/databases/(default)/documents/parkingSlots/{slot.id}",
        "fields": encode_fields(slot.to_record()),
        "updateTime": UPDATE_TIME,
    }


def _occupancy(owner: str = "u1") -> Occupancy:
    return Occupancy(vehicle_plate="XYZ999", vehicle_type="SUV", entry_time="9:00 AM", owner_id=owner)


def _firestore(*responses) -> tuple:
    session = FakeSession(*responses)
    client = FirestoreClient("demo", token_provider=lambda: "id-token", session=session)
    return client, session


class TestValueCodec:
    """Tests for the Firestore value encoding."""

    def test_scalar_encodings(self):
        assert encode_value(None) == {"nullValue": None}
        assert encode_value(True) == {"booleanValue": True}
        assert encode_value(3) == {"integerValue": "3"}
        assert encode_value(Decimal("7.5")) == {"doubleValue": 7.5}
        assert encode_value(pendulum.parse("2024-11-25 10:00", tz="Europe/Berlin")) == {
            "timestampValue": "2024-11-25T09:00:00Z"
        }

    def test_nested_values_decode_to_plain_python(self):
        record = {"a": {"b": [1, "x", None]}, "flag": False}
        assert decode_fields(encode_fields(record)) == record

    def test_unknown_value_rejected(self):
        with pytest.raises(ValueError):
            decode_value({"geoPointValue": {}})
        with pytest.raises(TypeError):
            encode_value(object())


class TestFirestoreSlots:
    """Tests for slot reads and conditional writes."""

    def test_get_slot_sends_token_and_decodes(self):
        occupied = ParkingSlot(id="2", slot_number=2, occupancy=_occupancy())
        client, session = _firestore(FakeResponse(200, _slot_document(occupied)))

        slot = asyncio.run(client.get_slot("2"))

        method, url, kwargs = session.calls[0]
        assert method == "GET"
        assert url.endswith("/documents/parkingSlots/2")
        assert kwargs["headers"]["Authorization"] == "Bearer id-token"
        assert slot == occupied

    def test_missing_slot_is_none(self):
        client, _ = _firestore(FakeResponse(404, {"error": {"status": "NOT_FOUND"}}))
        assert asyncio.run(client.get_slot("9")) is None

    def test_occupy_sends_update_time_precondition(self):
        free = ParkingSlot(id="2", slot_number=2)
        client, session = _firestore(FakeResponse(200, _slot_document(free)), FakeResponse(200, {}))

        assert asyncio.run(client.occupy_if_available("2", _occupancy()))

        method, _, kwargs = session.calls[1]
        assert method == "PATCH"
        assert ("currentDocument.updateTime", UPDATE_TIME) in kwargs["params"]
        assert ("updateMask.fieldPaths", "vehiclePlate") in kwargs["params"]
        fields = decode_fields(kwargs["json"]["fields"])
        assert fields["occupied"] is True
        assert fields["userId"] == "u1"

    def test_lost_race_returns_false(self):
        free = ParkingSlot(id="2", slot_number=2)
        client, _ = _firestore(
            FakeResponse(200, _slot_document(free)),
            FakeResponse(400, {"error": {"status": "FAILED_PRECONDITION", "message": "stale"}}),
        )
        assert not asyncio.run(client.occupy_if_available("2", _occupancy()))

    def test_occupied_slot_is_not_written(self):
        occupied = ParkingSlot(id="2", slot_number=2, occupancy=_occupancy())
        client, session = _firestore(FakeResponse(200, _slot_document(occupied)))

        assert not asyncio.run(client.occupy_if_available("2", _occupancy("u2")))
        assert len(session.calls) == 1

    def test_release_by_other_owner_is_not_written(self):
        occupied = ParkingSlot(id="2", slot_number=2, occupancy=_occupancy("u1"))
        client, session = _firestore(FakeResponse(200, _slot_document(occupied)))

        assert not asyncio.run(client.release_if_occupied_by("2", "u2"))
        assert len(session.calls) == 1

    def test_release_clears_vehicle_fields(self):
        occupied = ParkingSlot(id="2", slot_number=2, occupancy=_occupancy("u1"))
        client, session = _firestore(FakeResponse(200, _slot_document(occupied)), FakeResponse(200, {}))

        assert asyncio.run(client.release_if_occupied_by("2", "u1"))
        fields = decode_fields(session.calls[1][2]["json"]["fields"])
        assert fields["occupied"] is False
        assert fields["vehiclePlate"] is None

    def test_malformed_request_is_an_error(self):
        free = ParkingSlot(id="2", slot_number=2)
        client, _ = _firestore(
            FakeResponse(200, _slot_document(free)),
            FakeResponse(400, {"error": {"status": "INVALID_ARGUMENT", "message": "bad field"}}),
        )
        with pytest.raises(BackendUnavailableError, match="bad field"):
            asyncio.run(client.occupy_if_available("2", _occupancy()))

    def test_list_slots_follows_pages(self):
        first = ParkingSlot(id="1", slot_number=1)
        second = ParkingSlot(id="2", slot_number=2)
        client, session = _firestore(
            FakeResponse(200, {"documents": [_slot_document(first)], "nextPageToken": "p2"}),
            FakeResponse(200, {"documents": [_slot_document(second)]}),
        )

        slots = asyncio.run(client.list_slots())

        assert [slot.id for slot in slots] == ["1", "2"]
        assert session.calls[1][2]["params"]["pageToken"] == "p2"


class TestFirestoreAccounts:
    """Tests for account documents."""

    def test_find_by_email_runs_query(self):
        user = {"uid": "u1", "email": "alice@example.com", "displayName": "Alice", "role": "user", "balance": 12.5}
        client, session = _firestore(
            FakeResponse(200, [{"document": {"name": "x/users/u1", "fields": encode_fields(user)}}])
        )

        profile = asyncio.run(client.find_by_email("alice@example.com"))

        query = session.calls[0][2]["json"]["structuredQuery"]
        assert query["where"]["fieldFilter"]["value"] == {"stringValue": "alice@example.com"}
        assert profile.balance == Decimal("12.5")

    def test_find_by_email_without_match(self):
        client, _ = _firestore(FakeResponse(200, [{"readTime": UPDATE_TIME}]))
        assert asyncio.run(client.find_by_email("nobody@example.com")) is None

    def test_set_balance_on_missing_account(self):
        client, _ = _firestore(FakeResponse(404, {"error": {"status": "NOT_FOUND"}}))
        with pytest.raises(AccountNotFoundError):
            asyncio.run(client.set_balance("ghost", Decimal("1")))


class TestTransportErrors:
    """Tests for HTTP failures shared by all clients."""

    def test_server_error(self):
        client, _ = _firestore(FakeResponse(503, {"error": {"message": "down"}}))
        with pytest.raises(BackendUnavailableError, match="down"):
            asyncio.run(client.list_slots())

    def test_rejected_token(self):
        client, _ = _firestore(FakeResponse(401, {"error": {"message": "expired"}}))
        with pytest.raises(AuthenticationError):
            asyncio.run(client.list_slots())

    def test_connection_failure(self):
        client, _ = _firestore(requests.exceptions.ConnectionError("no route"))
        with pytest.raises(BackendUnavailableError):
            asyncio.run(client.get_pricing())


class TestStorageClient:
    """Tests for the photo storage client."""

    def test_upload_returns_download_url(self):
        session = FakeSession(
            FakeResponse(200, {"name": "license-plates/x.jpg"}),
            FakeResponse(200, {"downloadTokens": "tok-1,tok-2"}),
        )
        client = FirebaseStorageClient("demo.appspot.com", session=session)
        metadata = ImageMetadata(
            license_plate="XYZ999",
            vehicle_type="SUV",
            slot_number=2,
            captured_at=pendulum.parse("2024-11-25 09:15:00", tz="UTC"),
        )

        url = asyncio.run(client.upload(b"jpeg", metadata))

        assert session.calls[0][2]["params"]["name"] == "license-plates/XYZ999_2_20241125T091500.jpg"
        assert session.calls[0][2]["headers"]["Content-Type"] == "image/jpeg"
        assert session.calls[1][2]["json"]["metadata"]["licensePlate"] == "XYZ999"
        assert url.endswith("license-plates%2FXYZ999_2_20241125T091500.jpg?alt=media&token=tok-1")

    def test_list_skips_objects_deleted_meanwhile(self):
        session = FakeSession(
            FakeResponse(200, {"items": [{"name": "license-plates/a.jpg"}, {"name": "license-plates/b.jpg"}]}),
            FakeResponse(404),
            FakeResponse(200, {
                "timeCreated": "2024-11-25T09:15:00Z",
                "metadata": {"licensePlate": "B1", "slotNumber": "3"},
            }),
        )
        client = FirebaseStorageClient("demo.appspot.com", session=session)

        images = asyncio.run(client.list_images())

        assert [(image.name, image.license_plate, image.slot_number) for image in images] == [
            ("b.jpg", "B1", "3")
        ]

    def test_delete_missing_image(self):
        client = FirebaseStorageClient("demo.appspot.com", session=FakeSession(FakeResponse(404)))
        with pytest.raises(ImageNotFoundError):
            asyncio.run(client.delete("gone.jpg"))

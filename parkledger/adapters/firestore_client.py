"""
Firestore REST client implementing the slot, pricing and account stores.

Occupy and release are conditional writes: the document's ``updateTime``
read just before the write is sent back as a ``currentDocument``
precondition, so the write fails if anyone changed the slot in between.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pendulum
import requests

from ..domain.exceptions import AccountNotFoundError, BackendUnavailableError
from ..domain.models import (
    FREED_SLOT_FIELDS,
    Occupancy,
    ParkingSlot,
    PricingConfig,
    UserProfile,
)
from .rest_client import BackendRestClient, TokenProvider, error_message, error_status

logger = logging.getLogger(__name__)

FIRESTORE_API_ENDPOINT = "https://firestore.googleapis.com/v1"


def encode_value(value: Any) -> Dict[str, Any]:
    """Encode a Python value as a Firestore ``Value``."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, (float, Decimal)):
        return {"doubleValue": float(value)}
    if isinstance(value, datetime):
        return {"timestampValue": pendulum.instance(value).in_timezone("UTC").to_iso8601_string()}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(item) for item in value]}}
    raise TypeError(f"Cannot encode {type(value).__name__} for Firestore")


def decode_value(value: Dict[str, Any]) -> Any:
    """Decode a Firestore ``Value`` to a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return value["booleanValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "timestampValue" in value:
        return value["timestampValue"]
    if "stringValue" in value:
        return value["stringValue"]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(item) for item in value["arrayValue"].get("values", [])]
    raise ValueError(f"Unsupported Firestore value: {value}")


def encode_fields(record: Dict[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(item) for key, item in record.items()}


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(item) for key, item in fields.items()}


def document_id(document: Dict[str, Any]) -> str:
    return document["name"].rsplit("/", 1)[-1]


def _is_precondition_failure(response: requests.Response) -> bool:
    if response.status_code in (404, 409):
        return True
    return response.status_code == 400 and error_status(response) == "FAILED_PRECONDITION"


class FirestoreClient(BackendRestClient):
    """
    Client for the Firestore v1 REST API.

    One document per slot in ``parkingSlots``, one pricing document
    ``pricing/default`` and one profile per user in ``users``.
    """

    SERVICE_NAME = "Firestore"
    SLOTS_COLLECTION = "parkingSlots"
    PRICING_COLLECTION = "pricing"
    DEFAULT_PRICING_ID = "default"
    USERS_COLLECTION = "users"
    PAGE_SIZE = 100

    def __init__(
        self,
        project_id: str,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the Firestore client.

        Args:
            project_id: Backend project identifier
            token_provider: Callable returning a valid ID token
            timeout: Per-request timeout in seconds
            session: Optional preconfigured requests session
        """
        super().__init__(token_provider=token_provider, timeout=timeout, session=session)
        self.project_id = project_id
        self.documents_url = (
            f"{FIRESTORE_API_ENDPOINT}/projects/{project_id}/databases/(default)/documents"
        )

    def _document_url(self, collection: str, doc_id: str) -> str:
        return f"{self.documents_url}/{collection}/{doc_id}"

    # Generic document access ---------------------------------------------

    async def _get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        response = await self._call("GET", self._document_url(collection, doc_id), expected=(404,))
        if response.status_code == 404:
            return None
        return response.json()

    async def _list_documents(self, collection: str) -> List[Dict[str, Any]]:
        documents: List[Dict[str, Any]] = []
        page_token = None

        while True:
            params: Dict[str, Any] = {"pageSize": self.PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = await self._call(
                "GET", f"{self.documents_url}/{collection}", params=params
            )
            data = response.json()
            documents.extend(data.get("documents", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return documents

    async def _patch_document(
        self,
        collection: str,
        doc_id: str,
        record: Dict[str, Any],
        *,
        mask: bool = True,
        precondition: Optional[Tuple[str, str]] = None,
    ) -> bool:
        """
        Write fields of one document.

        Returns:
            False if the precondition did not hold, True otherwise
        """
        params: List[Tuple[str, str]] = []
        if mask:
            params.extend(("updateMask.fieldPaths", key) for key in record)
        if precondition is not None:
            params.append(precondition)

        response = await self._call(
            "PATCH",
            self._document_url(collection, doc_id),
            params=params,
            json={"fields": encode_fields(record)},
            expected=(400, 404, 409) if precondition is not None else (),
        )
        if precondition is not None and not response.ok:
            if _is_precondition_failure(response):
                return False
            # any other 400 is a malformed request, not a lost race
            raise BackendUnavailableError(
                f"{self.SERVICE_NAME} returned HTTP {response.status_code}: "
                f"{error_message(response)}"
            )
        return True

    # Slots ---------------------------------------------------------------

    async def list_slots(self) -> List[ParkingSlot]:
        documents = await self._list_documents(self.SLOTS_COLLECTION)
        return [
            ParkingSlot.from_record(document_id(doc), decode_fields(doc.get("fields", {})))
            for doc in documents
        ]

    async def get_slot(self, slot_id: str) -> Optional[ParkingSlot]:
        document = await self._get_document(self.SLOTS_COLLECTION, slot_id)
        if document is None:
            return None
        return ParkingSlot.from_record(slot_id, decode_fields(document.get("fields", {})))

    async def create_slot(self, slot: ParkingSlot) -> bool:
        record = {**slot.to_record(), "createdAt": pendulum.now("UTC"), "updatedAt": pendulum.now("UTC")}
        return await self._patch_document(
            self.SLOTS_COLLECTION,
            slot.id,
            record,
            mask=False,
            precondition=("currentDocument.exists", "false"),
        )

    async def occupy_if_available(self, slot_id: str, occupancy: Occupancy) -> bool:
        document = await self._get_document(self.SLOTS_COLLECTION, slot_id)
        if document is None:
            return False

        slot = ParkingSlot.from_record(slot_id, decode_fields(document.get("fields", {})))
        if slot.occupied:
            return False

        record = {**slot.occupy(occupancy).to_record(), "updatedAt": pendulum.now("UTC")}
        written = await self._patch_document(
            self.SLOTS_COLLECTION,
            slot_id,
            record,
            precondition=("currentDocument.updateTime", document["updateTime"]),
        )
        if not written:
            logger.info("Slot %s changed before it could be occupied", slot_id)
        return written

    async def release_if_occupied_by(self, slot_id: str, owner_id: Optional[str]) -> bool:
        document = await self._get_document(self.SLOTS_COLLECTION, slot_id)
        if document is None:
            return False

        fields = decode_fields(document.get("fields", {}))
        if not fields.get("occupied"):
            return False
        if owner_id is not None and fields.get("userId") != owner_id:
            return False

        written = await self._patch_document(
            self.SLOTS_COLLECTION,
            slot_id,
            {**FREED_SLOT_FIELDS, "updatedAt": pendulum.now("UTC")},
            precondition=("currentDocument.updateTime", document["updateTime"]),
        )
        if not written:
            logger.info("Slot %s changed before it could be released", slot_id)
        return written

    async def release_all(self) -> int:
        documents = await self._list_documents(self.SLOTS_COLLECTION)
        if not documents:
            return 0

        freed = {**FREED_SLOT_FIELDS, "updatedAt": pendulum.now("UTC")}
        writes = [
            {
                "update": {"name": doc["name"], "fields": encode_fields(freed)},
                "updateMask": {"fieldPaths": list(freed)},
                "currentDocument": {"exists": True},
            }
            for doc in documents
        ]
        await self._call("POST", f"{self.documents_url}:commit", json={"writes": writes})

        return sum(
            1 for doc in documents
            if decode_fields(doc.get("fields", {})).get("occupied")
        )

    # Pricing -------------------------------------------------------------

    async def get_pricing(self) -> Optional[PricingConfig]:
        document = await self._get_document(self.PRICING_COLLECTION, self.DEFAULT_PRICING_ID)
        if document is None:
            return None
        return PricingConfig.from_record(decode_fields(document.get("fields", {})))

    async def save_pricing(self, pricing: PricingConfig) -> None:
        record = pricing.to_record()
        record["updatedAt"] = pricing.updated_at or pendulum.now("UTC")
        await self._patch_document(
            self.PRICING_COLLECTION, self.DEFAULT_PRICING_ID, record, mask=False
        )

    # Accounts ------------------------------------------------------------

    async def get_profile(self, uid: str) -> Optional[UserProfile]:
        document = await self._get_document(self.USERS_COLLECTION, uid)
        if document is None:
            return None
        return UserProfile.from_record(decode_fields(document.get("fields", {})))

    async def find_by_email(self, email: str) -> Optional[UserProfile]:
        query = {
            "structuredQuery": {
                "from": [{"collectionId": self.USERS_COLLECTION}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": "email"},
                        "op": "EQUAL",
                        "value": {"stringValue": email},
                    }
                },
                "limit": 1,
            }
        }
        response = await self._call("POST", f"{self.documents_url}:runQuery", json=query)

        for row in response.json():
            document = row.get("document")
            if document:
                return UserProfile.from_record(decode_fields(document.get("fields", {})))
        return None

    async def create_profile(self, profile: UserProfile) -> None:
        record = profile.to_record()
        record["createdAt"] = profile.created_at or pendulum.now("UTC")
        await self._patch_document(self.USERS_COLLECTION, profile.uid, record, mask=False)

    async def set_balance(self, uid: str, balance: Decimal) -> None:
        written = await self._patch_document(
            self.USERS_COLLECTION,
            uid,
            {"balance": balance},
            precondition=("currentDocument.exists", "true"),
        )
        if not written:
            raise AccountNotFoundError(f"No account found for user id '{uid}'.")

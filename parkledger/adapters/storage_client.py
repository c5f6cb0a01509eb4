"""
Blob storage REST client for license-plate photos.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import pendulum
import requests

from ..domain.exceptions import ImageNotFoundError
from ..domain.models import ImageMetadata, StoredImage
from .rest_client import BackendRestClient, TokenProvider

logger = logging.getLogger(__name__)

STORAGE_API_ENDPOINT = "https://firebasestorage.googleapis.com/v0/b"


class FirebaseStorageClient(BackendRestClient):
    """
    Client for the Firebase Storage v0 REST API.

    Photos live under ``license-plates/`` and carry the plate, vehicle
    type, slot number and capture time as custom metadata.
    """

    SERVICE_NAME = "Storage"
    IMAGES_PATH = "license-plates"

    def __init__(
        self,
        bucket: str,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(token_provider=token_provider, timeout=timeout, session=session)
        self.bucket = bucket
        self.objects_url = f"{STORAGE_API_ENDPOINT}/{bucket}/o"

    def _object_url(self, path: str) -> str:
        return f"{self.objects_url}/{quote(path, safe='')}"

    def _download_url(self, path: str, metadata: Dict[str, Any]) -> str:
        url = f"{self._object_url(path)}?alt=media"
        token = (metadata.get("downloadTokens") or "").split(",")[0]
        if token:
            url += f"&token={token}"
        return url

    async def upload(self, data: bytes, metadata: ImageMetadata) -> str:
        """
        Upload a JPEG and attach its custom metadata.

        Returns:
            Download URL of the stored object
        """
        path = f"{self.IMAGES_PATH}/{metadata.object_name()}"

        await self._call(
            "POST",
            self.objects_url,
            params={"uploadType": "media", "name": path},
            data=data,
            headers={"Content-Type": "image/jpeg"},
        )
        response = await self._call(
            "PATCH",
            self._object_url(path),
            json={"metadata": metadata.to_custom_metadata()},
        )

        url = self._download_url(path, response.json())
        logger.info("Image uploaded successfully: %s", path)
        return url

    async def _list_paths(self) -> List[str]:
        paths: List[str] = []
        page_token = None

        while True:
            params = {"prefix": f"{self.IMAGES_PATH}/", "delimiter": "/"}
            if page_token:
                params["pageToken"] = page_token
            response = await self._call("GET", self.objects_url, params=params)
            data = response.json()
            paths.extend(item["name"] for item in data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return paths

    async def list_images(self) -> List[StoredImage]:
        images: List[StoredImage] = []

        for path in await self._list_paths():
            response = await self._call("GET", self._object_url(path), expected=(404,))
            if response.status_code == 404:
                # deleted between listing and reading its metadata
                continue

            info = response.json()
            custom = info.get("metadata") or {}
            images.append(
                StoredImage(
                    name=path.rsplit("/", 1)[-1],
                    url=self._download_url(path, info),
                    timestamp=pendulum.parse(info["timeCreated"]),
                    license_plate=custom.get("licensePlate"),
                    vehicle_type=custom.get("vehicleType"),
                    slot_number=custom.get("slotNumber"),
                )
            )

        return images

    async def delete(self, name: str) -> None:
        path = f"{self.IMAGES_PATH}/{name}"
        response = await self._call("DELETE", self._object_url(path), expected=(404,))
        if response.status_code == 404:
            raise ImageNotFoundError(f"Stored image '{name}' not found.")

    async def delete_all(self) -> int:
        paths = await self._list_paths()
        for path in paths:
            await self._call("DELETE", self._object_url(path), expected=(404,))
        return len(paths)

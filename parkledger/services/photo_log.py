"""
Browsing and cleanup of captured license-plate photos.
"""

from __future__ import annotations

import logging
from typing import List, Protocol

from ..domain.models import ImageMetadata, StoredImage

logger = logging.getLogger(__name__)


class ImageStoreProtocol(Protocol):
    """Protocol describing the blob storage behaviour needed by the services."""

    async def upload(self, data: bytes, metadata: ImageMetadata) -> str:
        """Store the image and return its retrieval URL."""

    async def list_images(self) -> List[StoredImage]:
        """Return every stored image."""

    async def delete(self, name: str) -> None:
        """Delete one image by object name."""

    async def delete_all(self) -> int:
        """Delete every image and return how many were removed."""


class PhotoLogService:

    def __init__(self, image_store: ImageStoreProtocol) -> None:
        self._image_store = image_store

    async def list_images(self) -> List[StoredImage]:
        """Return stored photos, newest first."""
        images = await self._image_store.list_images()
        return sorted(images, key=lambda image: image.timestamp, reverse=True)

    async def delete_image(self, name: str) -> None:
        await self._image_store.delete(name)
        logger.info("Deleted image %s", name)

    async def delete_all(self) -> int:
        removed = await self._image_store.delete_all()
        logger.info("Deleted %d image(s)", removed)
        return removed

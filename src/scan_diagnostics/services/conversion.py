"""Conversion of uploads into stored raster images."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID, uuid4

from scan_diagnostics.domain.images import ConversionResult, RasterImage, UploadedImage
from scan_diagnostics.domain.sessions import ImageRef
from scan_diagnostics.errors import ConversionError

_logger = logging.getLogger(__name__)


class RasterConverter(Protocol):
    """Interface for turning DICOM or raster bytes into a normalized image."""

    def convert(self, data: bytes, filename: str) -> ConversionResult:
        """Return the converted image or a failed result."""


class ImageStore(Protocol):
    """Storage interface for converted raster images."""

    def save_image(
        self, session_id: UUID, image_id: str, data: bytes, content_type: str
    ) -> str:
        """Store image bytes and return their storage key."""

    def load_image(self, storage_key: str) -> bytes:
        """Return the image bytes stored under a key."""


@dataclass
class ConversionService:
    """Converts uploads and keeps the resulting rasters in the image store."""

    converter: RasterConverter
    image_store: ImageStore

    async def convert_upload(self, session_id: UUID, upload: UploadedImage) -> ImageRef:
        """Convert and store one upload, raising ConversionError on failure."""
        try:
            result = await asyncio.to_thread(
                self.converter.convert, upload.data, upload.filename
            )
        except Exception as exc:
            raise ConversionError(upload.filename, str(exc)) from exc
        if not result.success or result.raster_bytes is None:
            raise ConversionError(upload.filename, result.error or "Conversion failed")

        image_id = uuid4().hex
        content_type = result.content_type or "image/png"
        try:
            storage_key = self.image_store.save_image(
                session_id, image_id, result.raster_bytes, content_type
            )
        except Exception as exc:
            _logger.exception(
                "Failed to store converted image", extra={"upload": upload.filename}
            )
            raise ConversionError(
                upload.filename, "Failed to store converted image"
            ) from exc
        return ImageRef(
            id=image_id,
            filename=upload.filename,
            storage_key=storage_key,
            content_type=content_type,
            is_dicom=result.is_dicom,
            metadata=result.metadata,
        )

    def load_images(self, images: list[ImageRef]) -> list[RasterImage]:
        """Load the stored rasters for a list of references."""
        return [
            RasterImage(
                image_id=image.id,
                filename=image.filename,
                content_type=image.content_type,
                data=self.image_store.load_image(image.storage_key),
            )
            for image in images
        ]

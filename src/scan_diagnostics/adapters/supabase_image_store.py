"""Supabase Storage bucket for converted images."""

from dataclasses import dataclass
from uuid import UUID

from supabase import Client

from scan_diagnostics.services.conversion import ImageStore

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg"}


@dataclass
class SupabaseImageStore(ImageStore):
    """Stores raster images as objects keyed by session and image id."""

    client: Client
    bucket: str

    def save_image(
        self, session_id: UUID, image_id: str, data: bytes, content_type: str
    ) -> str:
        """Upload image bytes and return the object path."""
        extension = _EXTENSIONS.get(content_type, "png")
        path = f"{session_id}/{image_id}.{extension}"
        self.client.storage.from_(self.bucket).upload(
            path, data, file_options={"content-type": content_type}
        )
        return path

    def load_image(self, storage_key: str) -> bytes:
        """Download the object stored at a path."""
        return self.client.storage.from_(self.bucket).download(storage_key)

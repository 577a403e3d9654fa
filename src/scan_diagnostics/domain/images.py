"""Domain models for uploaded and converted images."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class UploadedImage:
    """Raw file received from an upload."""

    filename: str
    data: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting one upload to a raster image."""

    success: bool
    raster_bytes: bytes | None = None
    content_type: str | None = None
    is_dicom: bool = False
    metadata: dict[str, object] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class RasterImage:
    """Converted image loaded for analysis."""

    image_id: str
    filename: str
    content_type: str
    data: bytes

"""DICOM and raster image conversion backed by pydicom and Pillow."""

import io
from dataclasses import dataclass

import numpy as np
import pydicom
from PIL import Image, UnidentifiedImageError
from pydicom.multival import MultiValue

from scan_diagnostics.domain.images import ConversionResult
from scan_diagnostics.services.conversion import RasterConverter

DICOM_EXTENSIONS = (".dcm", ".dicom")
_PASSTHROUGH_FORMATS = {"PNG": "image/png", "JPEG": "image/jpeg"}
_DICM_OFFSET = 128


def is_dicom(data: bytes, filename: str) -> bool:
    """Return true for DICOM part 10 data or a DICOM file extension."""
    if data[_DICM_OFFSET : _DICM_OFFSET + 4] == b"DICM":
        return True
    return filename.lower().endswith(DICOM_EXTENSIONS)


@dataclass(frozen=True)
class PydicomRasterConverter(RasterConverter):
    """Converts DICOM scans to PNG and normalizes other raster formats."""

    def convert(self, data: bytes, filename: str) -> ConversionResult:
        """Convert one file, reporting failures in the result."""
        if not data:
            return ConversionResult(success=False, error="Empty file")
        if is_dicom(data, filename):
            return _convert_dicom(data)
        return _convert_raster(data)


def _convert_dicom(data: bytes) -> ConversionResult:
    try:
        dataset = pydicom.dcmread(io.BytesIO(data), force=True)
    except Exception as exc:  # noqa: BLE001
        return ConversionResult(
            success=False, is_dicom=True, error=f"DICOM conversion failed: {exc}"
        )
    if "PixelData" not in dataset:
        return ConversionResult(
            success=False, is_dicom=True, error="No pixel data found in DICOM file"
        )
    try:
        pixels = dataset.pixel_array
        image = _pixels_to_image(
            pixels, str(dataset.get("PhotometricInterpretation", ""))
        )
    except Exception as exc:  # noqa: BLE001
        return ConversionResult(
            success=False, is_dicom=True, error=f"DICOM conversion failed: {exc}"
        )

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return ConversionResult(
        success=True,
        raster_bytes=buffer.getvalue(),
        content_type="image/png",
        is_dicom=True,
        metadata=_dicom_metadata(dataset, image),
    )


def _convert_raster(data: bytes) -> ConversionResult:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            image_format = image.format or ""
            metadata: dict[str, object] = {
                "width": image.width,
                "height": image.height,
                "format": image_format,
            }
            if image_format in _PASSTHROUGH_FORMATS:
                return ConversionResult(
                    success=True,
                    raster_bytes=data,
                    content_type=_PASSTHROUGH_FORMATS[image_format],
                    metadata=metadata,
                )
            buffer = io.BytesIO()
            _to_png_mode(image).save(buffer, format="PNG")
    except UnidentifiedImageError:
        return ConversionResult(success=False, error="Unsupported file type")
    except Exception as exc:  # noqa: BLE001
        return ConversionResult(success=False, error=f"Image conversion failed: {exc}")
    return ConversionResult(
        success=True,
        raster_bytes=buffer.getvalue(),
        content_type="image/png",
        metadata=metadata,
    )


def _pixels_to_image(pixels: np.ndarray, photometric: str) -> Image.Image:
    """Normalize a pixel array to an 8-bit grayscale or RGB image."""
    arr = np.asarray(pixels)
    if arr.ndim == 4:
        # Multi-frame colour: keep the first frame.
        arr = arr[0]
    if arr.ndim == 3 and arr.shape[-1] != 3:
        # Multi-frame grayscale: keep the first frame.
        arr = arr[0]
    if arr.ndim == 3:
        return Image.fromarray(_normalize(arr))
    if arr.ndim != 2:
        raise ValueError(f"Unsupported pixel array shape: {arr.shape}")
    gray = _normalize(arr)
    if photometric.upper() == "MONOCHROME1":
        gray = 255 - gray
    return Image.fromarray(gray)


def _normalize(arr: np.ndarray) -> np.ndarray:
    """Scale values linearly into 0-255 using the array's min and max."""
    data = arr.astype(np.float32)
    lo = float(np.min(data))
    hi = float(np.max(data))
    if hi <= lo:
        return np.zeros(data.shape, dtype=np.uint8)
    scaled = (data - lo) / (hi - lo)
    return np.round(scaled * 255.0).astype(np.uint8)


def _to_png_mode(image: Image.Image) -> Image.Image:
    if image.mode in {"1", "L", "LA", "RGB", "RGBA", "P"}:
        return image
    if image.mode.startswith("I"):
        return Image.fromarray(_normalize(np.asarray(image)))
    return image.convert("RGB")


def _dicom_metadata(dataset: pydicom.Dataset, image: Image.Image) -> dict[str, object]:
    metadata: dict[str, object] = {"width": image.width, "height": image.height}
    for keyword, key in (
        ("Modality", "modality"),
        ("StudyDescription", "study_description"),
        ("SeriesDescription", "series_description"),
        ("StudyDate", "study_date"),
        ("InstanceNumber", "instance_number"),
    ):
        value = dataset.get(keyword)
        if value not in (None, ""):
            metadata[key] = str(value)
    spacing = dataset.get("PixelSpacing")
    if spacing:
        metadata["pixel_spacing"] = [float(value) for value in spacing]
    for keyword, key in (
        ("WindowCenter", "window_center"),
        ("WindowWidth", "window_width"),
    ):
        value = _first_float(dataset.get(keyword))
        if value is not None:
            metadata[key] = value
    return metadata


def _first_float(value: object) -> float | None:
    if isinstance(value, MultiValue):
        value = value[0] if len(value) else None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None

"""Batch analysis requests against a vision-capable model."""

import base64
from dataclasses import dataclass
from typing import Protocol

from scan_diagnostics.domain.images import RasterImage
from scan_diagnostics.errors import AnalysisTransientError


class AnalysisClient(Protocol):
    """Interface for the external image analysis model."""

    async def analyze(
        self,
        *,
        model: str,
        prompt: str,
        image_data_urls: list[str],
        max_output_tokens: int,
    ) -> str:
        """Return free-text analysis for the images."""


@dataclass
class AnalysisService:
    """Service that prepares analysis prompts and payloads for a batch."""

    client: AnalysisClient
    model: str
    max_output_tokens: int = 4000

    async def analyze(
        self, images: list[RasterImage], batch_index: int, total_batches: int
    ) -> str:
        """Analyse one batch of raster images and return the model's text."""
        prompt = build_medical_prompt(batch_index + 1, total_batches)
        text = await self.client.analyze(
            model=self.model,
            prompt=prompt,
            image_data_urls=[_to_data_url(image) for image in images],
            max_output_tokens=self.max_output_tokens,
        )
        if not text or not text.strip():
            raise AnalysisTransientError("Analysis service returned no text")
        return text


def build_medical_prompt(batch_number: int, total_batches: int) -> str:
    """Return the radiology prompt for batch ``batch_number`` of ``total_batches``."""
    return (
        "You are an expert radiologist analyzing medical images. "
        f"This is batch {batch_number} of {total_batches}.\n\n"
        "Please provide a comprehensive diagnostic analysis including:\n\n"
        "1. **Image Quality Assessment**: Evaluate technical quality, positioning, "
        "and diagnostic adequacy\n"
        "2. **Anatomical Structures**: Identify and describe relevant anatomical "
        "structures visible\n"
        "3. **Pathological Findings**: Detail any abnormalities, lesions, or "
        "pathological changes observed\n"
        "4. **Differential Diagnosis**: List potential diagnoses based on imaging "
        "findings\n"
        "5. **Recommendations**: Suggest additional imaging, follow-up, or "
        "clinical correlation if needed\n"
        "6. **Urgency Assessment**: Indicate if findings require immediate "
        "attention\n\n"
        "Under the findings and recommendations headings, list each item on its "
        "own line starting with '- ' and end each list with a blank line. "
        "Be thorough but concise, using appropriate medical terminology. "
        "If this is part of a multi-batch analysis, focus on the findings in these "
        "specific images while noting any patterns that may relate to the "
        "overall case."
    )


def _to_data_url(image: RasterImage) -> str:
    """Convert a raster image to a base64 data URL."""
    mime_type = image.content_type or _detect_mime_type(image.data)
    encoded = base64.b64encode(image.data).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def _detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"

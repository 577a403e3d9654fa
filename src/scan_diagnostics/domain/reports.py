"""Domain models for the aggregated diagnostic report."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from scan_diagnostics.domain.sessions import BatchError


class Severity(str, Enum):
    """Coarse clinical urgency, from least to most urgent."""

    NORMAL = "normal"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)


def highest_severity(severities: list[Severity]) -> Severity:
    """Return the most urgent severity, or normal for an empty list."""
    return max(severities, key=lambda severity: severity.rank, default=Severity.NORMAL)


class BatchSummary(BaseModel):
    """Condensed view of one successfully analysed batch."""

    batch_index: int
    batch_number: int
    image_count: int
    key_findings: list[str]
    severity: Severity
    processing_seconds: float
    attempts: int


class ReportSection(BaseModel):
    """Detailed analysis section for one batch."""

    title: str
    content: str
    findings: list[str]
    recommendations: list[str]


class ProcessingStats(BaseModel):
    """Timing and success statistics over all batches."""

    total_processing_seconds: float
    average_batch_seconds: float
    success_rate: float


class ReportMetadata(BaseModel):
    """Context about how the report was produced."""

    analysis_model: str
    processing_method: str = "Batch Analysis"
    image_formats: list[str] = Field(
        default_factory=lambda: ["DICOM", "PNG", "JPEG", "BMP", "TIFF"]
    )
    batch_size: int
    started_at: datetime
    completed_at: datetime | None


class DiagnosticReport(BaseModel):
    """Terminal artifact of a session."""

    session_id: UUID
    generated_at: datetime
    total_images: int
    total_batches: int
    successful_batches: int
    failed_batches: int
    overall_severity: Severity
    executive_summary: str
    findings: list[str]
    batch_summaries: list[BatchSummary]
    detailed_findings: list[ReportSection]
    recommendations: list[str]
    errors: list[BatchError]
    processing_stats: ProcessingStats
    metadata: ReportMetadata

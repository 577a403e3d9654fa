"""Terminal outcomes of a batch analysis."""

from dataclasses import dataclass


@dataclass(frozen=True)
class BatchSuccess:
    """Analysis text returned for a batch."""

    batch_index: int
    image_count: int
    analysis_text: str
    duration_seconds: float
    attempts: int


@dataclass(frozen=True)
class BatchFailure:
    """Recorded failure for a batch that exhausted its retries."""

    batch_index: int
    image_count: int
    error_message: str
    attempts: int
    duration_seconds: float


BatchOutcome = BatchSuccess | BatchFailure

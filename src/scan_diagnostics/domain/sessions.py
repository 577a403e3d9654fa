"""Domain models for diagnostic sessions and their batches."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from scan_diagnostics.errors import InvalidTransitionError


class SessionStatus(str, Enum):
    """Lifecycle states of a session, in forward order."""

    UPLOADING = "uploading"
    CONVERTING = "converting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class BatchStatus(str, Enum):
    """Lifecycle states of a batch."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


_STATUS_ORDER = [
    SessionStatus.UPLOADING,
    SessionStatus.CONVERTING,
    SessionStatus.PROCESSING,
    SessionStatus.COMPLETED,
]
TERMINAL_STATUSES = {SessionStatus.COMPLETED, SessionStatus.ERROR}
TERMINAL_BATCH_STATUSES = {BatchStatus.COMPLETED, BatchStatus.ERROR}


class ImageRef(BaseModel):
    """Reference to a converted image held in the image store."""

    id: str
    filename: str
    storage_key: str
    content_type: str
    is_dicom: bool = False
    metadata: dict[str, object] = Field(default_factory=dict)


class ConversionFailure(BaseModel):
    """Upload that could not be converted and was left out of batching."""

    filename: str
    error: str


class BatchRecord(BaseModel):
    """Contiguous slice of a session's images analysed together."""

    index: int
    image_ids: list[str]
    status: BatchStatus = BatchStatus.PENDING
    attempts: int = 0
    duration_seconds: float = 0.0
    analysis: str | None = None
    error: str | None = None

    @property
    def image_count(self) -> int:
        return len(self.image_ids)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES


class BatchError(BaseModel):
    """Error recorded for a batch that failed all of its attempts."""

    batch_index: int
    batch_number: int
    message: str
    timestamp: datetime


class SessionRecord(BaseModel):
    """Persisted state of one upload and its analysis."""

    id: UUID
    status: SessionStatus = SessionStatus.UPLOADING
    batch_size: int
    uploaded_images: int = 0
    images: list[ImageRef] = Field(default_factory=list)
    conversion_failures: list[ConversionFailure] = Field(default_factory=list)
    batches: list[BatchRecord] = Field(default_factory=list)
    errors: list[BatchError] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime | None = None
    error_message: str | None = None
    report_ready: bool = False
    worker_id: str | None = None
    heartbeat_at: datetime | None = None

    @property
    def total_images(self) -> int:
        return len(self.images)

    @property
    def total_batches(self) -> int:
        return len(self.batches)

    @property
    def processed_images(self) -> int:
        return sum(batch.image_count for batch in self.batches if batch.is_terminal)

    @property
    def completed_batches(self) -> int:
        return sum(1 for batch in self.batches if batch.is_terminal)

    @property
    def current_batch(self) -> int:
        """Return the 1-based number of the batch in flight or last finished."""
        for batch in self.batches:
            if not batch.is_terminal:
                return batch.index + 1
        return len(self.batches)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SessionSnapshot(BaseModel):
    """Point-in-time view of a session for status polling."""

    session_id: UUID
    status: SessionStatus
    uploaded_images: int
    total_images: int
    processed_images: int
    current_batch: int
    total_batches: int
    completed_batches: int
    progress: float
    conversion_failures: list[ConversionFailure]
    errors: list[BatchError]
    started_at: datetime
    completed_at: datetime | None
    message: str
    report_url: str | None = None


def transition(session: SessionRecord, status: SessionStatus) -> None:
    """Move a session forward to a new status."""
    current = session.status
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Session {session.id} is {current.value} and cannot change"
        )
    if status == SessionStatus.ERROR:
        session.status = status
        return
    if status == SessionStatus.COMPLETED and current != SessionStatus.PROCESSING:
        raise InvalidTransitionError(
            f"Session {session.id} can only complete from processing"
        )
    if _STATUS_ORDER.index(status) <= _STATUS_ORDER.index(current):
        raise InvalidTransitionError(
            f"Session {session.id} cannot move from {current.value} to {status.value}"
        )
    session.status = status


def build_snapshot(session: SessionRecord) -> SessionSnapshot:
    """Return a status snapshot for a session."""
    total_batches = session.total_batches
    progress = (
        session.completed_batches / total_batches * 100 if total_batches else 0.0
    )
    if session.status == SessionStatus.COMPLETED:
        progress = 100.0
    return SessionSnapshot(
        session_id=session.id,
        status=session.status,
        uploaded_images=session.uploaded_images,
        total_images=session.total_images,
        processed_images=session.processed_images,
        current_batch=session.current_batch,
        total_batches=total_batches,
        completed_batches=session.completed_batches,
        progress=round(progress, 1),
        conversion_failures=list(session.conversion_failures),
        errors=list(session.errors),
        started_at=session.started_at,
        completed_at=session.completed_at,
        message=_status_message(session),
        report_url=(
            f"/sessions/{session.id}/report" if session.report_ready else None
        ),
    )


def _status_message(session: SessionRecord) -> str:
    if session.status == SessionStatus.UPLOADING:
        return f"Received {session.uploaded_images} files"
    if session.status == SessionStatus.CONVERTING:
        return f"Converting {session.uploaded_images} files"
    if session.status == SessionStatus.PROCESSING:
        return (
            f"Analyzing batch {session.current_batch} of {session.total_batches}"
        )
    if session.status == SessionStatus.COMPLETED:
        failed = len(session.errors)
        if failed:
            return f"Analysis completed with {failed} failed batches"
        return "Analysis completed"
    return session.error_message or "Session failed"

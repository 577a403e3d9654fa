"""Session orchestration for batched image analysis."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Protocol
from uuid import UUID, uuid4

from scan_diagnostics.domain.batches import BatchFailure, BatchOutcome, BatchSuccess
from scan_diagnostics.domain.images import RasterImage, UploadedImage
from scan_diagnostics.domain.reports import DiagnosticReport
from scan_diagnostics.domain.sessions import (
    BatchError,
    BatchRecord,
    BatchStatus,
    ConversionFailure,
    ImageRef,
    SessionRecord,
    SessionSnapshot,
    SessionStatus,
    build_snapshot,
    transition,
)
from scan_diagnostics.errors import (
    ConfigurationError,
    ConversionError,
    InvalidTransitionError,
    SessionBusyError,
    SessionNotFoundError,
)
from scan_diagnostics.services.analysis import AnalysisService
from scan_diagnostics.services.batching import split_batches
from scan_diagnostics.services.conversion import ConversionService
from scan_diagnostics.services.reports import ReportAggregator
from scan_diagnostics.services.retry import BatchExecutor, RetryPolicy, Sleep

if TYPE_CHECKING:
    from scan_diagnostics.config import Settings

_logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Session cancelled"
RESTART_REQUIRED_MESSAGE = (
    "Session was interrupted before conversion finished; "
    "please upload the images again"
)


class SessionRepository(Protocol):
    """Persistence interface for session state."""

    def create_session(self, session: SessionRecord) -> None:
        """Persist a new session."""

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        """Return a session by id, if present."""

    def save_session(self, session: SessionRecord) -> bool:
        """Checkpoint the full state of a session.

        Returns False without writing when the stored session is already
        completed or failed.
        """

    def list_sessions(self, limit: int) -> list[SessionRecord]:
        """Return the most recently updated sessions."""


class ReportRepository(Protocol):
    """Persistence interface for diagnostic reports."""

    def save_report(self, report: DiagnosticReport) -> None:
        """Persist the report for a session, replacing any earlier one."""

    def get_report(self, session_id: UUID) -> DiagnosticReport | None:
        """Return the report for a session, if present."""


class ProgressListener(Protocol):
    """Receives a snapshot after every batch and status change."""

    async def on_progress(self, snapshot: SessionSnapshot) -> None:
        """Handle a progress notification."""


@dataclass
class LoggingProgressListener(ProgressListener):
    """Progress listener that writes progress to the application log."""

    async def on_progress(self, snapshot: SessionSnapshot) -> None:
        """Log the snapshot."""
        _logger.info(
            "Session %s %s: batch %s/%s, %s/%s images, %s errors",
            snapshot.session_id,
            snapshot.status.value,
            snapshot.completed_batches,
            snapshot.total_batches,
            snapshot.processed_images,
            snapshot.total_images,
            len(snapshot.errors),
        )


@dataclass(frozen=True)
class PipelineOptions:
    """Batching, pacing, retry and worker lease options for a session."""

    batch_size: int = 20
    max_images: int = 200
    inter_batch_delay_seconds: float = 2.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    worker_lease_seconds: float = 1200.0

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PipelineOptions":
        """Build pipeline options from application settings."""
        return cls(
            batch_size=settings.batch_size,
            max_images=settings.max_images_per_session,
            inter_batch_delay_seconds=settings.inter_batch_delay_seconds,
            retry=RetryPolicy(
                max_retries=settings.max_retries,
                base_delay_seconds=settings.retry_base_delay_seconds,
                request_timeout_seconds=settings.analysis_timeout_seconds,
            ),
            worker_lease_seconds=settings.worker_lease_seconds,
        )

    def validate(self) -> None:
        """Raise ConfigurationError for unusable options."""
        if self.batch_size < 1:
            raise ConfigurationError(
                f"Batch size must be at least 1, got {self.batch_size}"
            )
        if self.max_images < 1:
            raise ConfigurationError(
                f"Image limit must be at least 1, got {self.max_images}"
            )
        if self.inter_batch_delay_seconds < 0:
            raise ConfigurationError("Inter-batch delay must not be negative")
        self.retry.validate()
        # Heartbeats are written between batches only.
        longest_gap = max(
            self.retry.worst_case_seconds(), self.inter_batch_delay_seconds
        )
        if self.worker_lease_seconds <= longest_gap:
            raise ConfigurationError(
                f"Worker lease of {self.worker_lease_seconds:g} seconds must exceed "
                f"the longest batch of {longest_gap:g} seconds"
            )


class ReportStatus(str, Enum):
    """Result of looking up a session's report."""

    FOUND = "found"
    NOT_READY = "not_ready"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ReportLookup:
    """Report lookup result with the session status when known."""

    status: ReportStatus
    report: DiagnosticReport | None = None
    session_status: SessionStatus | None = None


@dataclass
class SessionOrchestrator:
    """Drives sessions from upload to report over persisted session state.

    The orchestrator keeps no per-session state in memory: every operation
    loads the session by id, applies one step and checkpoints it, so a
    session can be polled, cancelled or resumed from another worker.

    A worker owns a session through a lease (``worker_id`` and
    ``heartbeat_at``) refreshed at every checkpoint. Only the lease holder
    dispatches batches, and a session can be taken over once its lease has
    expired.
    """

    session_repository: SessionRepository
    report_repository: ReportRepository
    conversion_service: ConversionService
    analysis_service: AnalysisService
    aggregator: ReportAggregator
    options: PipelineOptions = field(default_factory=PipelineOptions)
    progress_listener: ProgressListener = field(
        default_factory=LoggingProgressListener
    )
    sleep: Sleep = asyncio.sleep
    clock: Callable[[], float] = time.monotonic
    now: Callable[[], datetime] = lambda: datetime.now(tz=UTC)

    def create_session(self, uploads: list[UploadedImage]) -> SessionRecord:
        """Persist a new session for the uploads.

        Missing uploads, too many uploads or invalid options move the session
        straight to error.
        """
        session = SessionRecord(
            id=uuid4(),
            batch_size=self.options.batch_size,
            uploaded_images=len(uploads),
            started_at=self.now(),
        )
        self.session_repository.create_session(session)
        try:
            self.options.validate()
            if not uploads:
                raise ConfigurationError("No images provided for processing")
            if len(uploads) > self.options.max_images:
                raise ConfigurationError(
                    f"Maximum {self.options.max_images} images allowed per session, "
                    f"got {len(uploads)}"
                )
        except ConfigurationError as exc:
            _logger.warning("Rejected session %s: %s", session.id, exc)
            self._fail(session, str(exc))
        return session

    async def run_session(
        self, session_id: UUID, uploads: list[UploadedImage]
    ) -> SessionRecord:
        """Convert the uploads and analyse them to completion."""
        worker_id: str | None = None
        try:
            session = await self.convert_images(session_id, uploads)
            worker_id = session.worker_id
            if session.status != SessionStatus.CONVERTING or worker_id is None:
                return session
            return await self.process_session(session_id, worker_id=worker_id)
        except Exception as exc:
            return self._abort(session_id, exc, worker_id)

    async def convert_images(
        self, session_id: UUID, uploads: list[UploadedImage]
    ) -> SessionRecord:
        """Take the session lease and convert every upload, dropping failures."""
        session = self._load(session_id)
        if session.is_terminal:
            return session
        transition(session, SessionStatus.CONVERTING)
        self._claim(session)
        await self._notify(session)

        images: list[ImageRef] = []
        failures: list[ConversionFailure] = []
        for upload in uploads:
            try:
                images.append(
                    await self.conversion_service.convert_upload(session.id, upload)
                )
            except ConversionError as exc:
                _logger.warning("Conversion failed for %s: %s", upload.filename, exc)
                failures.append(
                    ConversionFailure(filename=exc.filename, error=exc.message)
                )

        session.images = images
        session.conversion_failures = failures
        if not self._owns(session):
            return self._load(session_id)
        if not images:
            self._fail(session, "No images could be converted successfully")
            return session
        if not self._checkpoint(session):
            return self._load(session_id)
        _logger.info(
            "Session %s converted %s images, %s failed",
            session.id,
            len(images),
            len(failures),
        )
        return session

    async def process_session(self, session_id: UUID, *, worker_id: str) -> SessionRecord:
        """Analyse every pending batch in order, then build the report.

        ``worker_id`` must hold the session lease; a worker that lost the
        lease returns the stored session without dispatching anything.
        """
        session = self._load(session_id)
        if session.is_terminal:
            return session
        if session.status not in (SessionStatus.CONVERTING, SessionStatus.PROCESSING):
            raise InvalidTransitionError(
                f"Session {session.id} cannot be processed while "
                f"{session.status.value}"
            )
        if session.worker_id != worker_id:
            _logger.warning("Session %s is leased by another worker", session.id)
            return session

        if session.status == SessionStatus.CONVERTING:
            try:
                session.batches = split_batches(session.images, session.batch_size)
            except ConfigurationError as exc:
                self._fail(session, str(exc))
                return session
            transition(session, SessionStatus.PROCESSING)
            if not self._checkpoint(session):
                return self._load(session_id)
            await self._notify(session)

        executor = BatchExecutor(
            analyze=self.analysis_service.analyze,
            policy=self.options.retry,
            sleep=self.sleep,
            clock=self.clock,
        )
        images_by_id = {image.id: image for image in session.images}
        pending = [batch for batch in session.batches if not batch.is_terminal]
        for position, batch in enumerate(pending):
            if position > 0:
                await self.sleep(self.options.inter_batch_delay_seconds)
            batch.status = BatchStatus.PROCESSING
            if not self._checkpoint(session):
                _logger.info("Session %s stopped before batch %s", session.id, batch.index)
                return self._load(session_id)

            outcome = await self._run_batch(
                executor,
                batch,
                [images_by_id[image_id] for image_id in batch.image_ids],
                session.total_batches,
            )
            self._apply_outcome(session, batch, outcome)
            if not self._checkpoint(session):
                return self._load(session_id)
            await self._notify(session)

        return await self._complete(session)

    def cancel_session(self, session_id: UUID) -> SessionRecord:
        """Abandon a session; dispatch stops before its next batch."""
        session = self._load(session_id)
        if not session.is_terminal:
            self._fail(session, CANCELLED_MESSAGE)
            _logger.info("Session %s cancelled", session.id)
        return session

    def claim_session(self, session_id: UUID) -> SessionRecord:
        """Take over an interrupted session whose worker lease has expired.

        Raises SessionBusyError while another worker holds a live lease.
        Sessions interrupted before their images were stored are failed.
        """
        session = self._load(session_id)
        if session.is_terminal:
            return session
        if not self._lease_expired(session):
            raise SessionBusyError(
                f"Session {session.id} is still being processed by another worker"
            )
        if session.status == SessionStatus.PROCESSING or (
            session.status == SessionStatus.CONVERTING and session.images
        ):
            self._claim(session)
            _logger.info("Session %s claimed by worker %s", session.id, session.worker_id)
            return session
        self._fail(session, RESTART_REQUIRED_MESSAGE)
        return session

    async def resume_session(self, session_id: UUID) -> SessionRecord:
        """Continue an interrupted session from its first unfinished batch."""
        session = self.claim_session(session_id)
        if session.is_terminal or session.worker_id is None:
            return session
        return await self.continue_session(session_id, worker_id=session.worker_id)

    async def continue_session(self, session_id: UUID, *, worker_id: str) -> SessionRecord:
        """Process a claimed session, failing it on unexpected errors."""
        try:
            return await self.process_session(session_id, worker_id=worker_id)
        except Exception as exc:
            return self._abort(session_id, exc, worker_id)

    def get_status(self, session_id: UUID) -> SessionSnapshot | None:
        """Return a status snapshot, if the session exists."""
        session = self.session_repository.get_session(session_id)
        return build_snapshot(session) if session else None

    def list_sessions(self, limit: int = 20) -> list[SessionSnapshot]:
        """Return snapshots of recent sessions."""
        return [
            build_snapshot(session)
            for session in self.session_repository.list_sessions(limit)
        ]

    def get_report(self, session_id: UUID) -> ReportLookup:
        """Return the report when the session has completed."""
        session = self.session_repository.get_session(session_id)
        if session is None:
            return ReportLookup(status=ReportStatus.NOT_FOUND)
        if session.status != SessionStatus.COMPLETED:
            return ReportLookup(
                status=ReportStatus.NOT_READY, session_status=session.status
            )
        report = self.report_repository.get_report(session_id)
        if report is None:
            return ReportLookup(
                status=ReportStatus.NOT_FOUND, session_status=session.status
            )
        return ReportLookup(
            status=ReportStatus.FOUND, report=report, session_status=session.status
        )

    async def _run_batch(
        self,
        executor: BatchExecutor,
        batch: BatchRecord,
        images: list[ImageRef],
        total_batches: int,
    ) -> BatchOutcome:
        try:
            rasters: list[RasterImage] = await asyncio.to_thread(
                self.conversion_service.load_images, images
            )
        except Exception as exc:
            _logger.exception("Failed to load images for batch %s", batch.index)
            return BatchFailure(
                batch_index=batch.index,
                image_count=batch.image_count,
                error_message=f"Failed to load images: {exc}",
                attempts=0,
                duration_seconds=0.0,
            )
        return await executor.execute(batch, rasters, total_batches)

    def _apply_outcome(
        self, session: SessionRecord, batch: BatchRecord, outcome: BatchOutcome
    ) -> None:
        batch.attempts = outcome.attempts
        batch.duration_seconds = outcome.duration_seconds
        if isinstance(outcome, BatchSuccess):
            batch.status = BatchStatus.COMPLETED
            batch.analysis = outcome.analysis_text
            batch.error = None
            return
        batch.status = BatchStatus.ERROR
        batch.analysis = None
        batch.error = outcome.error_message
        session.errors.append(
            BatchError(
                batch_index=batch.index,
                batch_number=batch.index + 1,
                message=outcome.error_message,
                timestamp=self.now(),
            )
        )

    async def _complete(self, session: SessionRecord) -> SessionRecord:
        if not self._owns(session):
            return self._load(session.id)
        report = self.report_repository.get_report(session.id)
        if report is None:
            session.completed_at = self.now()
            outcomes = [_batch_outcome(batch) for batch in session.batches]
            report = self.aggregator.aggregate(session, outcomes)
            self.report_repository.save_report(report)
        else:
            # Saved by a worker that stopped before marking the session done.
            session.completed_at = report.metadata.completed_at or self.now()
        session.report_ready = True
        transition(session, SessionStatus.COMPLETED)
        if not self.session_repository.save_session(session):
            return self._load(session.id)
        await self._notify(session)
        _logger.info(
            "Session %s completed: %s/%s batches succeeded, severity %s",
            session.id,
            report.successful_batches,
            report.total_batches,
            report.overall_severity.value,
        )
        return session

    def _claim(self, session: SessionRecord) -> None:
        session.worker_id = uuid4().hex
        session.heartbeat_at = self.now()
        self.session_repository.save_session(session)

    def _owns(self, session: SessionRecord) -> bool:
        """Return whether the stored session is active and leased to this copy."""
        persisted = self.session_repository.get_session(session.id)
        if persisted is None or persisted.is_terminal:
            return False
        return persisted.worker_id == session.worker_id

    def _checkpoint(self, session: SessionRecord) -> bool:
        """Save the session and renew the lease unless it was cancelled or lost."""
        if not self._owns(session):
            return False
        session.heartbeat_at = self.now()
        return self.session_repository.save_session(session)

    def _lease_expired(self, session: SessionRecord) -> bool:
        if session.worker_id is None or session.heartbeat_at is None:
            return True
        age = self.now() - session.heartbeat_at
        return age > timedelta(seconds=self.options.worker_lease_seconds)

    def _abort(
        self, session_id: UUID, exc: Exception, worker_id: str | None
    ) -> SessionRecord:
        _logger.exception(
            "Session processing failed", extra={"session_id": str(session_id)}
        )
        session = self._load(session_id)
        if session.is_terminal:
            return session
        if worker_id is None or session.worker_id == worker_id:
            self._fail(session, f"Processing failed: {exc}")
        return session

    def _fail(self, session: SessionRecord, message: str) -> None:
        transition(session, SessionStatus.ERROR)
        session.error_message = message
        session.completed_at = self.now()
        self.session_repository.save_session(session)

    def _load(self, session_id: UUID) -> SessionRecord:
        session = self.session_repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    async def _notify(self, session: SessionRecord) -> None:
        try:
            await self.progress_listener.on_progress(build_snapshot(session))
        except Exception:
            _logger.exception(
                "Progress notification failed", extra={"session_id": str(session.id)}
            )


def _batch_outcome(batch: BatchRecord) -> BatchOutcome:
    if batch.status == BatchStatus.COMPLETED:
        return BatchSuccess(
            batch_index=batch.index,
            image_count=batch.image_count,
            analysis_text=batch.analysis or "",
            duration_seconds=batch.duration_seconds,
            attempts=batch.attempts,
        )
    return BatchFailure(
        batch_index=batch.index,
        image_count=batch.image_count,
        error_message=batch.error or "Batch was not analyzed",
        attempts=batch.attempts,
        duration_seconds=batch.duration_seconds,
    )

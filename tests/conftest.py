"""Shared test fixtures."""

import asyncio
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID

import pytest

from scan_diagnostics.config import Settings
from scan_diagnostics.containers import AppContainer
from scan_diagnostics.domain.images import ConversionResult, RasterImage, UploadedImage
from scan_diagnostics.domain.reports import DiagnosticReport
from scan_diagnostics.domain.sessions import SessionRecord, SessionSnapshot
from scan_diagnostics.services.analysis import AnalysisClient, AnalysisService
from scan_diagnostics.services.conversion import (
    ConversionService,
    ImageStore,
    RasterConverter,
)
from scan_diagnostics.services.reports import ReportAggregator
from scan_diagnostics.services.retry import RetryPolicy
from scan_diagnostics.services.sessions import (
    PipelineOptions,
    ProgressListener,
    ReportRepository,
    SessionOrchestrator,
    SessionRepository,
)

FIXED_NOW = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)
DEFAULT_ANALYSIS = """Findings:
- No acute abnormality

Recommendations:
- Routine follow-up
"""


@dataclass
class InMemorySessionRepository(SessionRepository):
    """In-memory session repository for tests.

    Copies on every read and write so callers never share state, the way a
    real database round trip behaves. Like the Supabase adapter, saves never
    overwrite a completed or failed session. ``before_save`` runs ahead of
    every save so tests can interleave another writer.
    """

    sessions: dict[UUID, SessionRecord] = field(default_factory=dict)
    saves: int = 0
    before_save: Callable[[SessionRecord], None] | None = None

    def create_session(self, session: SessionRecord) -> None:
        self.sessions[session.id] = session.model_copy(deep=True)

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        session = self.sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    def save_session(self, session: SessionRecord) -> bool:
        if self.before_save is not None:
            self.before_save(session)
        stored = self.sessions.get(session.id)
        if stored is not None and stored.is_terminal:
            return False
        self.saves += 1
        self.sessions.pop(session.id, None)
        self.sessions[session.id] = session.model_copy(deep=True)
        return True

    def list_sessions(self, limit: int) -> list[SessionRecord]:
        recent = list(self.sessions.values())[::-1]
        return [session.model_copy(deep=True) for session in recent[:limit]]


@dataclass
class InMemoryReportRepository(ReportRepository):
    """In-memory report repository for tests."""

    reports: dict[UUID, DiagnosticReport] = field(default_factory=dict)
    saves: int = 0

    def save_report(self, report: DiagnosticReport) -> None:
        self.saves += 1
        self.reports[report.session_id] = report

    def get_report(self, session_id: UUID) -> DiagnosticReport | None:
        return self.reports.get(session_id)


@dataclass
class InMemoryImageStore(ImageStore):
    """In-memory image store for tests."""

    objects: dict[str, bytes] = field(default_factory=dict)
    fail_loads: bool = False

    def save_image(
        self, session_id: UUID, image_id: str, data: bytes, content_type: str
    ) -> str:
        key = f"{session_id}/{image_id}"
        self.objects[key] = data
        return key

    def load_image(self, storage_key: str) -> bytes:
        if self.fail_loads:
            raise OSError("storage unavailable")
        return self.objects[storage_key]


@dataclass
class FakeRasterConverter(RasterConverter):
    """Converter that passes bytes through, failing for chosen filenames."""

    failing: set[str] = field(default_factory=set)

    def convert(self, data: bytes, filename: str) -> ConversionResult:
        if filename in self.failing:
            return ConversionResult(success=False, error="Unsupported file type")
        return ConversionResult(
            success=True,
            raster_bytes=data,
            content_type="image/png",
            metadata={"source": filename},
        )


@dataclass
class FakeAnalysisClient(AnalysisClient):
    """Analysis client that returns scripted responses per batch number.

    Each entry of ``script[batch_number]`` is consumed by one call: strings are
    returned and exceptions raised. Unscripted calls return ``default``.
    A positive ``delay_seconds`` keeps each call in flight on the event loop.
    """

    script: dict[int, list[str | Exception]] = field(default_factory=dict)
    default: str = DEFAULT_ANALYSIS
    calls: list[dict[str, object]] = field(default_factory=list)
    before_call: Callable[[int], None] | None = None
    delay_seconds: float = 0.0
    in_flight: int = 0
    max_in_flight: int = 0

    async def analyze(
        self,
        *,
        model: str,
        prompt: str,
        image_data_urls: list[str],
        max_output_tokens: int,
    ) -> str:
        batch_number = _batch_number(prompt)
        self.calls.append(
            {
                "model": model,
                "prompt": prompt,
                "batch_number": batch_number,
                "image_count": len(image_data_urls),
                "max_output_tokens": max_output_tokens,
            }
        )
        if self.before_call is not None:
            self.before_call(batch_number)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
        finally:
            self.in_flight -= 1
        queued = self.script.get(batch_number)
        if queued:
            item = queued.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.default

    def calls_for(self, batch_number: int) -> int:
        return sum(1 for call in self.calls if call["batch_number"] == batch_number)

    async def close(self) -> None:
        return None


def _batch_number(prompt: str) -> int:
    match = re.search(r"batch (\d+) of", prompt)
    return int(match.group(1)) if match else 0


@dataclass
class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@dataclass
class FakeClock:
    """Monotonic clock that advances a fixed step per reading."""

    step: float = 1.5
    current: float = 0.0

    def __call__(self) -> float:
        value = self.current
        self.current += self.step
        return value


@dataclass
class RecordingProgressListener(ProgressListener):
    """Progress listener that keeps every snapshot."""

    snapshots: list[SessionSnapshot] = field(default_factory=list)

    async def on_progress(self, snapshot: SessionSnapshot) -> None:
        self.snapshots.append(snapshot)


def make_uploads(count: int, prefix: str = "scan") -> list[UploadedImage]:
    return [
        UploadedImage(filename=f"{prefix}_{index:03d}.png", data=f"img-{index}".encode())
        for index in range(count)
    ]


def expire_lease(session: SessionRecord) -> SessionRecord:
    """Age the heartbeat so another worker may take the session over."""
    session.heartbeat_at = FIXED_NOW - timedelta(hours=1)
    return session


def make_raster(index: int = 0, data: bytes = b"\x89PNG\r\n\x1a\nraw") -> RasterImage:
    return RasterImage(
        image_id=f"image-{index}",
        filename=f"scan_{index}.png",
        content_type="image/png",
        data=data,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="header.payload.signature",
        admin_token="admin-token",
        openai_api_key="openai-key",
        inter_batch_delay_seconds=0.0,
        retry_base_delay_seconds=0.0,
    )


@pytest.fixture
def session_repository() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def report_repository() -> InMemoryReportRepository:
    return InMemoryReportRepository()


@pytest.fixture
def image_store() -> InMemoryImageStore:
    return InMemoryImageStore()


@pytest.fixture
def converter() -> FakeRasterConverter:
    return FakeRasterConverter()


@pytest.fixture
def analysis_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def progress_listener() -> RecordingProgressListener:
    return RecordingProgressListener()


@pytest.fixture
def orchestrator(
    session_repository: InMemorySessionRepository,
    report_repository: InMemoryReportRepository,
    image_store: InMemoryImageStore,
    converter: FakeRasterConverter,
    analysis_client: FakeAnalysisClient,
    sleep: RecordingSleep,
    progress_listener: RecordingProgressListener,
) -> SessionOrchestrator:
    return SessionOrchestrator(
        session_repository=session_repository,
        report_repository=report_repository,
        conversion_service=ConversionService(
            converter=converter, image_store=image_store
        ),
        analysis_service=AnalysisService(client=analysis_client, model="test-model"),
        aggregator=ReportAggregator(analysis_model="test-model", now=lambda: FIXED_NOW),
        options=PipelineOptions(
            batch_size=20,
            max_images=200,
            inter_batch_delay_seconds=2.0,
            retry=RetryPolicy(max_retries=3, base_delay_seconds=2.0),
        ),
        progress_listener=progress_listener,
        sleep=sleep,
        clock=FakeClock(),
        now=lambda: FIXED_NOW,
    )


@pytest.fixture
def container(settings: Settings, orchestrator: SessionOrchestrator) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        orchestrator=orchestrator,
        close_resources=close_resources,
    )

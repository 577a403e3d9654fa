"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import NoReturn
from uuid import UUID

from fastapi import (
    BackgroundTasks,
    FastAPI,
    File,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import HTMLResponse, JSONResponse

from scan_diagnostics.api.admin import router as admin_router
from scan_diagnostics.app_logging import configure_logging
from scan_diagnostics.containers import AppContainer
from scan_diagnostics.domain.images import UploadedImage
from scan_diagnostics.domain.reports import DiagnosticReport
from scan_diagnostics.domain.sessions import (
    SessionSnapshot,
    SessionStatus,
    build_snapshot,
)
from scan_diagnostics.errors import SessionNotFoundError
from scan_diagnostics.services.rendering import render_report_html
from scan_diagnostics.services.sessions import ReportStatus, SessionOrchestrator


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(title="Scan Diagnostics", lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/sessions", status_code=status.HTTP_202_ACCEPTED)
    async def create_session(
        request: Request,
        background_tasks: BackgroundTasks,
        files: list[UploadFile] | None = File(default=None),
    ) -> JSONResponse:
        """Accept uploaded scans and start analysis in the background."""
        orchestrator = _orchestrator(request)
        uploads = [
            UploadedImage(
                filename=upload.filename or f"upload_{index}",
                data=await upload.read(),
                content_type=upload.content_type,
            )
            for index, upload in enumerate(files or [])
        ]
        session = orchestrator.create_session(uploads)
        snapshot = build_snapshot(session)
        if session.status == SessionStatus.ERROR:
            logger.warning(
                "Upload rejected",
                extra={"session_id": str(session.id), "reason": session.error_message},
            )
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=snapshot.model_dump(mode="json"),
            )
        background_tasks.add_task(orchestrator.run_session, session.id, uploads)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=snapshot.model_dump(mode="json"),
        )

    @app.get("/sessions/{session_id}/status")
    async def session_status(session_id: UUID, request: Request) -> SessionSnapshot:
        """Return a point-in-time status snapshot."""
        snapshot = _orchestrator(request).get_status(session_id)
        return snapshot or _missing(session_id)

    @app.get("/sessions/{session_id}/report")
    async def session_report(session_id: UUID, request: Request) -> DiagnosticReport:
        """Return the diagnostic report of a completed session."""
        return _completed_report(_orchestrator(request), session_id)

    @app.get("/sessions/{session_id}/report.html", response_class=HTMLResponse)
    async def session_report_html(session_id: UUID, request: Request) -> HTMLResponse:
        """Return a printable HTML version of the report."""
        report = _completed_report(_orchestrator(request), session_id)
        return HTMLResponse(render_report_html(report))

    @app.post("/sessions/{session_id}/cancel")
    async def cancel_session(session_id: UUID, request: Request) -> SessionSnapshot:
        """Abandon a session before its next batch."""
        orchestrator = _orchestrator(request)
        try:
            orchestrator.cancel_session(session_id)
        except SessionNotFoundError:
            _missing(session_id)
        return orchestrator.get_status(session_id) or _missing(session_id)

    return app


def _orchestrator(request: Request) -> SessionOrchestrator:
    container: AppContainer = request.app.state.container
    return container.orchestrator


def _completed_report(
    orchestrator: SessionOrchestrator, session_id: UUID
) -> DiagnosticReport:
    lookup = orchestrator.get_report(session_id)
    if lookup.status == ReportStatus.NOT_READY:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Report not ready",
                "status": lookup.session_status.value if lookup.session_status else None,
            },
        )
    if lookup.report is None:
        _missing(session_id)
    return lookup.report


def _missing(session_id: UUID) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Session {session_id} not found",
    )

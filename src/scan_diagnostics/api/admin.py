"""Admin API endpoints with simple token auth."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Request,
    status,
)
from fastapi.responses import HTMLResponse, JSONResponse

from scan_diagnostics.domain.sessions import TERMINAL_STATUSES, build_snapshot
from scan_diagnostics.errors import SessionBusyError

if TYPE_CHECKING:
    from scan_diagnostics.containers import AppContainer

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health() -> dict[str, str]:
    """Admin health check endpoint."""
    return {"status": "ok"}


@router.get("/sessions", dependencies=[Depends(require_admin)])
async def list_sessions(request: Request, limit: int = 20) -> dict[str, object]:
    """Return recent diagnostic sessions."""
    container: AppContainer = request.app.state.container
    snapshots = container.orchestrator.list_sessions(limit)
    return {"sessions": [snapshot.model_dump(mode="json") for snapshot in snapshots]}


@router.post("/sessions/{session_id}/resume", dependencies=[Depends(require_admin)])
async def resume_session(
    session_id: UUID, request: Request, background_tasks: BackgroundTasks
) -> JSONResponse:
    """Continue an interrupted session from its first unfinished batch."""
    container: AppContainer = request.app.state.container
    orchestrator = container.orchestrator
    snapshot = orchestrator.get_status(session_id)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found",
        )
    if snapshot.status in TERMINAL_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Session is {snapshot.status.value} and cannot be resumed",
        )
    try:
        session = orchestrator.claim_session(session_id)
    except SessionBusyError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    if session.is_terminal or session.worker_id is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=session.error_message or "Session cannot be resumed",
        )
    _logger.info("Resuming session %s", session_id)
    background_tasks.add_task(
        orchestrator.continue_session, session_id, worker_id=session.worker_id
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=build_snapshot(session).model_dump(mode="json"),
    )


@router.get("/ui", response_class=HTMLResponse)
async def admin_ui() -> HTMLResponse:
    """Minimal admin UI that consumes the admin API."""
    return HTMLResponse(_ADMIN_UI_HTML)


_ADMIN_UI_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Scan Diagnostics Admin</title>
    <style>
      body { font-family: ui-sans-serif, system-ui, sans-serif; margin: 2rem; }
      .row { margin-bottom: 1rem; }
      input { padding: 0.4rem 0.6rem; width: 320px; }
      button { padding: 0.4rem 0.8rem; }
      pre { background: #f6f6f6; padding: 1rem; overflow: auto; }
    </style>
  </head>
  <body>
    <h1>Scan Diagnostics Admin</h1>
    <div class="row">
      <input id="token" type="password" placeholder="X-Admin-Token" />
      <button onclick="loadSessions()">Sessions</button>
    </div>
    <pre id="output">Ready.</pre>
    <script>
      async function loadSessions() {
        const token = document.getElementById('token').value;
        const output = document.getElementById('output');
        const res = await fetch('/admin/sessions', {
          headers: { 'X-Admin-Token': token }
        });
        if (!res.ok) {
          output.textContent = 'Error: ' + res.status;
          return;
        }
        output.textContent = JSON.stringify(await res.json(), null, 2);
      }
    </script>
  </body>
</html>
"""

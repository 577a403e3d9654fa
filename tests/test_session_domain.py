"""Tests for session status transitions and snapshots."""

from uuid import uuid4

import pytest

from scan_diagnostics.domain.sessions import (
    BatchRecord,
    BatchStatus,
    SessionRecord,
    SessionStatus,
    build_snapshot,
    transition,
)
from scan_diagnostics.errors import InvalidTransitionError
from tests.conftest import FIXED_NOW


def _session(status: SessionStatus = SessionStatus.UPLOADING) -> SessionRecord:
    return SessionRecord(
        id=uuid4(), status=status, batch_size=20, uploaded_images=3, started_at=FIXED_NOW
    )


def test_transition_moves_forward() -> None:
    session = _session()

    transition(session, SessionStatus.CONVERTING)
    transition(session, SessionStatus.PROCESSING)
    transition(session, SessionStatus.COMPLETED)

    assert session.status == SessionStatus.COMPLETED


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (SessionStatus.PROCESSING, SessionStatus.CONVERTING),
        (SessionStatus.CONVERTING, SessionStatus.CONVERTING),
        (SessionStatus.CONVERTING, SessionStatus.COMPLETED),
        (SessionStatus.COMPLETED, SessionStatus.ERROR),
        (SessionStatus.ERROR, SessionStatus.PROCESSING),
    ],
)
def test_transition_rejects_invalid_moves(
    current: SessionStatus, target: SessionStatus
) -> None:
    session = _session(current)

    with pytest.raises(InvalidTransitionError):
        transition(session, target)

    assert session.status == current


@pytest.mark.parametrize(
    "current",
    [SessionStatus.UPLOADING, SessionStatus.CONVERTING, SessionStatus.PROCESSING],
)
def test_transition_to_error_from_any_active_status(current: SessionStatus) -> None:
    session = _session(current)

    transition(session, SessionStatus.ERROR)

    assert session.status == SessionStatus.ERROR


def test_snapshot_reports_batch_progress() -> None:
    session = _session(SessionStatus.PROCESSING)
    session.batches = [
        BatchRecord(index=0, image_ids=["a", "b"], status=BatchStatus.COMPLETED),
        BatchRecord(index=1, image_ids=["c", "d"], status=BatchStatus.ERROR),
        BatchRecord(index=2, image_ids=["e"], status=BatchStatus.PROCESSING),
        BatchRecord(index=3, image_ids=["f"]),
    ]

    snapshot = build_snapshot(session)

    assert snapshot.total_batches == 4
    assert snapshot.completed_batches == 2
    assert snapshot.processed_images == 4
    assert snapshot.current_batch == 3
    assert snapshot.progress == 50.0
    assert snapshot.message == "Analyzing batch 3 of 4"
    assert snapshot.report_url is None


def test_snapshot_of_new_session() -> None:
    snapshot = build_snapshot(_session())

    assert snapshot.progress == 0.0
    assert snapshot.current_batch == 0
    assert snapshot.message == "Received 3 files"

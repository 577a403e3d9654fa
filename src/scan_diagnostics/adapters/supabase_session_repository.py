"""Supabase-backed session repository."""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from supabase import Client

from scan_diagnostics.domain.sessions import (
    TERMINAL_STATUSES,
    SessionRecord,
    SessionStatus,
)
from scan_diagnostics.services.sessions import SessionRepository

_TABLE = "diagnostic_sessions"
_ACTIVE_STATUSES = [
    status.value for status in SessionStatus if status not in TERMINAL_STATUSES
]


@dataclass
class SupabaseSessionRepository(SessionRepository):
    """Supabase implementation for session state checkpoints."""

    client: Client

    def create_session(self, session: SessionRecord) -> None:
        """Insert a session row."""
        response = (
            self.client.table(_TABLE)
            .insert(
                {
                    "id": str(session.id),
                    "status": session.status.value,
                    "state_json": session.model_dump(mode="json"),
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create session")

    def get_session(self, session_id: UUID) -> SessionRecord | None:
        """Return a session by id, if present."""
        response = (
            self.client.table(_TABLE)
            .select("id, status, state_json")
            .eq("id", str(session_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return SessionRecord.model_validate(response.data[0]["state_json"])

    def save_session(self, session: SessionRecord) -> bool:
        """Overwrite the stored state of a session that is still active.

        The status filter makes the update a no-op once the stored row is
        completed or failed, so a concurrent cancel is never overwritten.
        """
        response = (
            self.client.table(_TABLE)
            .update(
                {
                    "status": session.status.value,
                    "state_json": session.model_dump(mode="json"),
                    "updated_at": datetime.now(tz=UTC).isoformat(),
                }
            )
            .eq("id", str(session.id))
            .in_("status", _ACTIVE_STATUSES)
            .execute()
        )
        return bool(response.data)

    def list_sessions(self, limit: int) -> list[SessionRecord]:
        """Return recently updated sessions."""
        response = (
            self.client.table(_TABLE)
            .select("id, status, state_json")
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [
            SessionRecord.model_validate(row["state_json"])
            for row in response.data or []
        ]

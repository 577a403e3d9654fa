"""Supabase-backed diagnostic report repository."""

from dataclasses import dataclass
from uuid import UUID

from supabase import Client

from scan_diagnostics.domain.reports import DiagnosticReport
from scan_diagnostics.services.sessions import ReportRepository

_TABLE = "diagnostic_reports"


@dataclass
class SupabaseReportRepository(ReportRepository):
    """Supabase implementation for report persistence."""

    client: Client

    def save_report(self, report: DiagnosticReport) -> None:
        """Write the report row for a session, replacing an earlier one."""
        response = (
            self.client.table(_TABLE)
            .upsert(
                {
                    "session_id": str(report.session_id),
                    "overall_severity": report.overall_severity.value,
                    "report_json": report.model_dump(mode="json"),
                },
                on_conflict="session_id",
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to save report")

    def get_report(self, session_id: UUID) -> DiagnosticReport | None:
        """Return the report for a session, if present."""
        response = (
            self.client.table(_TABLE)
            .select("session_id, report_json")
            .eq("session_id", str(session_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return DiagnosticReport.model_validate(response.data[0]["report_json"])

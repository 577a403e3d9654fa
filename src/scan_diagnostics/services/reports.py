"""Aggregation of batch outcomes into a diagnostic report."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from scan_diagnostics.domain.batches import BatchFailure, BatchOutcome, BatchSuccess
from scan_diagnostics.domain.reports import (
    BatchSummary,
    DiagnosticReport,
    ProcessingStats,
    ReportMetadata,
    ReportSection,
    Severity,
    highest_severity,
)
from scan_diagnostics.domain.sessions import BatchError, SessionRecord
from scan_diagnostics.services.extraction import (
    KeywordStructureExtractor,
    TextStructureExtractor,
)

GENERAL_RECOMMENDATIONS = [
    "Follow up with referring physician to discuss findings",
    "Consider correlation with clinical symptoms and history",
    "Maintain regular monitoring schedule as clinically indicated",
]
NO_RESULT_RECOMMENDATIONS = [
    "Unable to generate recommendations due to processing failures.",
    "Consider re-uploading images and ensuring proper DICOM format.",
]
NO_RESULT_SUMMARY = (
    "No successful analyses completed. Please review errors and retry processing."
)
KEY_FINDINGS_PER_BATCH = 3
PRIORITY_FINDINGS_PER_BATCH = 2
PRIORITY_FINDINGS_TOTAL = 3
_PRIORITY_SEVERITIES = {Severity.CRITICAL, Severity.SEVERE}


@dataclass(frozen=True)
class _AnalyzedBatch:
    outcome: BatchSuccess
    findings: list[str]
    recommendations: list[str]
    severity: Severity


@dataclass
class ReportAggregator:
    """Builds one diagnostic report from every batch outcome of a session."""

    analysis_model: str
    extractor: TextStructureExtractor = field(
        default_factory=KeywordStructureExtractor
    )
    now: Callable[[], datetime] = lambda: datetime.now(tz=UTC)

    def aggregate(
        self, session: SessionRecord, outcomes: Sequence[BatchOutcome]
    ) -> DiagnosticReport:
        """Return the report for ``session`` given its ordered batch outcomes."""
        ordered = sorted(outcomes, key=lambda outcome: outcome.batch_index)
        successes = [item for item in ordered if isinstance(item, BatchSuccess)]
        failures = [item for item in ordered if isinstance(item, BatchFailure)]
        analyzed = [self._analyze(outcome) for outcome in successes]

        total_batches = len(ordered)
        total_seconds = sum(outcome.duration_seconds for outcome in ordered)
        success_rate = len(successes) / total_batches * 100 if total_batches else 0.0
        overall = highest_severity([item.severity for item in analyzed])

        return DiagnosticReport(
            session_id=session.id,
            generated_at=self.now(),
            total_images=session.total_images,
            total_batches=total_batches,
            successful_batches=len(successes),
            failed_batches=len(failures),
            overall_severity=overall,
            executive_summary=_executive_summary(
                session.total_images, total_batches, overall, analyzed, failures
            ),
            findings=[finding for item in analyzed for finding in item.findings],
            batch_summaries=[_batch_summary(item) for item in analyzed],
            detailed_findings=[_report_section(item) for item in analyzed],
            recommendations=_recommendations(analyzed, failures),
            errors=_error_records(session, failures),
            processing_stats=ProcessingStats(
                total_processing_seconds=round(total_seconds, 3),
                average_batch_seconds=(
                    round(total_seconds / total_batches, 3) if total_batches else 0.0
                ),
                success_rate=success_rate,
            ),
            metadata=ReportMetadata(
                analysis_model=self.analysis_model,
                batch_size=session.batch_size,
                started_at=session.started_at,
                completed_at=session.completed_at,
            ),
        )

    def _analyze(self, outcome: BatchSuccess) -> _AnalyzedBatch:
        text = outcome.analysis_text
        return _AnalyzedBatch(
            outcome=outcome,
            findings=self.extractor.extract_findings(text),
            recommendations=self.extractor.extract_recommendations(text),
            severity=self.extractor.classify_severity(text),
        )


def _batch_summary(item: _AnalyzedBatch) -> BatchSummary:
    return BatchSummary(
        batch_index=item.outcome.batch_index,
        batch_number=item.outcome.batch_index + 1,
        image_count=item.outcome.image_count,
        key_findings=item.findings[:KEY_FINDINGS_PER_BATCH],
        severity=item.severity,
        processing_seconds=round(item.outcome.duration_seconds, 3),
        attempts=item.outcome.attempts,
    )


def _report_section(item: _AnalyzedBatch) -> ReportSection:
    outcome = item.outcome
    return ReportSection(
        title=(
            f"Image Series {outcome.batch_index + 1} Analysis "
            f"({outcome.image_count} images)"
        ),
        content=outcome.analysis_text,
        findings=item.findings,
        recommendations=item.recommendations,
    )


def _executive_summary(
    total_images: int,
    total_batches: int,
    overall: Severity,
    analyzed: list[_AnalyzedBatch],
    failures: list[BatchFailure],
) -> str:
    if not analyzed:
        return NO_RESULT_SUMMARY

    parts = [
        f"Comprehensive radiological analysis of {total_images} medical images "
        f"across {total_batches} image batches."
    ]
    if overall in _PRIORITY_SEVERITIES:
        parts.append(
            f"PRIORITY: {overall.value.upper()} findings detected "
            "requiring immediate attention."
        )
    priority_findings = [
        finding
        for item in analyzed
        if item.severity in _PRIORITY_SEVERITIES
        for finding in item.findings[:PRIORITY_FINDINGS_PER_BATCH]
    ][:PRIORITY_FINDINGS_TOTAL]
    if priority_findings:
        parts.append(f"Key concerns include: {', '.join(priority_findings)}.")
    if failures:
        parts.append(
            f"{len(failures)} of {total_batches} batches failed analysis "
            "and require manual review."
        )
    parts.append("Detailed analysis and recommendations provided in the sections below.")
    return " ".join(parts)


def _recommendations(
    analyzed: list[_AnalyzedBatch], failures: list[BatchFailure]
) -> list[str]:
    if not analyzed:
        return list(NO_RESULT_RECOMMENDATIONS)

    recommendations = list(
        dict.fromkeys(
            recommendation
            for item in analyzed
            for recommendation in item.recommendations
        )
    )
    if failures:
        recommendations.append(
            f"Note: {len(failures)} batches failed processing "
            "and may require manual review."
        )
    recommendations.extend(GENERAL_RECOMMENDATIONS)
    return recommendations


def _error_records(
    session: SessionRecord, failures: list[BatchFailure]
) -> list[BatchError]:
    recorded = {error.batch_index: error for error in session.errors}
    fallback_time = session.completed_at or session.started_at
    return [
        BatchError(
            batch_index=failure.batch_index,
            batch_number=failure.batch_index + 1,
            message=failure.error_message,
            timestamp=(
                recorded[failure.batch_index].timestamp
                if failure.batch_index in recorded
                else fallback_time
            ),
        )
        for failure in failures
    ]

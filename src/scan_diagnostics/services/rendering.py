"""Printable HTML rendering of diagnostic reports."""

from datetime import datetime
from html import escape

from scan_diagnostics.domain.reports import DiagnosticReport, Severity

SEVERITY_COLORS = {
    Severity.NORMAL: "#10b981",
    Severity.MILD: "#f59e0b",
    Severity.MODERATE: "#f97316",
    Severity.SEVERE: "#ef4444",
    Severity.CRITICAL: "#dc2626",
}


def render_report_html(report: DiagnosticReport) -> str:
    """Render a report as a standalone HTML document."""
    batch_cards = "".join(
        _BATCH_CARD.format(
            number=summary.batch_number,
            image_count=summary.image_count,
            color=SEVERITY_COLORS[summary.severity],
            severity=summary.severity.value.upper(),
            findings=_list_items(summary.key_findings),
        )
        for summary in report.batch_summaries
    )
    sections = "".join(
        _SECTION.format(
            title=escape(section.title),
            content=escape(section.content).replace("\n", "<br>"),
            findings=(
                f"<h4>Key Findings:</h4><ul>{_list_items(section.findings)}</ul>"
                if section.findings
                else ""
            ),
        )
        for section in report.detailed_findings
    )
    errors = "".join(
        f"<li>Batch {error.batch_number}: {escape(error.message)}</li>"
        for error in report.errors
    )
    return _DOCUMENT.format(
        session_id=report.session_id,
        generated_at=_format_timestamp(report.generated_at),
        total_images=report.total_images,
        processing_seconds=round(report.processing_stats.total_processing_seconds),
        success_rate=f"{report.processing_stats.success_rate:.1f}",
        overall_color=SEVERITY_COLORS[report.overall_severity],
        overall=report.overall_severity.value.upper(),
        summary=escape(report.executive_summary),
        batch_cards=batch_cards,
        sections=sections,
        errors=(
            f'<div class="section"><h2>Processing Errors</h2><ul>{errors}</ul></div>'
            if errors
            else ""
        ),
        recommendations=_list_items(report.recommendations),
        model=escape(report.metadata.analysis_model),
    )


def _list_items(values: list[str]) -> str:
    return "".join(f"<li>{escape(value)}</li>" for value in values)


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%B %d, %Y %H:%M %Z").strip()


_BATCH_CARD = """
<div class="batch-card">
  <h3>Batch {number}</h3>
  <p><strong>Images:</strong> {image_count}</p>
  <span class="severity-badge" style="background-color: {color}">{severity}</span>
  <ul class="findings-list">{findings}</ul>
</div>"""

_SECTION = """
<div class="detail">
  <h3>{title}</h3>
  <div class="content">{content}</div>
  {findings}
</div>"""

_DOCUMENT = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Diagnostic Report - {session_id}</title>
    <style>
      body {{ font-family: ui-sans-serif, system-ui, sans-serif; margin: 2rem;
        line-height: 1.6; background: #f8fafc; }}
      .container {{ max-width: 1200px; margin: 0 auto; background: white;
        padding: 2.5rem; border-radius: 8px; }}
      .header {{ border-bottom: 3px solid #3b82f6; margin-bottom: 2rem; }}
      .summary {{ background: #eff6ff; padding: 1.25rem;
        border-left: 4px solid #3b82f6; }}
      .batch-grid {{ display: grid; gap: 1.25rem;
        grid-template-columns: repeat(auto-fit, minmax(300px, 1fr)); }}
      .batch-card {{ background: #f9fafb; padding: 1.25rem;
        border: 1px solid #e5e7eb; border-radius: 8px; }}
      .severity-badge {{ display: inline-block; padding: 4px 12px; color: white;
        border-radius: 20px; font-size: 0.8em; font-weight: bold; }}
      .content {{ background: #f9fafb; padding: 1rem; border-radius: 6px; }}
      .recommendations {{ background: #f0fdf4; padding: 1.25rem;
        border-left: 4px solid #10b981; }}
      .section {{ margin-bottom: 2rem; }}
      .footer {{ text-align: center; color: #6b7280; font-size: 0.8em; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header">
        <h1>Radiological Diagnostic Report</h1>
        <p>
          <strong>Session ID:</strong> {session_id}<br />
          <strong>Generated:</strong> {generated_at}<br />
          <strong>Total Images:</strong> {total_images} |
          <strong>Processing Time:</strong> {processing_seconds}s |
          <strong>Success Rate:</strong> {success_rate}%
        </p>
        <span class="severity-badge" style="background-color: {overall_color}"
          >{overall}</span
        >
      </div>
      <div class="summary section">
        <h2>Executive Summary</h2>
        <p>{summary}</p>
      </div>
      <div class="section">
        <h2>Batch Analysis Overview</h2>
        <div class="batch-grid">{batch_cards}</div>
      </div>
      <div class="section">
        <h2>Detailed Findings</h2>
        {sections}
      </div>
      {errors}
      <div class="recommendations section">
        <h2>Clinical Recommendations</h2>
        <ul>{recommendations}</ul>
      </div>
      <div class="footer">
        <p>
          This report was generated using AI-assisted analysis ({model}) and
          should be reviewed by a qualified radiologist.
        </p>
      </div>
    </div>
  </body>
</html>
"""

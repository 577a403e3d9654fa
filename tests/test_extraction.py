"""Tests for keyword-based structure extraction."""

from scan_diagnostics.domain.reports import Severity
from scan_diagnostics.services.extraction import (
    EMPTY_ANALYSIS_FINDING,
    KeywordStructureExtractor,
)

ANALYSIS = """## Image Quality
Adequate positioning.

**Pathological Findings**:
- Small nodule in the right upper lobe
* Mild pleural thickening
1. No effusion

## Recommendations
- Follow-up CT in 6 months
- Clinical correlation
"""


def test_extract_findings_collects_list_items_under_heading() -> None:
    extractor = KeywordStructureExtractor()

    findings = extractor.extract_findings(ANALYSIS)

    assert findings == [
        "Small nodule in the right upper lobe",
        "Mild pleural thickening",
        "No effusion",
    ]


def test_extract_findings_accepts_observations_heading() -> None:
    text = "Observations:\n- Clear lung fields\n- Normal heart size\n"

    assert KeywordStructureExtractor().extract_findings(text) == [
        "Clear lung fields",
        "Normal heart size",
    ]


def test_extract_findings_blank_line_ends_section() -> None:
    text = "Findings:\n- First\n\n- Not part of findings\n"

    assert KeywordStructureExtractor().extract_findings(text) == ["First"]


def test_extract_findings_ignores_bold_lines() -> None:
    text = "Findings:\n**Lungs** clear\n- Nodule\n"

    assert KeywordStructureExtractor().extract_findings(text) == ["Nodule"]


def test_extract_findings_falls_back_to_truncated_preview() -> None:
    text = "x" * 250

    findings = KeywordStructureExtractor().extract_findings(text)

    assert findings == ["x" * 200 + "..."]


def test_extract_findings_short_text_preview_is_not_truncated() -> None:
    assert KeywordStructureExtractor().extract_findings("  Unremarkable study.  ") == [
        "Unremarkable study."
    ]


def test_extract_findings_blank_text() -> None:
    assert KeywordStructureExtractor().extract_findings("   ") == [
        EMPTY_ANALYSIS_FINDING
    ]


def test_extract_recommendations() -> None:
    extractor = KeywordStructureExtractor()

    assert extractor.extract_recommendations(ANALYSIS) == [
        "Follow-up CT in 6 months",
        "Clinical correlation",
    ]
    assert extractor.extract_recommendations("Findings:\n- nodule\n") == []


def test_classify_severity_first_matching_group_wins() -> None:
    extractor = KeywordStructureExtractor()

    assert extractor.classify_severity("URGENT review; mild changes") == Severity.CRITICAL
    assert extractor.classify_severity("Significant narrowing") == Severity.SEVERE
    assert extractor.classify_severity("Concerning opacity") == Severity.MODERATE
    assert extractor.classify_severity("slight asymmetry") == Severity.MILD
    assert extractor.classify_severity("Unremarkable") == Severity.NORMAL

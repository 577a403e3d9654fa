"""Structure extraction from free-text analysis output."""

import re
from dataclasses import dataclass
from typing import Protocol

from scan_diagnostics.domain.reports import Severity

PREVIEW_LENGTH = 200
EMPTY_ANALYSIS_FINDING = "No analysis available"

_FINDINGS_MARKERS = ("findings", "observations")
_RECOMMENDATION_MARKERS = ("recommendation", "suggest")
_LIST_ITEM = re.compile(r"^(?:[-*•]|\d+[.)])\s+")

# Checked in order; the first matching group wins.
_SEVERITY_KEYWORDS: list[tuple[Severity, tuple[str, ...]]] = [
    (Severity.CRITICAL, ("critical", "emergency", "urgent")),
    (Severity.SEVERE, ("severe", "significant")),
    (Severity.MODERATE, ("moderate", "concerning")),
    (Severity.MILD, ("mild", "minor", "slight")),
]


class TextStructureExtractor(Protocol):
    """Turns analysis text into findings, recommendations and severity."""

    def extract_findings(self, text: str) -> list[str]:
        """Return findings, falling back to a preview of the text."""

    def extract_recommendations(self, text: str) -> list[str]:
        """Return recommendations; may be empty."""

    def classify_severity(self, text: str) -> Severity:
        """Return the severity implied by the text."""


@dataclass(frozen=True)
class KeywordStructureExtractor(TextStructureExtractor):
    """Line and keyword scanning over markdown-like model output."""

    preview_length: int = PREVIEW_LENGTH

    def extract_findings(self, text: str) -> list[str]:
        """Collect list items under a findings or observations heading."""
        findings = _collect_section_items(text, _FINDINGS_MARKERS)
        if findings:
            return findings
        preview = text.strip()
        if not preview:
            return [EMPTY_ANALYSIS_FINDING]
        if len(preview) > self.preview_length:
            return [preview[: self.preview_length] + "..."]
        return [preview]

    def extract_recommendations(self, text: str) -> list[str]:
        """Collect list items under a recommendation heading."""
        return _collect_section_items(text, _RECOMMENDATION_MARKERS)

    def classify_severity(self, text: str) -> Severity:
        """Return the first severity whose keywords appear in the text."""
        lowered = text.lower()
        for severity, keywords in _SEVERITY_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return severity
        return Severity.NORMAL


def _collect_section_items(text: str, markers: tuple[str, ...]) -> list[str]:
    items: list[str] = []
    in_section = False
    for line in text.splitlines():
        stripped = line.strip()
        lowered = stripped.lower()
        if any(marker in lowered for marker in markers):
            in_section = True
            continue
        if not in_section:
            continue
        if not stripped:
            in_section = False
            continue
        if _LIST_ITEM.match(stripped):
            item = _LIST_ITEM.sub("", stripped, count=1).strip()
            if item:
                items.append(item)
    return items

from __future__ import annotations

from collections import Counter
from typing import Dict, List, Optional, Sequence

from core.assessment.models import (
    STATUS_FAIL,
    STATUS_INFO,
    STATUS_PASS,
    STATUS_WARN,
    AssessmentSummary,
    Finding,
)


# lowest to highest
SEVERITY_ORDER: Dict[str, int] = {
    STATUS_INFO: 0,
    STATUS_PASS: 1,
    STATUS_WARN: 2,
    STATUS_FAIL: 3,
}


# fixed policy, not configurable per profile
SCORE_WEIGHTS: Dict[str, int] = {
    STATUS_PASS: 100,
    STATUS_INFO: 80,
    STATUS_WARN: 50,
    STATUS_FAIL: 0,
}


SCORE_BANDS = [
    (80, 100, "Healthy"),
    (50, 79, "Warning"),
    (0, 49, "Critical"),
]


def filter_by_severity(findings: Sequence[Finding], min_severity: str) -> List[Finding]:
    """
    Keep findings whose status is at or above `min_severity`, preserving order.
    An empty or unrecognised threshold keeps everything.
    """
    min_level = SEVERITY_ORDER.get(min_severity)
    if min_level is None:
        return list(findings)
    return [f for f in findings if SEVERITY_ORDER.get(f.status, -1) >= min_level]


def calculate_summary(findings: Sequence[Finding], profile_name: str) -> AssessmentSummary:
    counts = Counter(f.status for f in findings)
    summary = AssessmentSummary(
        total_checks=len(findings),
        pass_count=counts[STATUS_PASS],
        warn_count=counts[STATUS_WARN],
        fail_count=counts[STATUS_FAIL],
        info_count=counts[STATUS_INFO],
        profile_used=profile_name,
    )

    if summary.total_checks > 0:
        weighted = sum(SCORE_WEIGHTS[status] * n for status, n in counts.items())
        summary.score = weighted // summary.total_checks

    return summary


def interpret(score: Optional[int]) -> str:
    if score is None:
        return "Unknown"
    for lo, hi, label in SCORE_BANDS:
        if lo <= score <= hi:
            return label
    # fallback
    return SCORE_BANDS[-1][2]


def sort_findings(findings: Sequence[Finding]) -> List[Finding]:
    """Stable (category, id) order so repeated runs produce comparable reports."""
    return sorted(findings, key=lambda f: (f.category, f.id))


def count_by(findings: Sequence[Finding], key: str) -> Dict[str, Dict[str, int]]:
    """Status counts grouped by a Finding attribute, e.g. "validator" or "category"."""
    grouped: Dict[str, Dict[str, int]] = {}
    for f in findings:
        bucket = grouped.setdefault(getattr(f, key), {s: 0 for s in SEVERITY_ORDER})
        bucket[f.status] += 1
    return grouped

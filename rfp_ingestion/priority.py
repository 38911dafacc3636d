"""
priority.py — Keyword-based priority tagging for questions.

Rules are evaluated in order and the first match wins, so a question that
says both "must" and "should" is high priority. Matching is a plain
substring test on the lower-cased text ("mustard" counts as "must").
"""

from __future__ import annotations

from typing import Tuple

from rfp_ingestion.schemas import Priority

HIGH_PRIORITY_KEYWORDS: Tuple[str, ...] = ("must", "required", "mandatory", "critical", "essential")
MEDIUM_PRIORITY_KEYWORDS: Tuple[str, ...] = ("should", "recommend", "prefer")

PRIORITY_RULES: Tuple[Tuple[Tuple[str, ...], Priority], ...] = (
    (HIGH_PRIORITY_KEYWORDS, "high"),
    (MEDIUM_PRIORITY_KEYWORDS, "medium"),
)
DEFAULT_PRIORITY: Priority = "low"


def classify_priority(text: str) -> Priority:
    lowered = text.lower()
    for keywords, priority in PRIORITY_RULES:
        if any(kw in lowered for kw in keywords):
            return priority
    return DEFAULT_PRIORITY

"""
validation.py — Result aggregation and invariant checks.

aggregate_result() is the last pure step of the pipeline: it folds the
sections and the extractor metadata into one ParseResult.
validate_parse_result() runs just before anything is written. It should
never fire; if it does, the segmenter has a bug and we would rather mark
the document as failed than write a record whose totals don't add up.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from rfp_ingestion.errors import ResultInvariantError
from rfp_ingestion.schemas import ParseResult, Section

logger = logging.getLogger(__name__)

_QUESTION_ID_RE = re.compile(r"^q_(\d+)$")


def aggregate_result(
    sections: List[Section],
    metadata: Optional[Dict[str, Any]] = None,
) -> ParseResult:
    total = sum(len(section.questions) for section in sections)
    return ParseResult(sections=sections, total_questions=total, metadata=dict(metadata or {}))


def validate_parse_result(result: ParseResult) -> ParseResult:
    """
    Check the document invariants. Returns the result unchanged.

      - total_questions equals the number of questions across sections
      - question ids are q_<n>, unique and strictly increasing in order
      - section ids are unique
    """
    counted = sum(len(s.questions) for s in result.sections)
    if result.total_questions != counted:
        raise ResultInvariantError(
            f"totalQuestions is {result.total_questions} but sections hold {counted} questions",
            {"total_questions": result.total_questions, "counted": counted},
        )

    section_ids = [s.id for s in result.sections]
    if len(set(section_ids)) != len(section_ids):
        raise ResultInvariantError(f"Duplicate section ids: {section_ids}")

    previous = 0
    for section in result.sections:
        for question in section.questions:
            match = _QUESTION_ID_RE.match(question.id)
            if not match:
                raise ResultInvariantError(f"Malformed question id: {question.id!r}")
            number = int(match.group(1))
            if number <= previous:
                raise ResultInvariantError(
                    f"Question id {question.id} is not greater than q_{previous}",
                    {"section": section.id},
                )
            previous = number

    logger.debug("Result valid: %d sections, %d questions", len(result.sections), counted)
    return result

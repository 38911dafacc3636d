"""
segmentation.py — Split flat document text into question records.

PDFs and Word files arrive as one long text stream. RFP authors number
their questions in every way imaginable ("1.", "a.", "Question 4:", or
just a run of sentences ending in "?"), so we split on all of those
markers at the start of a line and keep whatever is long enough to be a
real question.

The marker list is ordered. When two markers could match at the same
position the earlier one wins (a line starting "1." is a numbered
marker, never a lettered one). Keep new markers at the end of the list
unless you really mean to change precedence.

Question ids come from a QuestionCounter that the caller owns, so the
same counter can be threaded through several segmentation calls for one
document without any module-level state.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from rfp_ingestion.config import config
from rfp_ingestion.priority import classify_priority
from rfp_ingestion.schemas import Question, Section

logger = logging.getLogger(__name__)

# (name, regex) in precedence order.
BOUNDARY_PATTERNS: Tuple[Tuple[str, str], ...] = (
    ("numbered", r"\d+\."),
    ("lettered", r"[^\W\d_]\."),
    ("question_label", r"Question\s+\d+:?"),
    ("question_mark", r"\?\s"),
)


def build_boundary_regex(patterns: Tuple[Tuple[str, str], ...] = BOUNDARY_PATTERNS) -> re.Pattern[str]:
    """Compile the marker list into one splitter anchored at line starts."""
    alternation = "|".join(f"(?:{regex})" for _, regex in patterns)
    return re.compile(rf"(?:^|\n)(?:{alternation})", re.IGNORECASE)


_BOUNDARY_RE = build_boundary_regex()


class QuestionCounter:
    """Per-document question id source: q_1, q_2, ..."""

    def __init__(self, start: int = 1):
        self._next = start

    def next_id(self) -> str:
        question_id = f"q_{self._next}"
        self._next += 1
        return question_id

    @property
    def issued(self) -> int:
        return self._next - 1


def build_question(text: str, counter: QuestionCounter) -> Question:
    """
    Create a fresh, unanswered question record.

    Priority is judged on the full text; only the stored text is capped.
    """
    return Question(
        id=counter.next_id(),
        text=text[: config.segmentation.max_question_chars],
        priority=classify_priority(text),
    )


def split_fragments(text: str, boundary_re: Optional[re.Pattern[str]] = None) -> List[str]:
    """Split on question markers and drop short noise fragments."""
    boundary_re = boundary_re or _BOUNDARY_RE
    min_chars = config.segmentation.min_fragment_chars

    fragments = []
    for raw in boundary_re.split(text):
        fragment = raw.strip()
        if len(fragment) > min_chars:
            fragments.append(fragment)
    return fragments


def segment_text(text: str, counter: Optional[QuestionCounter] = None) -> List[Section]:
    """
    Turn a text stream into at most one "General Questions" section.

    Returns an empty list when nothing survives the noise filter. That's
    a valid outcome (a cover letter with no questions), not an error.
    """
    counter = counter or QuestionCounter()
    seg = config.segmentation

    questions = [build_question(fragment, counter) for fragment in split_fragments(text or "")]

    logger.info("Segmented %d chars of text into %d questions", len(text or ""), len(questions))
    if not questions:
        return []

    return [Section(id=seg.flat_section_id, name=seg.flat_section_name, questions=questions)]

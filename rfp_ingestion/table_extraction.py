"""
table_extraction.py — Question extraction from spreadsheet rows.

Spreadsheet RFPs are the easy case structurally: one question per row,
question text in the first column, one tab per topic ("Security",
"Pricing", ...). Each sheet becomes a section named after the tab.

The hard part is telling header rows apart from questions. We use a
blunt keyword filter: if the first cell mentions "question", "section",
"number", "#", "description" or "response" anywhere, the row is treated
as a header and dropped. That also drops real questions such as "What
is your support phone number?". Known over-filter; existing records were
built this way, so don't loosen it without a migration plan for the
question ids it would shift.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Sequence

from rfp_ingestion.config import config
from rfp_ingestion.ingestion import SheetRows
from rfp_ingestion.schemas import Section
from rfp_ingestion.segmentation import QuestionCounter, build_question

logger = logging.getLogger(__name__)

HEADER_KEYWORDS = ("question", "section", "number", "#", "description", "response")


def is_header_row(text: str) -> bool:
    """True if the text equals or merely contains any header keyword."""
    lowered = text.lower()
    return any(lowered == kw or kw in lowered for kw in HEADER_KEYWORDS)


def _first_cell_text(row: Sequence[Any]) -> Optional[str]:
    """Trimmed string value of the first cell, or None for empty rows."""
    if not row or not row[0]:
        return None
    return str(row[0]).strip()


def filter_question_rows(rows: Sequence[Sequence[Any]]) -> List[str]:
    """Return candidate question texts from one sheet, in row order."""
    min_chars = config.segmentation.min_row_chars
    texts: List[str] = []
    for row in rows:
        text = _first_cell_text(row)
        if text is None:
            continue
        if len(text) > min_chars and not is_header_row(text):
            texts.append(text)
    return texts


def segment_sheets(
    sheets: Sequence[SheetRows],
    counter: Optional[QuestionCounter] = None,
    max_workers: Optional[int] = None,
) -> List[Section]:
    """
    Build one section per sheet that has at least one question.

    Row filtering can run on a thread pool (max_workers > 1). Ids are
    only handed out after the per-sheet results are back in sheet order,
    so the output is identical either way.
    """
    counter = counter or QuestionCounter()
    workers = max_workers or config.segmentation.sheet_workers

    if workers > 1 and len(sheets) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            per_sheet = list(pool.map(lambda s: filter_question_rows(s.rows), sheets))
    else:
        per_sheet = [filter_question_rows(sheet.rows) for sheet in sheets]

    sections: List[Section] = []
    for sheet, texts in zip(sheets, per_sheet):
        if not texts:
            logger.info("Sheet '%s': no questions in %d rows, skipped", sheet.name, len(sheet.rows))
            continue

        questions = [build_question(text, counter) for text in texts]
        sections.append(Section(
            id=f"section_{len(sections) + 1}",
            name=sheet.name,
            questions=questions,
        ))
        logger.info("Sheet '%s': %d questions from %d rows", sheet.name, len(questions), len(sheet.rows))

    return sections

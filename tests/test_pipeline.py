"""
test_pipeline.py — Tests for the RFP ingestion pipeline.

These cover the core logic end to end without any external services:
  - flat-text segmentation (markers, noise threshold, truncation)
  - spreadsheet row filtering and header detection
  - priority classification and its precedence
  - aggregation + invariant checks
  - the orchestrator's ready/error transitions against an in-memory store

Spreadsheets and Word files are built in memory with openpyxl and
python-docx, so no fixture files are needed.

Run with:
    python tests/test_pipeline.py
    python -m pytest tests/test_pipeline.py -v
"""

from __future__ import annotations

import io
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import openpyxl
import pytest

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rfp_ingestion.errors import ResultInvariantError
from rfp_ingestion.ingestion import SheetRows
from rfp_ingestion.main import RFPIngestionPipeline, parse_document
from rfp_ingestion.priority import classify_priority
from rfp_ingestion.schemas import Question, Section
from rfp_ingestion.segmentation import (
    BOUNDARY_PATTERNS,
    QuestionCounter,
    build_boundary_regex,
    segment_text,
    split_fragments,
)
from rfp_ingestion.storage import InMemoryDocumentStore
from rfp_ingestion.table_extraction import (
    filter_question_rows,
    is_header_row,
    segment_sheets,
)
from rfp_ingestion.validation import aggregate_result, validate_parse_result

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

SAMPLE_TEXT = (
    "1. What is your company's approach to data encryption?\n"
    "2. Short one\n"
    "Question 3: Describe how you handle incident response.\n"
    "a. You must provide SOC2 reports annually."
)


def _xlsx_bytes(sheets):
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for name, rows in sheets:
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


SCENARIO_SHEETS = [
    ("Security", [["Question"], ["Describe your encryption approach for data at rest"]]),
    ("Pricing", [["What is your annual license fee structure?"]]),
]


def _pipeline_with_doc(ref="teams/t1/rfps/r1"):
    store = InMemoryDocumentStore()
    store.set(ref, {"id": ref.rsplit("/", 1)[-1], "status": "pending"})
    return RFPIngestionPipeline(store, clock=lambda: FIXED_NOW), store


def _all_questions(sections):
    return [q for s in sections for q in s.questions]


# ── Flat-text segmentation ────────────────────────────────────────────────


def test_segment_text_markers():
    """Numbered, lettered and "Question N:" markers all split questions."""
    sections = segment_text(SAMPLE_TEXT)
    assert len(sections) == 1
    section = sections[0]
    assert section.id == "section_1"
    assert section.name == "General Questions"

    texts = [q.text for q in section.questions]
    assert texts == [
        "What is your company's approach to data encryption?",
        "Describe how you handle incident response.",
        "You must provide SOC2 reports annually.",
    ]
    assert [q.id for q in section.questions] == ["q_1", "q_2", "q_3"]
    assert [q.priority for q in section.questions] == ["low", "low", "high"]
    print("  ✓ test_segment_text_markers")


def test_segment_text_question_label_case_insensitive():
    text = "QUESTION 12 Provide details of your data retention policy\nquestion 13: List all subprocessors you rely on"
    texts = split_fragments(text)
    assert texts == [
        "Provide details of your data retention policy",
        "List all subprocessors you rely on",
    ]
    print("  ✓ test_segment_text_question_label_case_insensitive")


def test_segment_text_bare_question_mark():
    text = "Intro paragraph that is long enough to keep\n? Is there a dedicated account manager for us"
    texts = split_fragments(text)
    assert texts == [
        "Intro paragraph that is long enough to keep",
        "Is there a dedicated account manager for us",
    ]
    print("  ✓ test_segment_text_bare_question_mark")


def test_boundary_patterns_order_and_subset():
    assert [name for name, _ in BOUNDARY_PATTERNS] == [
        "numbered", "lettered", "question_label", "question_mark",
    ]
    numbered_only = build_boundary_regex(BOUNDARY_PATTERNS[:1])
    text = "1. What certifications does your team hold today?\na. Lettered line is not a marker here"
    assert split_fragments(text, numbered_only) == [
        "What certifications does your team hold today?\na. Lettered line is not a marker here",
    ]
    print("  ✓ test_boundary_patterns_order_and_subset")


def test_noise_threshold_boundary():
    """20 chars after trimming is noise, 21 chars is a question."""
    text = "1. " + "a" * 20 + "\n2. " + "b" * 21
    sections = segment_text(text)
    assert len(sections) == 1
    assert [q.text for q in sections[0].questions] == ["b" * 21]
    print("  ✓ test_noise_threshold_boundary")


def test_question_text_truncated_to_500():
    long_question = "Explain " + "w " * 400
    sections = segment_text("1. " + long_question)
    question = sections[0].questions[0]
    assert len(question.text) == 500
    assert question.text == long_question.strip()[:500]
    print("  ✓ test_question_text_truncated_to_500")


def test_priority_uses_full_fragment_before_truncation():
    text = "1. " + "x " * 300 + "this is mandatory"
    question = segment_text(text)[0].questions[0]
    assert "mandatory" not in question.text
    assert question.priority == "high"
    print("  ✓ test_priority_uses_full_fragment_before_truncation")


def test_segment_text_empty_yields_no_sections():
    assert segment_text("") == []
    assert segment_text("1. tiny\n2. also tiny") == []
    print("  ✓ test_segment_text_empty_yields_no_sections")


def test_question_defaults():
    question = segment_text(SAMPLE_TEXT)[0].questions[0]
    record = question.to_record()
    assert record["response"] == ""
    assert record["status"] == "pending"
    assert record["assignedTo"] is None
    assert record["trustScore"] == 0
    assert record["citations"] == []
    print("  ✓ test_question_defaults")


# ── Tabular segmentation ──────────────────────────────────────────────────


def test_header_row_detection():
    for header in ("Question", "QUESTION", "question", "Section", "#", "Response"):
        assert is_header_row(header), header
    # Containment is enough, even for real questions.
    assert is_header_row("What is your support phone number for outages?")
    assert not is_header_row("Please describe your disaster recovery plan in detail")
    print("  ✓ test_header_row_detection")


def test_row_filter_keeps_real_questions():
    rows = [
        ["Question"],
        ["QUESTION NUMBER"],
        ["Please describe your disaster recovery plan in detail", "extra"],
        [],
        [None, "Orphan cell in second column that is long"],
        ["Too short"],
        ["  Exactly 11  "],
    ]
    # "Exactly 11" is 10 chars after trimming, which is not enough.
    assert filter_question_rows(rows) == ["Please describe your disaster recovery plan in detail"]
    print("  ✓ test_row_filter_keeps_real_questions")


def test_header_row_never_becomes_question_regardless_of_length():
    rows = [["Question"], ["question " * 20]]
    assert filter_question_rows(rows) == []
    print("  ✓ test_header_row_never_becomes_question_regardless_of_length")


def test_segment_sheets_scenario():
    sheets = [SheetRows(name, rows) for name, rows in SCENARIO_SHEETS]
    sections = segment_sheets(sheets)
    assert [s.name for s in sections] == ["Security", "Pricing"]
    assert [s.id for s in sections] == ["section_1", "section_2"]
    assert [q.id for q in _all_questions(sections)] == ["q_1", "q_2"]
    print("  ✓ test_segment_sheets_scenario")


def test_segment_sheets_skips_empty_sheets_and_keeps_ids_sequential():
    sheets = [
        SheetRows("Cover", [["Acme Corp"], ["Question"]]),
        SheetRows("Security", [["Do you encrypt backups at rest?"], ["Do you support SSO via SAML?"]]),
        SheetRows("Legal", [["Do you carry cyber liability insurance?"]]),
    ]
    sections = segment_sheets(sheets)
    assert [s.name for s in sections] == ["Security", "Legal"]
    assert [s.id for s in sections] == ["section_1", "section_2"]
    assert [q.id for q in _all_questions(sections)] == ["q_1", "q_2", "q_3"]
    print("  ✓ test_segment_sheets_skips_empty_sheets_and_keeps_ids_sequential")


def test_segment_sheets_parallel_matches_sequential():
    sheets = [
        SheetRows(f"Sheet{i}", [[f"Describe control {i} in your environment"],[f"Please explain requirement {i} must be met"]])
        for i in range(6)
    ]
    sequential = segment_sheets(sheets, max_workers=1)
    parallel = segment_sheets(sheets, max_workers=4)
    assert [s.model_dump() for s in sequential] == [s.model_dump() for s in parallel]
    print("  ✓ test_segment_sheets_parallel_matches_sequential")


def test_counter_is_shared_across_calls():
    counter = QuestionCounter()
    first = segment_sheets([SheetRows("A", [["Do you offer a dedicated support team?"]])], counter)
    second = segment_sheets([SheetRows("B", [["Do you offer on-premise deployment?"]])], counter)
    assert first[0].questions[0].id == "q_1"
    assert second[0].questions[0].id == "q_2"
    assert counter.issued == 2
    print("  ✓ test_counter_is_shared_across_calls")


# ── Priority ──────────────────────────────────────────────────────────────


def test_priority_precedence():
    assert classify_priority("This feature must be available and we should also prefer SSO") == "high"
    assert classify_priority("Vendors SHOULD describe their roadmap") == "medium"
    assert classify_priority("We recommend a phased rollout") == "medium"
    assert classify_priority("Describe your company history") == "low"
    assert classify_priority("MANDATORY: list certifications") == "high"
    print("  ✓ test_priority_precedence")


# ── Aggregation & invariants ──────────────────────────────────────────────


def test_aggregate_totals():
    sections = segment_sheets([SheetRows(name, rows) for name, rows in SCENARIO_SHEETS])
    result = aggregate_result(sections, {"sheetCount": 2})
    assert result.total_questions == 2
    assert result.total_questions == sum(len(s.questions) for s in result.sections)
    assert result.metadata == {"sheetCount": 2}
    assert validate_parse_result(result) is result
    print("  ✓ test_aggregate_totals")


def test_validate_rejects_bad_total():
    result = aggregate_result(segment_text(SAMPLE_TEXT))
    result.total_questions += 1
    with pytest.raises(ResultInvariantError):
        validate_parse_result(result)
    print("  ✓ test_validate_rejects_bad_total")


def test_validate_rejects_non_increasing_ids():
    sections = [
        Section(id="section_1", name="A", questions=[Question(id="q_2", text="Second question text here")]),
        Section(id="section_2", name="B", questions=[Question(id="q_1", text="First question text here")]),
    ]
    with pytest.raises(ResultInvariantError):
        validate_parse_result(aggregate_result(sections))
    print("  ✓ test_validate_rejects_non_increasing_ids")


# ── Orchestrator ──────────────────────────────────────────────────────────


def test_end_to_end_spreadsheet_scenario():
    pipeline, store = _pipeline_with_doc()
    outcome = pipeline.run(_xlsx_bytes(SCENARIO_SHEETS), XLSX, "teams/t1/rfps/r1")

    assert outcome.status == "ready"
    record = store.get("teams/t1/rfps/r1")
    assert record["status"] == "ready"
    assert record["totalQuestions"] == 2
    assert [s["name"] for s in record["sections"]] == ["Security", "Pricing"]
    assert [len(s["questions"]) for s in record["sections"]] == [1, 1]
    assert record["sections"][0]["questions"][0]["id"] == "q_1"
    assert record["sections"][1]["questions"][0]["id"] == "q_2"
    assert record["metadata"]["sheetCount"] == 2
    assert record["metadata"]["parsedAt"] == FIXED_NOW.isoformat()
    assert record["updatedAt"].startswith("2026-03-02T09:30:00")
    assert "errorMessage" not in record
    assert "stats" not in record
    print("  ✓ test_end_to_end_spreadsheet_scenario")


def test_unsupported_content_type_yields_error():
    pipeline, store = _pipeline_with_doc()
    outcome = pipeline.run(b"\x89PNG\r\n\x1a\n", "image/png", "teams/t1/rfps/r1")

    assert outcome.status == "error"
    record = store.get("teams/t1/rfps/r1")
    assert record["status"] == "error"
    assert "unsupported" in record["errorMessage"].lower()
    assert "sections" not in record
    print("  ✓ test_unsupported_content_type_yields_error")


def test_unsupported_upload_is_never_downloaded():
    store = InMemoryDocumentStore()
    store.set("teams/t1/rfps/r1", {"status": "pending"})
    blobs = MagicMock()
    pipeline = RFPIngestionPipeline(store, blobs, clock=lambda: FIXED_NOW)

    outcome = pipeline.process_upload("teams/t1/rfps/r1/logo.png", "image/png")
    assert outcome.status == "error"
    blobs.download.assert_not_called()
    print("  ✓ test_unsupported_upload_is_never_downloaded")


def test_corrupt_pdf_yields_error_without_sections():
    pipeline, store = _pipeline_with_doc()
    outcome = pipeline.run(b"this is not a pdf at all", "application/pdf", "teams/t1/rfps/r1")
    assert outcome.status == "error"
    record = store.get("teams/t1/rfps/r1")
    assert record["errorMessage"]
    assert "sections" not in record
    print("  ✓ test_corrupt_pdf_yields_error_without_sections")


def test_unexpected_fault_is_contained():
    pipeline, store = _pipeline_with_doc()
    with patch("rfp_ingestion.main.segment_sheets", side_effect=RuntimeError("boom")):
        outcome = pipeline.run(_xlsx_bytes(SCENARIO_SHEETS), XLSX, "teams/t1/rfps/r1")
    assert outcome.status == "error"
    assert store.get("teams/t1/rfps/r1")["errorMessage"] == "boom"
    print("  ✓ test_unexpected_fault_is_contained")


def test_missing_document_does_not_raise():
    pipeline = RFPIngestionPipeline(InMemoryDocumentStore(), clock=lambda: FIXED_NOW)
    outcome = pipeline.run(_xlsx_bytes(SCENARIO_SHEETS), XLSX, "teams/t1/rfps/ghost")
    assert outcome.status == "error"
    assert "not found" in outcome.error_message.lower()
    print("  ✓ test_missing_document_does_not_raise")


def test_empty_result_is_ready_not_error():
    pipeline, store = _pipeline_with_doc()
    outcome = pipeline.run(_xlsx_bytes([("Cover", [["Acme"], ["Question"]])]), XLSX, "teams/t1/rfps/r1")
    assert outcome.status == "ready"
    record = store.get("teams/t1/rfps/r1")
    assert record["totalQuestions"] == 0
    assert record["sections"] == []
    print("  ✓ test_empty_result_is_ready_not_error")


def test_rerun_replaces_sections():
    pipeline, store = _pipeline_with_doc()
    pipeline.run(_xlsx_bytes(SCENARIO_SHEETS), XLSX, "teams/t1/rfps/r1")
    pipeline.run(_xlsx_bytes([("Legal", [["Do you carry cyber liability insurance?"]])]), XLSX, "teams/t1/rfps/r1")
    record = store.get("teams/t1/rfps/r1")
    assert [s["name"] for s in record["sections"]] == ["Legal"]
    assert record["totalQuestions"] == 1
    assert record["sections"][0]["questions"][0]["id"] == "q_1"
    print("  ✓ test_rerun_replaces_sections")


def test_processing_state_written_before_parse():
    pipeline, store = _pipeline_with_doc()
    seen = {}

    def _spy(sheets, counter):
        seen["status"] = store.get("teams/t1/rfps/r1")["status"]
        return []

    with patch("rfp_ingestion.main.segment_sheets", side_effect=_spy):
        pipeline.run(_xlsx_bytes(SCENARIO_SHEETS), XLSX, "teams/t1/rfps/r1")
    assert seen["status"] == "processing"
    print("  ✓ test_processing_state_written_before_parse")


def test_project_upload_gets_stats():
    store = InMemoryDocumentStore()
    store.set("teams/t1/projects/p1", {"status": "pending"})
    store.set("teams/t1/rfps/r1", {"status": "pending"})
    blobs = MagicMock()
    blobs.download.return_value = _xlsx_bytes(SCENARIO_SHEETS)
    pipeline = RFPIngestionPipeline(store, blobs, clock=lambda: FIXED_NOW)

    pipeline.process_upload("teams/t1/projects/p1/rfp.xlsx", XLSX)
    pipeline.process_upload("teams/t1/rfps/r1/rfp.xlsx", XLSX)

    stats = store.get("teams/t1/projects/p1")["stats"]
    assert stats == {"totalQuestions": 2, "answered": 0, "inReview": 0, "approved": 0, "progress": 0}
    assert "stats" not in store.get("teams/t1/rfps/r1")
    print("  ✓ test_project_upload_gets_stats")


def test_non_rfp_path_is_skipped():
    pipeline = RFPIngestionPipeline(InMemoryDocumentStore(), MagicMock())
    assert pipeline.process_upload("avatars/u1/me.pdf", "application/pdf") is None
    kind, outcome = pipeline.handle_storage_object("avatars/u1/me.pdf", "application/pdf")
    assert (kind, outcome) == ("ignored", None)
    print("  ✓ test_non_rfp_path_is_skipped")


def test_upload_without_blob_store_is_a_wiring_error():
    store = InMemoryDocumentStore()
    store.set("teams/t1/rfps/r1", {"status": "pending"})
    pipeline = RFPIngestionPipeline(store)

    with pytest.raises(RuntimeError, match="blob store"):
        pipeline.process_upload("teams/t1/rfps/r1/rfp.pdf", "application/pdf")
    with pytest.raises(RuntimeError, match="blob store"):
        pipeline.handle_storage_object("users/u1/knowledge/policy.txt", "text/plain")
    # Nothing was written before the raise.
    assert store.get("teams/t1/rfps/r1") == {"status": "pending"}
    # Paths we ignore never need blobs.
    assert pipeline.process_upload("avatars/u1/me.pdf", "application/pdf") is None
    print("  ✓ test_upload_without_blob_store_is_a_wiring_error")


def test_parse_is_deterministic():
    data = _xlsx_bytes(SCENARIO_SHEETS)
    first = parse_document(data, XLSX)
    second = parse_document(data, XLSX)
    assert first.model_dump_json() == second.model_dump_json()
    print("  ✓ test_parse_is_deterministic")


def test_mislabelled_xlsx_still_parses():
    result = parse_document(_xlsx_bytes(SCENARIO_SHEETS), "application/vnd.ms-excel")
    assert result.total_questions == 2
    print("  ✓ test_mislabelled_xlsx_still_parses")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  RFP Ingestion — Test Suite")
    print("=" * 60 + "\n")

    tests = [
        # Flat text
        test_segment_text_markers,
        test_segment_text_question_label_case_insensitive,
        test_segment_text_bare_question_mark,
        test_boundary_patterns_order_and_subset,
        test_noise_threshold_boundary,
        test_question_text_truncated_to_500,
        test_priority_uses_full_fragment_before_truncation,
        test_segment_text_empty_yields_no_sections,
        test_question_defaults,
        # Tabular
        test_header_row_detection,
        test_row_filter_keeps_real_questions,
        test_header_row_never_becomes_question_regardless_of_length,
        test_segment_sheets_scenario,
        test_segment_sheets_skips_empty_sheets_and_keeps_ids_sequential,
        test_segment_sheets_parallel_matches_sequential,
        test_counter_is_shared_across_calls,
        # Priority
        test_priority_precedence,
        # Aggregation
        test_aggregate_totals,
        test_validate_rejects_bad_total,
        test_validate_rejects_non_increasing_ids,
        # Orchestrator
        test_end_to_end_spreadsheet_scenario,
        test_unsupported_content_type_yields_error,
        test_unsupported_upload_is_never_downloaded,
        test_corrupt_pdf_yields_error_without_sections,
        test_unexpected_fault_is_contained,
        test_missing_document_does_not_raise,
        test_empty_result_is_ready_not_error,
        test_rerun_replaces_sections,
        test_processing_state_written_before_parse,
        test_project_upload_gets_stats,
        test_non_rfp_path_is_skipped,
        test_upload_without_blob_store_is_a_wiring_error,
        test_parse_is_deterministic,
        test_mislabelled_xlsx_still_parses,
    ]

    passed = 0
    failed = 0

    for test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as exc:
            failed += 1
            print(f"  ✗ {test_fn.__name__} FAILED: {exc}")

    print(f"\n{'=' * 60}")
    print(f"  Results: {passed} passed, {failed} failed, {len(tests)} total")
    print(f"{'=' * 60}\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)

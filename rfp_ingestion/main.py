"""
main.py — Pipeline orchestration for RFP ingestion.

One run per upload: route the content type, extract, segment, aggregate,
validate, write. The document goes pending -> processing -> ready|error,
and this class is the only thing that writes those transitions.

Two rules the rest of the system relies on:
  1. run() never raises. Whatever goes wrong ends up as status=error
     with a message on the document, and no sections are written.
     The upload entry points add one exception: calling them on a
     pipeline built without a blob store is a wiring bug and raises
     RuntimeError before any document is touched.
  2. The content type is checked before the upload is downloaded, so a
     PNG dropped in the RFP folder costs us nothing.

No retries happen here. Re-uploading starts a fresh, independent run
that replaces the previous sections completely.
"""

from __future__ import annotations

import argparse
import json
import logging
import mimetypes
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

from rfp_ingestion.chunking import process_knowledge_document
from rfp_ingestion.config import config
from rfp_ingestion.errors import RFPIngestionError
from rfp_ingestion.formats import DocumentFormat, extractor_for, route_content_type
from rfp_ingestion.schemas import (
    Document,
    ErrorUpdate,
    KnowledgeMeta,
    ParseResult,
    ProcessingUpdate,
    ProjectStats,
    ReadyUpdate,
    utc_now,
)
from rfp_ingestion.segmentation import QuestionCounter, segment_text
from rfp_ingestion.storage import (
    BlobStore,
    DocumentStore,
    InMemoryDocumentStore,
    resolve_document_ref,
    resolve_knowledge_path,
)
from rfp_ingestion.table_extraction import segment_sheets
from rfp_ingestion.validation import aggregate_result, validate_parse_result

logger = logging.getLogger("rfp_ingestion")

IngestionOutcome = Union[ReadyUpdate, ErrorUpdate]


def parse_document(content_bytes: bytes, content_type: Optional[str]) -> ParseResult:
    """
    Pure part of the pipeline: bytes + content type in, ParseResult out.

    Same bytes and content type always give the same sections, ids and
    priorities.
    """
    fmt = route_content_type(content_type)
    return _parse(fmt, content_bytes)


def _parse(fmt: DocumentFormat, content_bytes: bytes) -> ParseResult:
    t0 = time.time()
    content = extractor_for(fmt)(content_bytes)
    logger.info("  extracted %s in %.2fs", fmt.name, time.time() - t0)

    t0 = time.time()
    counter = QuestionCounter()
    if content.kind == "sheets":
        sections = segment_sheets(content.sheets, counter)
    else:
        sections = segment_text(content.text, counter)
    logger.info("  segmented %d sections in %.2fs", len(sections), time.time() - t0)

    return validate_parse_result(aggregate_result(sections, content.metadata))


class RFPIngestionPipeline:
    """
    Drives one document record through an ingestion run.

    Usage:
        pipeline = RFPIngestionPipeline(store, blob_store)
        outcome = pipeline.process_upload("teams/t1/rfps/r1/rfp.pdf", "application/pdf")
    """

    def __init__(
        self,
        document_store: DocumentStore,
        blob_store: Optional[BlobStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = document_store
        self._blobs = blob_store
        self._clock = clock or utc_now

    def run(
        self,
        content_bytes: bytes,
        content_type: Optional[str],
        document_ref: str,
        include_stats: bool = False,
    ) -> IngestionOutcome:
        """Ingest bytes that are already in memory."""
        return self._execute(document_ref, content_type, lambda: content_bytes, include_stats)

    def process_upload(self, storage_path: str, content_type: Optional[str]) -> Optional[IngestionOutcome]:
        """
        Ingest an upload straight from blob storage.

        Returns None for paths that don't belong to an RFP or project
        document; those uploads are none of our business. Raises
        RuntimeError if the pipeline has no blob store.
        """
        ref = resolve_document_ref(storage_path)
        if ref is None:
            logger.info("Not a parseable file path, skipping: %s", storage_path)
            return None
        if self._blobs is None:
            raise RuntimeError("process_upload needs a blob store")

        logger.info("Upload %s -> %s (%s)", storage_path, ref.path, ref.kind)
        return self._execute(
            ref.path,
            content_type,
            lambda: self._blobs.download(storage_path),
            include_stats=ref.is_project,
        )

    def handle_storage_object(
        self, storage_path: str, content_type: Optional[str]
    ) -> Tuple[str, Optional[Union[IngestionOutcome, KnowledgeMeta]]]:
        """Dispatch an upload notification to the knowledge or RFP flow."""
        if resolve_knowledge_path(storage_path) is not None:
            if self._blobs is None:
                raise RuntimeError("knowledge uploads need a blob store")
            return "knowledge", process_knowledge_document(
                self._store, self._blobs, storage_path, content_type
            )
        if resolve_document_ref(storage_path) is not None:
            return "document", self.process_upload(storage_path, content_type)
        logger.info("Ignoring upload outside known folders: %s", storage_path)
        return "ignored", None

    # ── internals ────────────────────────────────────────────────────

    def _execute(
        self,
        document_ref: str,
        content_type: Optional[str],
        load_bytes: Callable[[], bytes],
        include_stats: bool,
    ) -> IngestionOutcome:
        overall_start = time.time()
        logger.info("=" * 60)
        logger.info("Ingesting %s (%s)", document_ref, content_type)

        try:
            self._store.update(document_ref, ProcessingUpdate(updated_at=self._clock()).to_record())

            logger.info("[1/3] Routing content type ...")
            fmt = route_content_type(content_type)

            logger.info("[2/3] Downloading + parsing ...")
            content_bytes = load_bytes()
            result = _parse(fmt, content_bytes)

            logger.info("[3/3] Writing result ...")
            update = self._ready_update(result, include_stats)
            self._store.update(document_ref, update.to_record())

        except RFPIngestionError as exc:
            logger.error("Ingestion failed for %s: %s", document_ref, exc)
            return self._fail(document_ref, exc)
        except Exception as exc:
            logger.exception("Unexpected error while ingesting %s", document_ref)
            return self._fail(document_ref, exc)

        logger.info(
            "DONE in %.1fs | %d sections | %d questions",
            time.time() - overall_start, len(update.sections), update.total_questions,
        )
        logger.info("=" * 60)
        return update

    def _ready_update(self, result: ParseResult, include_stats: bool) -> ReadyUpdate:
        now = self._clock()
        stats = ProjectStats(total_questions=result.total_questions) if include_stats else None
        return ReadyUpdate(
            sections=result.sections,
            total_questions=result.total_questions,
            metadata={**result.metadata, "parsedAt": now.isoformat()},
            updated_at=now,
            stats=stats,
        )

    def _fail(self, document_ref: str, exc: BaseException) -> ErrorUpdate:
        update = ErrorUpdate(
            error_message=str(exc) or exc.__class__.__name__,
            updated_at=self._clock(),
        )
        try:
            self._store.update(document_ref, update.to_record())
        except Exception:
            logger.exception("Could not record failure on %s", document_ref)
        return update


# ── CLI ───────────────────────────────────────────────────────────────────

_EXTENSION_TYPES = {
    ".pdf": DocumentFormat.PDF.value,
    ".xlsx": DocumentFormat.XLSX.value,
    ".xls": DocumentFormat.XLS.value,
    ".docx": DocumentFormat.DOCX.value,
}


def guess_content_type(path: Path) -> Optional[str]:
    known = _EXTENSION_TYPES.get(path.suffix.lower())
    if known:
        return known
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed


def main():
    """Run the pipeline on a local file against an in-memory store."""
    parser = argparse.ArgumentParser(
        prog="rfp_ingestion",
        description="Extract sections and questions from an RFP document (PDF, XLSX, XLS, DOCX)",
    )
    parser.add_argument("file", help="Path to the RFP document")
    parser.add_argument("--content-type", default=None, help="MIME type (default: guessed from extension)")
    parser.add_argument("--output", "-o", default=None, help="JSON output path (default: stdout)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    path = Path(args.file)
    if not path.exists():
        logger.error("File not found: %s", path)
        sys.exit(1)

    content_type = args.content_type or guess_content_type(path)
    ref = f"local/rfps/{path.stem}"

    store = InMemoryDocumentStore()
    store.set(ref, Document(
        id=path.stem,
        owner_id="local",
        storage_path=str(path),
        content_type=content_type,
        created_at=utc_now(),
    ).to_record())

    outcome = RFPIngestionPipeline(store).run(path.read_bytes(), content_type, ref)
    record = store.get(ref)

    rendered = json.dumps(record, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).parent.mkdir(parents=True, exist_ok=True)
        Path(args.output).write_text(rendered, encoding="utf-8")
        logger.info("Output written to: %s", args.output)
    else:
        print(rendered)

    if outcome.status == "error":
        sys.exit(1)


if __name__ == "__main__":
    main()

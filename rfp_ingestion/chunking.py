"""
chunking.py — Knowledge-base document processing.

Users keep reference material (security policies, past proposals,
product sheets) under users/{userId}/knowledge/. Each upload is turned
into plain text, whitespace-collapsed, and split into sentence-aligned
chunks of roughly 500 characters that the answer-generation side pulls
in as context.

Chunks for a file are always replaced wholesale, so re-uploading a
policy never leaves stale chunks from the previous version behind.

Sentences are split on runs of . ! ? and re-joined with ". ", which
normalises "!" and "?" to a period. Retrieval only cares about the
words, so that's fine.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, List, Optional

from rfp_ingestion.config import config
from rfp_ingestion.formats import DocumentFormat
from rfp_ingestion.ingestion import (
    ExtractedContent,
    extract_docx,
    extract_pdf,
    extract_plain_text,
)
from rfp_ingestion.schemas import KnowledgeChunk, KnowledgeMeta, utc_now
from rfp_ingestion.storage import BlobStore, DocumentStore, resolve_knowledge_path

logger = logging.getLogger(__name__)

_SENTENCE_END_RE = re.compile(r"[.!?]+")
_WHITESPACE_RE = re.compile(r"\s+")

KNOWLEDGE_EXTRACTORS: Dict[str, Callable[[bytes], ExtractedContent]] = {
    DocumentFormat.PDF.value: extract_pdf,
    DocumentFormat.DOCX.value: extract_docx,
    "text/plain": extract_plain_text,
}


def clean_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def chunk_text(text: str, chunk_size: Optional[int] = None) -> List[str]:
    """
    Greedy sentence packing.

    A chunk is closed once adding the next sentence would push it past
    chunk_size. A single sentence longer than chunk_size still becomes
    its own (oversized) chunk rather than being cut mid-sentence.
    """
    chunk_size = chunk_size or config.knowledge.chunk_chars
    chunks: List[str] = []
    current = ""

    for sentence in _SENTENCE_END_RE.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        if len(current + sentence) > chunk_size and current:
            chunks.append(current.strip())
            current = sentence + ". "
        else:
            current += sentence + ". "

    if current.strip():
        chunks.append(current.strip())
    return chunks


def process_knowledge_document(
    store: DocumentStore,
    blob_store: BlobStore,
    storage_path: str,
    content_type: Optional[str],
) -> Optional[KnowledgeMeta]:
    """
    Extract, chunk and store one knowledge-base upload.

    Returns the meta record that was written, or None when the upload
    isn't a knowledge document we handle (wrong path or file type).
    Failures are recorded on the meta record, not raised.
    """
    resolved = resolve_knowledge_path(storage_path)
    if resolved is None:
        logger.info("Not a knowledge document, skipping: %s", storage_path)
        return None
    user_id, file_name = resolved

    mime = (content_type or "").split(";", 1)[0].strip().lower()
    extractor = KNOWLEDGE_EXTRACTORS.get(mime)
    if extractor is None:
        logger.info("Unsupported file type for knowledge: %s", content_type)
        return None

    meta_ref = f"users/{user_id}/knowledgeMeta/{file_name}"
    logger.info("Processing knowledge document %s for user %s", file_name, user_id)

    try:
        content = extractor(blob_store.download(storage_path))
        cleaned = clean_text(content.text)
        pieces = chunk_text(cleaned)

        chunks = [
            KnowledgeChunk(text=piece, file_name=file_name, chunk_index=idx, total_chunks=len(pieces))
            for idx, piece in enumerate(pieces)
        ]
        store.set(f"users/{user_id}/knowledgeChunks/{file_name}", {
            "fileName": file_name,
            "chunks": [chunk.to_record() for chunk in chunks],
            "createdAt": utc_now().isoformat(),
        })

        meta = KnowledgeMeta(
            file_name=file_name,
            status="ready",
            processed_at=utc_now(),
            original_path=storage_path,
            chunks_count=len(chunks),
            total_characters=len(cleaned),
        )
        store.set(meta_ref, meta.to_record())
        logger.info("Processed %s: %d chunks created", file_name, len(chunks))
        return meta

    except Exception as exc:
        logger.error("Knowledge processing failed for %s: %s", file_name, exc)
        meta = KnowledgeMeta(
            file_name=file_name,
            status="error",
            processed_at=utc_now(),
            error_message=str(exc) or exc.__class__.__name__,
        )
        try:
            store.set(meta_ref, meta.to_record())
        except Exception:
            logger.exception("Could not record knowledge failure for %s", file_name)
        return meta

"""
errors.py — Exceptions raised inside the ingestion pipeline.

Everything here derives from RFPIngestionError so the orchestrator can
tell "expected" failures (bad upload, corrupt file) apart from genuine
bugs. Both end up as status=error on the document, but only the latter
get a full traceback in the logs.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RFPIngestionError(Exception):
    """Base exception for all ingestion errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class UnsupportedFormat(RFPIngestionError):
    """Content type is not one we know how to extract."""

    def __init__(self, content_type: Optional[str]) -> None:
        super().__init__(
            f"Unsupported file type: {content_type or 'unknown'}",
            {"content_type": content_type},
        )
        self.content_type = content_type


class ExtractionFailure(RFPIngestionError):
    """The bytes could not be decoded as the expected format."""

    pass


class ResultInvariantError(RFPIngestionError):
    """An aggregated result broke one of the document invariants."""

    pass


class DocumentNotFound(RFPIngestionError):
    """Update against a document record that doesn't exist."""

    def __init__(self, ref: str) -> None:
        super().__init__(f"Document not found: {ref}", {"ref": ref})
        self.ref = ref

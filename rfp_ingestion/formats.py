"""
formats.py — Content-type routing.

Maps an upload's MIME type to one of the formats we can extract, and
that format to its extractor. This runs before anything is downloaded,
so an unsupported upload fails without reading a single byte.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Optional

from rfp_ingestion.errors import UnsupportedFormat
from rfp_ingestion.ingestion import (
    ExtractedContent,
    extract_docx,
    extract_pdf,
    extract_spreadsheet,
)


class DocumentFormat(str, Enum):
    PDF = "application/pdf"
    XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    XLS = "application/vnd.ms-excel"
    DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

    @property
    def is_tabular(self) -> bool:
        return self in (DocumentFormat.XLSX, DocumentFormat.XLS)


Extractor = Callable[[bytes], ExtractedContent]

_EXTRACTORS: Dict[DocumentFormat, Extractor] = {
    DocumentFormat.PDF: extract_pdf,
    DocumentFormat.XLSX: extract_spreadsheet,
    DocumentFormat.XLS: extract_spreadsheet,
    DocumentFormat.DOCX: extract_docx,
}

_missing = set(DocumentFormat) - set(_EXTRACTORS)
if _missing:
    raise RuntimeError(f"No extractor registered for: {sorted(f.name for f in _missing)}")


def route_content_type(content_type: Optional[str]) -> DocumentFormat:
    """
    Resolve a MIME type to a DocumentFormat.

    Parameters such as "; charset=binary" are ignored and matching is
    case-insensitive. Raises UnsupportedFormat for anything else.
    """
    if not content_type:
        raise UnsupportedFormat(content_type)

    mime = content_type.split(";", 1)[0].strip().lower()
    try:
        return DocumentFormat(mime)
    except ValueError:
        raise UnsupportedFormat(content_type) from None


def extractor_for(fmt: DocumentFormat) -> Extractor:
    return _EXTRACTORS[fmt]

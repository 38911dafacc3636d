"""
ingestion.py — Format-specific extraction from raw upload bytes.

Three extractors, one contract: take the file's bytes, hand back an
ExtractedContent that is either a text stream (PDF, Word) or a list of
per-sheet row grids (Excel), plus a little metadata for the document
record.

Everything works on bytes rather than paths because uploads come out of
blob storage; nothing here touches the filesystem.

Any decode problem (corrupt file, password protection, wrong container)
comes out as ExtractionFailure with the codec's own message. We never
return a half-read document.

Scanned PDFs: a page with almost no native text is rendered and run
through Tesseract, same preprocessing we've always used (grayscale,
contrast, median filter). If OCR fails or returns nothing we keep the
native text, so OCR can only ever add content.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal

import openpyxl
import pdfplumber
import xlrd
from PIL import Image, ImageEnhance, ImageFilter

from rfp_ingestion.config import config
from rfp_ingestion.errors import ExtractionFailure

logger = logging.getLogger(__name__)

_ZIP_SIGNATURE = b"PK\x03\x04"
_OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


@dataclass
class SheetRows:
    """One worksheet: its tab name and its rows of raw cell values."""
    name: str
    rows: List[List[Any]] = field(default_factory=list)


@dataclass
class ExtractedContent:
    kind: Literal["text", "sheets"]
    text: str = ""
    sheets: List[SheetRows] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def extract_pdf(content_bytes: bytes) -> ExtractedContent:
    """
    Extract the full text stream of a PDF.

    Page texts are joined with a blank line so a question that starts at
    the top of a page still sits at the start of a line for the
    segmenter.
    """
    _validate_size(content_bytes)

    page_texts: List[str] = []
    ocr_pages = 0
    try:
        with pdfplumber.open(io.BytesIO(content_bytes)) as pdf:
            total_pages = len(pdf.pages)
            for idx, page in enumerate(pdf.pages, start=1):
                text = page.extract_text() or ""

                if config.ocr.enabled and len(text.strip()) < config.ocr.scanned_char_threshold:
                    logger.info(
                        "Page %d/%d: only %d chars detected, treating as scanned",
                        idx, total_pages, len(text.strip()),
                    )
                    ocr_text = _ocr_pdf_page(page, idx)
                    if ocr_text:
                        text = ocr_text
                        ocr_pages += 1

                page_texts.append(text)
    except Exception as exc:
        raise ExtractionFailure(_describe(exc), {"format": "pdf"}) from exc

    full_text = "\n\n".join(page_texts)
    logger.info(
        "Extracted PDF: %d pages (%d via OCR), %d chars",
        total_pages, ocr_pages, len(full_text),
    )
    return ExtractedContent(
        kind="text",
        text=full_text,
        metadata={
            "pageCount": total_pages,
            "extractedText": full_text[: config.ingestion.preview_chars],
        },
    )


def extract_docx(content_bytes: bytes) -> ExtractedContent:
    """
    Extract plain text from a DOCX, paragraphs and table cells in body order.

    Styling is dropped. Tables matter here: plenty of RFPs put the whole
    questionnaire in a two-column table, and every cell comes out as its
    own paragraph.
    """
    from docx import Document
    from docx.table import Table

    _validate_size(content_bytes)

    try:
        doc = Document(io.BytesIO(content_bytes))
        parts: List[str] = []
        for block in doc.iter_inner_content():
            if isinstance(block, Table):
                parts.extend(_table_cell_texts(block))
            elif block.text.strip():
                parts.append(block.text)
    except Exception as exc:
        raise ExtractionFailure(_describe(exc), {"format": "docx"}) from exc

    full_text = "\n\n".join(parts)
    logger.info("Extracted DOCX: %d text blocks, %d chars", len(parts), len(full_text))
    return ExtractedContent(
        kind="text",
        text=full_text,
        metadata={"extractedText": full_text[: config.ingestion.preview_chars]},
    )


def extract_spreadsheet(content_bytes: bytes) -> ExtractedContent:
    """
    Read every sheet of a workbook into row grids.

    The container is sniffed from the first bytes instead of trusting the
    content type: browsers happily label .xlsx files as
    application/vnd.ms-excel.
    """
    _validate_size(content_bytes)

    if content_bytes.startswith(_ZIP_SIGNATURE):
        reader, fmt = _read_xlsx, "xlsx"
    elif content_bytes.startswith(_OLE2_SIGNATURE):
        reader, fmt = _read_xls, "xls"
    else:
        raise ExtractionFailure(
            "File is not a recognized Excel workbook", {"format": "spreadsheet"}
        )

    try:
        sheets, sheet_count = reader(content_bytes)
    except Exception as exc:
        raise ExtractionFailure(_describe(exc), {"format": fmt}) from exc

    logger.info(
        "Extracted %s workbook: %d sheets, %d rows",
        fmt, sheet_count, sum(len(s.rows) for s in sheets),
    )
    return ExtractedContent(kind="sheets", sheets=sheets, metadata={"sheetCount": sheet_count})


def extract_plain_text(content_bytes: bytes) -> ExtractedContent:
    """UTF-8 text files. Undecodable bytes are replaced, not fatal."""
    _validate_size(content_bytes)
    text = content_bytes.decode("utf-8", errors="replace")
    return ExtractedContent(
        kind="text",
        text=text,
        metadata={"extractedText": text[: config.ingestion.preview_chars]},
    )


# ── Internal helpers ──────────────────────────────────────────────────────


def _read_xlsx(content_bytes: bytes):
    wb = openpyxl.load_workbook(io.BytesIO(content_bytes), read_only=True, data_only=True)
    try:
        sheets = [
            SheetRows(name=ws.title, rows=[list(row) for row in ws.iter_rows(values_only=True)])
            for ws in wb.worksheets
        ]
        # Chartsheets hold no cells and are not counted.
        return sheets, len(sheets)
    finally:
        wb.close()


def _read_xls(content_bytes: bytes):
    book = xlrd.open_workbook(file_contents=content_bytes)
    try:
        sheets = []
        for sheet in book.sheets():
            rows = [
                [_normalize_xls_value(v) for v in sheet.row_values(i)]
                for i in range(sheet.nrows)
            ]
            sheets.append(SheetRows(name=sheet.name, rows=rows))
        return sheets, book.nsheets
    finally:
        book.release_resources()


def _normalize_xls_value(value: Any) -> Any:
    """xlrd stores every number as a float; 3.0 should read as 3."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _table_cell_texts(table) -> List[str]:
    """
    Non-empty cell texts, row by row. Merged cells are emitted once and
    tables nested inside a cell follow that cell's own text.
    """
    texts: List[str] = []
    # Holds the <w:tc> elements themselves; lxml proxies hash by identity
    # only while something keeps them alive.
    seen = set()
    for row in table.rows:
        for cell in row.cells:
            if cell._tc in seen:
                continue
            seen.add(cell._tc)
            if cell.text.strip():
                texts.append(cell.text)
            for nested in cell.tables:
                texts.extend(_table_cell_texts(nested))
    return texts


def _ocr_pdf_page(page, page_number: int) -> str:
    """Render one pdfplumber page and OCR it. Returns "" on any failure."""
    try:
        image = page.to_image(resolution=config.ocr.dpi).original
        return _ocr_image(_preprocess_image(image))
    except Exception as exc:
        logger.warning("OCR failed for page %d: %s", page_number, exc)
        return ""


def _preprocess_image(img: Image.Image) -> Image.Image:
    """Grayscale, then contrast, then denoise. Order matters for Tesseract."""
    img = img.convert("L")

    if config.ocr.contrast_enhance:
        img = ImageEnhance.Contrast(img).enhance(2.0)

    if config.ocr.denoise:
        img = img.filter(ImageFilter.MedianFilter(size=3))

    return img


def _ocr_image(img: Image.Image) -> str:
    import pytesseract

    pytesseract.pytesseract.tesseract_cmd = config.ocr.tesseract_cmd
    try:
        return pytesseract.image_to_string(img, lang=config.ocr.lang).strip()
    except Exception as exc:
        # Usually the tesseract binary is missing on this host.
        logger.error("Tesseract failed: %s", exc)
        return ""


def _validate_size(content_bytes: bytes) -> None:
    size_mb = len(content_bytes) / (1024 * 1024)
    if size_mb > config.ingestion.max_file_size_mb:
        raise ExtractionFailure(
            f"File too large ({size_mb:.1f} MB). Max: {config.ingestion.max_file_size_mb} MB",
            {"size_mb": round(size_mb, 1)},
        )


def _describe(exc: Exception) -> str:
    """Codec exceptions sometimes have an empty message."""
    return str(exc) or exc.__class__.__name__

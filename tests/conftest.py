"""Shared pytest fixtures: in-memory workbooks, Word files and stores."""

from __future__ import annotations

import io
import sys
from pathlib import Path

import docx
import openpyxl
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rfp_ingestion.storage import InMemoryDocumentStore


class DictBlobStore:
    """Blob store over a plain dict of path -> bytes."""

    def __init__(self, files=None):
        self.files = dict(files or {})
        self.downloads = []

    def download(self, path: str) -> bytes:
        self.downloads.append(path)
        if path not in self.files:
            raise FileNotFoundError(f"File not found: {path}")
        return self.files[path]


@pytest.fixture
def make_xlsx():
    def _make(sheets):
        wb = openpyxl.Workbook()
        wb.remove(wb.active)
        for name, rows in sheets:
            ws = wb.create_sheet(title=name)
            for row in rows:
                ws.append(row)
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()
    return _make


@pytest.fixture
def make_docx():
    def _make(paragraphs, table_rows=None):
        document = docx.Document()
        for text in paragraphs:
            document.add_paragraph(text)
        if table_rows:
            table = document.add_table(rows=len(table_rows), cols=len(table_rows[0]))
            for r, row in enumerate(table_rows):
                for c, value in enumerate(row):
                    table.cell(r, c).text = value
        buf = io.BytesIO()
        document.save(buf)
        return buf.getvalue()
    return _make


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def blob_store():
    return DictBlobStore()

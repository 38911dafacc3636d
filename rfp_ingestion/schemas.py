"""
schemas.py — Pydantic v2 models for document records.

These models define the shape of what lands in the document store.
Python code uses snake_case attributes; records are dumped with camelCase
keys (totalQuestions, assignedTo, trustScore, ...) because that's what
every reader of the store expects. Always dump with by_alias=True, or
use the to_record() helpers below.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Priority = Literal["high", "medium", "low"]
DocumentStatus = Literal["pending", "processing", "ready", "error"]


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> Dict[str, Any]:
        """JSON-safe dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


class Question(_Record):
    """A single question extracted from an RFP."""
    id: str
    text: str
    response: str = ""
    status: str = "pending"
    assigned_to: Optional[str] = None
    priority: Priority = "low"
    trust_score: float = 0
    citations: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("text")
    @classmethod
    def text_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("question text cannot be empty or whitespace")
        return v


class Section(_Record):
    """Named, ordered group of questions (one per sheet, or one for text)."""
    id: str
    name: str
    questions: List[Question] = Field(default_factory=list)


class ParseResult(_Record):
    """Output of the aggregator, before it's written anywhere."""
    sections: List[Section] = Field(default_factory=list)
    total_questions: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProjectStats(_Record):
    """Progress counters that project documents carry alongside sections."""
    total_questions: int = 0
    answered: int = 0
    in_review: int = 0
    approved: int = 0
    progress: int = 0


# ── Store updates ─────────────────────────────────────────────────────────
# One of these is written per state transition.


class ProcessingUpdate(_Record):
    status: Literal["processing"] = "processing"
    updated_at: datetime


class ReadyUpdate(_Record):
    status: Literal["ready"] = "ready"
    sections: List[Section] = Field(default_factory=list)
    total_questions: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime
    stats: Optional[ProjectStats] = None

    def to_record(self) -> Dict[str, Any]:
        # stats only exists on project documents; don't write a null.
        return self.model_dump(
            by_alias=True, mode="json", exclude={"stats"} if self.stats is None else None
        )


class ErrorUpdate(_Record):
    status: Literal["error"] = "error"
    error_message: str
    updated_at: datetime


class Document(_Record):
    """Full document record as created by the upload flow."""
    id: str
    owner_id: str
    storage_path: str
    content_type: Optional[str] = None
    status: DocumentStatus = "pending"
    sections: List[Section] = Field(default_factory=list)
    total_questions: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


# ── Knowledge base ────────────────────────────────────────────────────────


class KnowledgeChunk(_Record):
    """One retrieval chunk of a knowledge-base document."""
    text: str
    file_name: str
    chunk_index: int
    total_chunks: int


class KnowledgeMeta(_Record):
    """Processing status of one knowledge-base file."""
    file_name: str
    status: Literal["ready", "error"]
    processed_at: datetime
    original_path: Optional[str] = None
    chunks_count: Optional[int] = None
    total_characters: Optional[int] = None
    error_message: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

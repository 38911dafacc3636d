"""
config.py — Central configuration for the RFP ingestion pipeline.

All tunable params live here. Most defaults can be overridden through
environment variables so the upload trigger can be reconfigured without
a code change.

The segmentation thresholds (20 chars for text fragments, 10 chars for
spreadsheet rows, 500 char cap per question) are what the existing
document records were built with. Changing them changes question ids on
re-ingestion, so treat them as part of the data contract.
"""

from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class IngestionConfig:
    """Limits applied to raw uploads before any decoding happens."""
    max_file_size_mb: int = int(os.getenv("RFP_MAX_FILE_SIZE_MB", "50"))
    # Length of the operator-facing text preview stored in metadata.
    preview_chars: int = 500


@dataclass
class OCRConfig:
    """
    Tesseract OCR settings for scanned PDF pages.

    A page with fewer than scanned_char_threshold characters of native
    text is rendered and OCR'd. If OCR comes back empty we keep whatever
    native text the page had.
    """
    enabled: bool = _env_bool("RFP_OCR_ENABLED", True)
    tesseract_cmd: str = os.getenv(
        "TESSERACT_CMD",
        r"C:\Program Files\Tesseract-OCR\tesseract.exe"
        if os.name == "nt"
        else "tesseract",
    )
    lang: str = "eng"
    scanned_char_threshold: int = 50
    dpi: int = 300
    contrast_enhance: bool = True
    denoise: bool = True


@dataclass
class SegmentationConfig:
    """Thresholds for turning raw text and rows into question records."""
    # Flat text: fragments with trimmed length <= this are noise.
    min_fragment_chars: int = 20
    # Hard cap on question text.
    max_question_chars: int = 500
    # Spreadsheets: first-cell text must be longer than this.
    min_row_chars: int = 10
    flat_section_id: str = "section_1"
    flat_section_name: str = "General Questions"
    # 1 = segment sheets sequentially.
    sheet_workers: int = int(os.getenv("RFP_SHEET_WORKERS", "1"))


@dataclass
class KnowledgeConfig:
    """Knowledge-base uploads are split into chunks of roughly this size."""
    chunk_chars: int = 500


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Fail fast on nonsense thresholds."""
        seg = self.segmentation
        if seg.max_question_chars <= seg.min_fragment_chars:
            raise ValueError(
                f"max_question_chars ({seg.max_question_chars}) must exceed "
                f"min_fragment_chars ({seg.min_fragment_chars})"
            )
        if seg.sheet_workers < 1:
            raise ValueError(f"sheet_workers must be >= 1, got {seg.sheet_workers}")
        if self.ingestion.max_file_size_mb <= 0:
            raise ValueError(
                f"max_file_size_mb must be positive, got {self.ingestion.max_file_size_mb}"
            )
        if self.knowledge.chunk_chars < 50:
            logger.warning(
                "Knowledge chunk size of %d chars is very small; "
                "most sentences will end up in their own chunk.",
                self.knowledge.chunk_chars,
            )


# Singleton — every module imports this same instance
config = Config()

"""Text extraction from uploaded files."""

import os
import re
import tempfile
from typing import Optional

from langchain_community.document_loaders import PyMuPDFLoader

from .logging_utils import get_logger

logger = get_logger(__name__)

SUPPORTED_MIME_PREFIXES = ("application/pdf", "image/", "text/")


def is_supported(mime_type: str) -> bool:
    return any(mime_type.startswith(prefix) for prefix in SUPPORTED_MIME_PREFIXES)


def normalize_extracted_text(raw: str) -> str:
    """Fix common extraction artifacts: hyphenated line breaks, runs of whitespace."""
    if not raw:
        return ""
    text = raw.replace("\r", "")
    text = re.sub(r"[\t\f]+", " ", text)
    text = text.replace("-\n", "")
    text = re.sub(r"\n+", "\n", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def looks_scanned(text: str, file_size: int) -> bool:
    """
    Heuristic for image-only PDFs: little text for the file size, or text
    that is mostly non-letters.
    """
    length = len(text.strip())
    ratio = length / file_size if file_size else 0.0
    little_text = length < 100 or ratio < 0.001
    letters = len(re.findall(r"[A-Za-z]", text))
    return little_text or letters < length * 0.5


def ocr_warning(text: str, data: bytes, mime_type: str) -> Optional[str]:
    """Warning for a PDF whose text layer looks missing, else None."""
    if mime_type != "application/pdf" or not looks_scanned(text, len(data)):
        return None
    logger.info("PDF looks scanned (%d chars of text for %d bytes)", len(text), len(data))
    return "PDF appears to be scanned; its text needs OCR before it can be summarized reliably"


def extract_pdf_text(data: bytes) -> str:
    """Extract the text layer of a PDF held in memory."""
    fd, path = tempfile.mkstemp(suffix=".pdf")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        pages = PyMuPDFLoader(path).load()
    finally:
        os.unlink(path)
    return normalize_extracted_text("\n".join(p.page_content or "" for p in pages))


def extract_text(data: bytes, mime_type: str) -> str:
    """
    Best-effort text for an uploaded file.

    PDFs yield their text layer, plain text is decoded, images yield an
    empty string (no OCR here). Failures are logged and yield "" so the
    caller can still fall back to generation.
    """
    try:
        if mime_type == "application/pdf":
            return extract_pdf_text(data)
        if mime_type.startswith("text/"):
            return normalize_extracted_text(data.decode("utf-8", errors="replace"))
    except Exception as exc:
        logger.warning("Text extraction failed for %s: %s", mime_type, exc)
        return ""
    return ""

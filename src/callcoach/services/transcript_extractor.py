"""Extract plain text from uploaded transcript documents (TXT, PDF, DOCX)."""

import asyncio
import io
import logging
from pathlib import PurePath

import pdfplumber
from docx import Document

from callcoach.services.errors import UnsupportedFileTypeError

logger = logging.getLogger(__name__)

ALLOWED_TYPES = {
    "text/plain",
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
ALLOWED_EXTENSIONS = {".txt", ".pdf", ".docx", ".doc"}


def _extension(file_name: str) -> str:
    return PurePath(file_name or "").suffix.lower()


def is_allowed_transcript_file(file_name: str, mime_type: str | None = None) -> bool:
    """True if the file is a supported transcript document by extension or MIME type."""
    if _extension(file_name) in ALLOWED_EXTENSIONS:
        return True
    return bool(mime_type) and mime_type.lower() in ALLOWED_TYPES


def _pdf_text(data: bytes) -> str:
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
    return "\n".join(pages)


def _docx_text(data: bytes) -> str:
    document = Document(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


def _extract_sync(data: bytes, file_name: str, mime_type: str | None) -> str:
    ext = _extension(file_name)
    kind = (mime_type or "").lower()

    if ext == ".txt" or kind == "text/plain":
        return data.decode("utf-8", errors="replace")

    if ext == ".pdf" or kind == "application/pdf":
        return _pdf_text(data)

    if ext in (".docx", ".doc") or "wordprocessingml" in kind or "msword" in kind:
        return _docx_text(data)

    raise UnsupportedFileTypeError(
        f"Unsupported transcript file type: {file_name}. Use .txt, .pdf, or .docx"
    )


class TranscriptExtractor:
    """Text-extraction collaborator for transcript documents."""

    async def extract(self, data: bytes, file_name: str, mime_type: str | None = None) -> str:
        """Return the document's text. PDF/DOCX parsing runs off the event loop."""
        if not is_allowed_transcript_file(file_name, mime_type):
            raise UnsupportedFileTypeError(
                f"Unsupported transcript file type: {file_name}. Use .txt, .pdf, or .docx"
            )
        text = await asyncio.to_thread(_extract_sync, data, file_name, mime_type)
        logger.info("Extracted %d chars from %s", len(text), file_name)
        return text

"""Tests for transcript document text extraction."""

import io
from unittest.mock import MagicMock, patch

import pytest
from docx import Document

from callcoach.services.errors import UnsupportedFileTypeError
from callcoach.services.transcript_extractor import (
    TranscriptExtractor,
    is_allowed_transcript_file,
)


@pytest.fixture
def extractor():
    return TranscriptExtractor()


class TestIsAllowed:
    @pytest.mark.parametrize("name,mime", [
        ("call.txt", None),
        ("CALL.PDF", None),
        ("call.docx", "application/octet-stream"),
        ("legacy.doc", None),
        ("upload", "text/plain"),
        ("upload", "application/pdf"),
    ])
    def test_allowed(self, name, mime):
        assert is_allowed_transcript_file(name, mime) is True

    @pytest.mark.parametrize("name,mime", [
        ("call.rtf", "application/rtf"),
        ("call.mp3", "audio/mpeg"),
        ("noext", None),
        ("", ""),
    ])
    def test_rejected(self, name, mime):
        assert is_allowed_transcript_file(name, mime) is False


class TestExtract:
    async def test_txt(self, extractor):
        text = await extractor.extract("Speaker A: héllo\n".encode("utf-8"), "call.txt", "text/plain")
        assert text == "Speaker A: héllo\n"

    async def test_txt_with_invalid_bytes_is_replaced(self, extractor):
        text = await extractor.extract(b"ok \xff done", "call.txt")
        assert text.startswith("ok ")
        assert text.endswith(" done")

    async def test_docx(self, extractor):
        document = Document()
        document.add_paragraph("Speaker A: Thanks for joining.")
        document.add_paragraph("Speaker B: Glad to be here.")
        buffer = io.BytesIO()
        document.save(buffer)

        text = await extractor.extract(buffer.getvalue(), "call.docx")

        assert "Speaker A: Thanks for joining.\nSpeaker B: Glad to be here." in text

    async def test_pdf_pages_are_joined(self, extractor):
        pages = [MagicMock(), MagicMock(), MagicMock()]
        pages[0].extract_text.return_value = "Speaker A: page one"
        pages[1].extract_text.return_value = None
        pages[2].extract_text.return_value = "Speaker B: page three"
        pdf = MagicMock()
        pdf.pages = pages
        pdf.__enter__.return_value = pdf

        with patch("callcoach.services.transcript_extractor.pdfplumber.open", return_value=pdf):
            text = await extractor.extract(b"%PDF-1.7", "call.pdf", "application/pdf")

        assert text == "Speaker A: page one\n\nSpeaker B: page three"

    async def test_unsupported_type(self, extractor):
        with pytest.raises(UnsupportedFileTypeError, match="call.rtf"):
            await extractor.extract(b"{\\rtf1}", "call.rtf", "application/rtf")

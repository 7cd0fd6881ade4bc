"""
Tests for native PDF text extraction and rasterization.
"""

import pytest

from statement_pipeline.errors import UnsupportedDocumentError
from statement_pipeline.extraction.pdf_text import extract_pdf_text, rasterize_pdf


def build_pdf(page_lines: list[list[str]]) -> bytes:
    """Build a small PDF with one Helvetica text block per page."""
    page_count = len(page_lines)
    font_num = 3 + 2 * page_count
    kids = " ".join(f"{3 + 2 * i} 0 R" for i in range(page_count))

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>".encode(),
    ]
    for i, lines in enumerate(page_lines):
        stream = "BT /F1 12 Tf 72 720 Td 14 TL "
        stream += " ".join(f"({line}) Tj T*" for line in lines)
        stream += " ET"
        objects.append(
            (
                f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 {font_num} 0 R >> >> /Contents {4 + 2 * i} 0 R >>"
            ).encode()
        )
        objects.append(
            f"<< /Length {len(stream)} >>\nstream\n{stream}\nendstream".encode()
        )
    objects.append(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode()
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n"
    ).encode()
    return bytes(out)


@pytest.fixture
def statement_pdf():
    return build_pdf(
        [
            ["BALANCE B/F 1,000.00", "02 MAR GRABFOOD -12.50 987.50"],
            ["15 MAR SALARY 3,000.00 3,971.51", "BALANCE C/F 3,471.51"],
        ]
    )


class TestExtractPdfText:
    """Tests for reading the text layer."""

    def test_reads_all_pages(self, statement_pdf):
        result = extract_pdf_text(statement_pdf)

        assert result.page_count == 2
        assert result.pages_read == 2
        assert len(result.pages) == 2
        assert "GRABFOOD" in result.pages[0]
        assert "BALANCE B/F" in result.text
        assert "GRABFOOD" in result.text
        assert "BALANCE C/F" in result.text
        assert result.char_count > 40

    def test_page_limit(self, statement_pdf):
        result = extract_pdf_text(statement_pdf, max_pages=1)

        assert result.page_count == 2
        assert result.pages_read == 1
        assert "GRABFOOD" in result.text
        assert "SALARY" not in result.text

    def test_page_without_text(self):
        result = extract_pdf_text(build_pdf([[]]))

        assert result.page_count == 1
        assert result.char_count == 0

    def test_not_a_pdf(self):
        with pytest.raises(UnsupportedDocumentError):
            extract_pdf_text(b"hello, not a pdf")


class TestRasterizePdf:
    """Tests for page rendering."""

    def test_renders_png_per_page(self, statement_pdf):
        images = rasterize_pdf(statement_pdf, resolution=36)

        assert len(images) == 2
        assert all(image.startswith(b"\x89PNG\r\n\x1a\n") for image in images)

    def test_page_limit(self, statement_pdf):
        assert len(rasterize_pdf(statement_pdf, max_pages=1, resolution=36)) == 1

    def test_not_a_pdf(self):
        with pytest.raises(UnsupportedDocumentError):
            rasterize_pdf(b"not a pdf")

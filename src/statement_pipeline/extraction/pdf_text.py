"""
Native PDF handling with pdfplumber.

Text-bearing PDFs are read page by page. Scanned PDFs (little or no text)
are rasterized to PNG so the vision route can read them.
"""

import io
import logging
from dataclasses import dataclass, field

import pdfplumber

from ..errors import UnsupportedDocumentError

logger = logging.getLogger(__name__)


@dataclass
class PdfText:
    """Text recovered from a PDF."""

    text: str
    page_count: int
    pages_read: int
    # Text of each page read, empty strings included
    pages: list[str] = field(default_factory=list)

    @property
    def char_count(self) -> int:
        return len(self.text.strip())


def extract_pdf_text(content: bytes, max_pages: int = 20) -> PdfText:
    """
    Extract the text layer of a PDF.

    Raises:
        UnsupportedDocumentError: If the bytes cannot be opened as a PDF
    """
    try:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            page_count = len(pdf.pages)
            pages = pdf.pages[:max_pages]
            texts = [page.extract_text() or "" for page in pages]
    except Exception as e:
        raise UnsupportedDocumentError(f"Could not open PDF: {e}") from e

    if page_count > max_pages:
        logger.warning(f"PDF has {page_count} pages; reading the first {max_pages}")

    return PdfText(
        text="\n\n".join(t for t in texts if t),
        page_count=page_count,
        pages_read=len(pages),
        pages=texts,
    )


def rasterize_pdf(content: bytes, max_pages: int = 20, resolution: int = 150) -> list[bytes]:
    """
    Render PDF pages to PNG bytes.

    Raises:
        UnsupportedDocumentError: If the PDF cannot be rendered
    """
    images: list[bytes] = []
    try:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            for page in pdf.pages[:max_pages]:
                rendered = page.to_image(resolution=resolution)
                buffer = io.BytesIO()
                rendered.original.save(buffer, format="PNG")
                images.append(buffer.getvalue())
    except Exception as e:
        raise UnsupportedDocumentError(f"Could not render PDF pages: {e}") from e

    if not images:
        raise UnsupportedDocumentError("PDF has no pages")
    return images

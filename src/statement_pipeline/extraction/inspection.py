"""
Document inspection.

Classifies fetched bytes as PDF, image, or unsupported. Magic bytes win
over the declared mime type, which is only trusted for image formats we
cannot sniff cheaply.
"""

from enum import Enum
from typing import Optional


class DocumentKind(str, Enum):
    """Shape of an uploaded file."""

    PDF = "pdf"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


_MAGIC = [
    (b"%PDF-", DocumentKind.PDF, "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", DocumentKind.IMAGE, "image/png"),
    (b"\xff\xd8\xff", DocumentKind.IMAGE, "image/jpeg"),
    (b"GIF87a", DocumentKind.IMAGE, "image/gif"),
    (b"GIF89a", DocumentKind.IMAGE, "image/gif"),
]

IMAGE_MIME_TYPES = frozenset(
    {"image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif", "image/heic", "image/heif"}
)


def sniff_mime_type(content: bytes) -> Optional[str]:
    """Return the mime type implied by the file header, if recognizable."""
    head = content[:16]
    # Some scanners prepend whitespace or a BOM before the PDF header
    if b"%PDF-" in content[:1024]:
        return "application/pdf"
    for magic, _, mime in _MAGIC:
        if head.startswith(magic):
            return mime
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[4:12] in (b"ftypheic", b"ftypheix", b"ftypmif1"):
        return "image/heic"
    return None


def _normalize_mime(mime_type: Optional[str]) -> str:
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def inspect_document(content: bytes, declared_mime: Optional[str] = None) -> DocumentKind:
    """
    Decide how a document can be read.

    Args:
        content: Raw file bytes
        declared_mime: Mime type recorded at upload (or the download Content-Type)

    Returns:
        DocumentKind.PDF for PDFs, IMAGE for photos/scans, else UNSUPPORTED
    """
    sniffed = sniff_mime_type(content)
    if sniffed == "application/pdf":
        return DocumentKind.PDF
    if sniffed in IMAGE_MIME_TYPES:
        return DocumentKind.IMAGE

    if _normalize_mime(declared_mime) in IMAGE_MIME_TYPES:
        return DocumentKind.IMAGE
    return DocumentKind.UNSUPPORTED

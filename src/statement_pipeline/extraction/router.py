"""
Extraction router - chooses the text or vision route and validates output.
"""

import logging
import re
from typing import Any, Optional

from ..budget import Deadline
from ..errors import ExtractionRefusedError, MalformedOutputError, UnsupportedDocumentError
from ..schemas import BalanceEvidence, ExtractionResult, ExtractionStats, ExtractionStrategy
from ..storage import FetchedDocument
from .anchors import find_balance_anchors
from .inspection import DocumentKind, inspect_document
from .json_recovery import JSONRecoveryError, extract_json
from .payload import parse_payload
from .pdf_text import extract_pdf_text, rasterize_pdf
from .service import ExtractionServiceClient

logger = logging.getLogger(__name__)

REFUSAL_RE = re.compile(
    r"(?i)\b(?:can(?:'|’)?t|cannot|unable to|won(?:'|’)?t)\s+(?:assist|help|process|comply)"
)


class ExtractionRouter:
    """
    Routes a fetched upload to one extraction call.

    Route selection per file:
    1. PDF with a usable text layer -> text route (local text extraction)
    2. PDF with near-empty text (scanned) -> pages rasterized for the vision route
    3. Image -> vision route
    4. Anything else -> UnsupportedDocumentError

    If any file needs vision, the whole upload goes through one vision call,
    with whatever text was recovered attached as a hint.

    Text longer than ``max_text_chars`` over several pages first goes through
    a page-selection call, and only the pages holding transaction tables are
    sent for extraction. Balance anchors are still read from the full text.
    """

    VERSION = "2.0.0"

    def __init__(
        self,
        service: ExtractionServiceClient,
        default_currency: str = "SGD",
        min_text_chars: int = 50,
        max_text_chars: int = 50_000,
        max_pages: int = 20,
        raster_resolution: int = 150,
    ):
        self.service = service
        self.default_currency = default_currency
        self.min_text_chars = min_text_chars
        self.max_text_chars = max_text_chars
        self.max_pages = max_pages
        self.raster_resolution = raster_resolution

    def extract(
        self,
        documents: list[FetchedDocument],
        declared_mime: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> ExtractionResult:
        """
        Extract raw transactions from one upload.

        Args:
            documents: Fetched files, in page order
            declared_mime: Mime type recorded at upload
            deadline: Job budget; caps the extraction call timeout

        Returns:
            ExtractionResult with validated rows, balance evidence and stats

        Raises:
            UnsupportedDocumentError: A file is neither a PDF nor an image
            MalformedOutputError / SchemaValidationError: Unusable model output
            ExtractionRefusedError: The model declined the document
            ServiceUnavailableError: Retries exhausted
            ProcessingTimeoutError: Budget exhausted
        """
        if not documents:
            raise UnsupportedDocumentError("Upload has no files")

        texts: list[str] = []
        page_texts: list[str] = []
        images: list[bytes] = []
        page_count = 0

        for doc in documents:
            kind = inspect_document(doc.content, declared_mime or doc.content_type)
            if kind == DocumentKind.PDF:
                pdf = extract_pdf_text(doc.content, max_pages=self.max_pages)
                page_count += pdf.pages_read
                if pdf.char_count >= self.min_text_chars:
                    logger.info(
                        f"{doc.file_ref}: text layer with {pdf.char_count} chars "
                        f"on {pdf.pages_read} pages"
                    )
                    texts.append(pdf.text)
                    page_texts.extend(page for page in (pdf.pages or [pdf.text]) if page.strip())
                else:
                    logger.info(
                        f"{doc.file_ref}: only {pdf.char_count} chars of text, treating as scanned"
                    )
                    images.extend(
                        rasterize_pdf(doc.content, self.max_pages, self.raster_resolution)
                    )
            elif kind == DocumentKind.IMAGE:
                page_count += 1
                images.append(doc.content)
            else:
                raise UnsupportedDocumentError(
                    f"{doc.file_ref} has no readable text and is not an image "
                    f"(type: {declared_mime or doc.content_type or 'unknown'})"
                )

        full_text = "\n\n".join(texts)
        text = full_text
        if len(text) > self.max_text_chars and not images and len(page_texts) > 1:
            text = self.select_transaction_pages(page_texts, deadline)
        if len(text) > self.max_text_chars:
            logger.warning(
                f"Statement text truncated from {len(text)} to {self.max_text_chars} chars"
            )
            text = text[: self.max_text_chars]

        if images:
            strategy = ExtractionStrategy.VISION
            logger.info(f"Vision extraction over {len(images)} page images")
            raw = self.service.extract_images(
                images, self.default_currency, hint_text=text or None, deadline=deadline
            )
        else:
            strategy = ExtractionStrategy.TEXT
            logger.info(f"Text extraction over {len(text)} chars")
            raw = self.service.extract_text(text, self.default_currency, deadline=deadline)

        data = self.parse_output(raw)
        transactions, balances = parse_payload(data, self.default_currency)
        balances = self._merge_anchors(balances, full_text)

        stats = ExtractionStats(
            strategy=strategy,
            document_count=len(documents),
            page_count=page_count,
            text_chars=len(text),
            raw_count=len(transactions),
        )
        logger.info(
            f"Extracted {len(transactions)} rows via {strategy.value} route "
            f"(opening={balances.opening}, closing={balances.closing})"
        )
        return ExtractionResult(transactions=transactions, balances=balances, stats=stats)

    def select_transaction_pages(
        self, pages: list[str], deadline: Optional[Deadline] = None
    ) -> str:
        """
        Keep only the pages the model says hold transaction tables.

        Falls back to every page when the answer is unreadable or names no
        valid page. Service failures propagate like any extraction call.
        """
        everything = "\n\n".join(pages)
        try:
            data = extract_json(self.service.identify_pages(pages, deadline=deadline))
        except (JSONRecoveryError, MalformedOutputError) as e:
            logger.warning(f"Page selection unreadable, using all {len(pages)} pages: {e}")
            return everything

        numbers = data.get("pages") if isinstance(data, dict) else data
        if not isinstance(numbers, list):
            numbers = []
        chosen = sorted(
            {
                n - 1
                for n in numbers
                if isinstance(n, int) and not isinstance(n, bool) and 1 <= n <= len(pages)
            }
        )
        if not chosen:
            logger.warning(f"No transaction pages identified, using all {len(pages)} pages")
            return everything

        logger.info(f"Transaction tables on pages {[i + 1 for i in chosen]} of {len(pages)}")
        return "\n\n".join(pages[i] for i in chosen)

    @staticmethod
    def parse_output(raw: str) -> Any:
        """Decode model output, distinguishing refusals from garbage."""
        try:
            return extract_json(raw)
        except JSONRecoveryError as e:
            if REFUSAL_RE.search(raw or ""):
                raise ExtractionRefusedError(
                    f"Extraction model refused the document: {(raw or '').strip()[:120]}"
                ) from e
            raise MalformedOutputError(f"Could not parse extraction output: {e}") from e

    @staticmethod
    def _merge_anchors(balances: BalanceEvidence, text: str) -> BalanceEvidence:
        """Fill missing opening/closing balances from statement text anchors."""
        if balances.is_complete or not text:
            return balances
        anchors = find_balance_anchors(text)
        if anchors is None:
            return balances
        from_model = balances.opening is not None or balances.closing is not None
        merged = BalanceEvidence(
            opening=balances.opening if balances.opening is not None else anchors.opening,
            closing=balances.closing if balances.closing is not None else anchors.closing,
            source=f"{balances.source}+{anchors.source}" if from_model else anchors.source,
        )
        logger.debug(f"Balance anchors from statement text: {anchors}")
        return merged

"""
Tests for document inspection, balance anchors, payload validation and routing.
"""

import json
from decimal import Decimal

import pytest

from statement_pipeline.errors import (
    ExtractionRefusedError,
    MalformedOutputError,
    SchemaValidationError,
    UnsupportedDocumentError,
)
from statement_pipeline.extraction import DocumentKind, ExtractionRouter, inspect_document
from statement_pipeline.extraction.anchors import find_balance_anchors
from statement_pipeline.extraction.payload import parse_payload
from statement_pipeline.extraction.pdf_text import PdfText
from statement_pipeline.schemas import BalanceEvidence, ExtractionStrategy
from statement_pipeline.storage import FetchedDocument

PDF_BYTES = b"%PDF-1.7\n fake pdf body"
PNG_BYTES = b"\x89PNG\r\n\x1a\n fake png body"


class FakeService:
    """Stands in for ExtractionServiceClient and records calls."""

    def __init__(self, output, pages_output='{"pages": []}'):
        self.output = output
        self.pages_output = pages_output
        self.text_calls = []
        self.image_calls = []
        self.page_calls = []

    def extract_text(self, text, currency, deadline=None):
        self.text_calls.append((text, currency))
        return self.output

    def extract_images(self, images, currency, hint_text=None, deadline=None):
        self.image_calls.append((images, currency, hint_text))
        return self.output

    def identify_pages(self, pages, deadline=None):
        self.page_calls.append(pages)
        return self.pages_output


@pytest.fixture
def text_pdf(monkeypatch, sample_statement_text):
    """Make every PDF read as the sample statement text."""

    def fake_extract(content, max_pages=20):
        return PdfText(text=sample_statement_text, page_count=1, pages_read=1)

    monkeypatch.setattr("statement_pipeline.extraction.router.extract_pdf_text", fake_extract)


@pytest.fixture
def scanned_pdf(monkeypatch):
    """Make every PDF read as a two-page scan with no text layer."""

    def fake_extract(content, max_pages=20):
        return PdfText(text="", page_count=2, pages_read=2)

    def fake_rasterize(content, max_pages=20, resolution=150):
        return [b"page-1-png", b"page-2-png"]

    monkeypatch.setattr("statement_pipeline.extraction.router.extract_pdf_text", fake_extract)
    monkeypatch.setattr("statement_pipeline.extraction.router.rasterize_pdf", fake_rasterize)


class TestInspection:
    """Tests for file classification."""

    def test_pdf_magic_wins_over_declared_mime(self):
        assert inspect_document(PDF_BYTES, "image/png") == DocumentKind.PDF

    def test_png_sniffed(self):
        assert inspect_document(PNG_BYTES) == DocumentKind.IMAGE

    def test_declared_image_mime_trusted(self):
        assert inspect_document(b"opaque", "image/jpeg; charset=binary") == DocumentKind.IMAGE

    def test_plain_text_unsupported(self):
        assert inspect_document(b"hello", "text/plain") == DocumentKind.UNSUPPORTED


class TestBalanceAnchors:
    """Tests for opening/closing detection in statement text."""

    def test_brought_and_carried_forward(self, sample_statement_text):
        anchors = find_balance_anchors(sample_statement_text)

        assert anchors.opening == Decimal("1000.00")
        assert anchors.closing == Decimal("3471.51")
        assert anchors.source == "statement_text"

    def test_last_closing_wins(self):
        text = "Opening Balance 10.00\nBalance C/F 20.00\npage 2\nBalance C/F 30.00\n"
        assert find_balance_anchors(text).closing == Decimal("30.00")

    def test_no_anchors(self):
        assert find_balance_anchors("just some rows 12.00") is None
        assert find_balance_anchors("") is None


class TestParsePayload:
    """Tests for strict payload validation."""

    def test_object_payload(self, sample_payload):
        rows, balances = parse_payload(sample_payload, "SGD")

        assert len(rows) == 4
        assert rows[0].amount == Decimal("-12.5")
        assert rows[0].balance == Decimal("987.5")
        assert balances.opening == Decimal("1000.0")
        assert balances.source == "extraction"

    def test_bare_array_and_camel_case(self):
        rows, balances = parse_payload(
            [{"date": "2024-03-01", "description": "X", "amount": "-1.00"}], "SGD"
        )
        assert rows[0].currency == "SGD"
        assert balances.opening is None

        _, balances = parse_payload({"transactions": [], "closingBalance": "5.00"}, "SGD")
        assert balances.closing == Decimal("5.00")

    def test_bad_row_rejects_whole_payload(self, sample_payload):
        sample_payload["transactions"][2]["amount"] = "lots"

        with pytest.raises(SchemaValidationError) as exc:
            parse_payload(sample_payload, "SGD")

        assert exc.value.path == "transactions[2].amount"

    @pytest.mark.parametrize(
        "data",
        [{"rows": []}, {"transactions": "none"}, "text", [{"description": "no date", "amount": 1}]],
    )
    def test_structural_violations(self, data):
        with pytest.raises(SchemaValidationError):
            parse_payload(data, "SGD")


class TestExtractionRouter:
    """Tests for route selection and output handling."""

    def test_text_route(self, text_pdf, sample_payload):
        service = FakeService(json.dumps(sample_payload))
        router = ExtractionRouter(service)

        result = router.extract([FetchedDocument("u/1.pdf", PDF_BYTES)], "application/pdf")

        assert result.stats.strategy == ExtractionStrategy.TEXT
        assert result.stats.raw_count == 4
        assert result.stats.page_count == 1
        assert len(service.text_calls) == 1
        assert service.image_calls == []
        assert "BALANCE B/F" in service.text_calls[0][0]

    def test_scanned_pdf_uses_vision_route(self, scanned_pdf, sample_payload):
        service = FakeService(json.dumps(sample_payload))
        router = ExtractionRouter(service)

        result = router.extract([FetchedDocument("u/1.pdf", PDF_BYTES)])

        assert result.stats.strategy == ExtractionStrategy.VISION
        images, _, hint = service.image_calls[0]
        assert images == [b"page-1-png", b"page-2-png"]
        assert hint is None

    def test_image_route(self, sample_payload):
        service = FakeService(json.dumps(sample_payload))
        router = ExtractionRouter(service)

        result = router.extract([FetchedDocument("u/1.png", PNG_BYTES, "image/png")])

        assert result.stats.strategy == ExtractionStrategy.VISION
        assert service.image_calls[0][0] == [PNG_BYTES]

    def test_unsupported_document(self):
        service = FakeService("{}")
        router = ExtractionRouter(service)

        with pytest.raises(UnsupportedDocumentError):
            router.extract([FetchedDocument("u/notes.txt", b"hello")], "text/plain")

        assert service.text_calls == []
        assert service.image_calls == []

    def test_no_documents(self):
        with pytest.raises(UnsupportedDocumentError):
            ExtractionRouter(FakeService("{}")).extract([])

    def test_anchors_fill_missing_balances(self, text_pdf, sample_payload):
        del sample_payload["opening_balance"]
        del sample_payload["closing_balance"]
        router = ExtractionRouter(FakeService(json.dumps(sample_payload)))

        result = router.extract([FetchedDocument("u/1.pdf", PDF_BYTES)])

        assert result.balances.opening == Decimal("1000.00")
        assert result.balances.closing == Decimal("3471.51")
        assert result.balances.source == "statement_text"

    def test_partial_model_balances_are_labelled_mixed(self, text_pdf, sample_payload):
        sample_payload["opening_balance"] = 999.00
        del sample_payload["closing_balance"]
        router = ExtractionRouter(FakeService(json.dumps(sample_payload)))

        result = router.extract([FetchedDocument("u/1.pdf", PDF_BYTES)])

        assert result.balances.opening == Decimal("999.00")
        assert result.balances.closing == Decimal("3471.51")
        assert result.balances.source == "extraction+statement_text"

    def test_model_balances_kept_when_complete(self, text_pdf, sample_payload):
        sample_payload["closing_balance"] = 9.99
        router = ExtractionRouter(FakeService(json.dumps(sample_payload)))

        result = router.extract([FetchedDocument("u/1.pdf", PDF_BYTES)])

        assert result.balances.closing == Decimal("9.99")
        assert result.balances.source == "extraction"

    def test_fenced_output_is_recovered(self, text_pdf, sample_payload):
        output = "Here you go:\n```json\n" + json.dumps(sample_payload) + "\n```"
        router = ExtractionRouter(FakeService(output))

        result = router.extract([FetchedDocument("u/1.pdf", PDF_BYTES)])

        assert len(result.transactions) == 4

    def test_refusal(self, text_pdf):
        router = ExtractionRouter(FakeService("I'm sorry, but I can't assist with that."))

        with pytest.raises(ExtractionRefusedError):
            router.extract([FetchedDocument("u/1.pdf", PDF_BYTES)])

    def test_garbage_output(self, text_pdf):
        router = ExtractionRouter(FakeService("the statement shows several rows"))

        with pytest.raises(MalformedOutputError) as exc:
            router.extract([FetchedDocument("u/1.pdf", PDF_BYTES)])

        assert not isinstance(exc.value, ExtractionRefusedError)

    def test_merge_anchors_keeps_partial_model_value(self, sample_statement_text):
        merged = ExtractionRouter._merge_anchors(
            BalanceEvidence(opening=Decimal("999.00"), closing=None), sample_statement_text
        )
        assert merged.opening == Decimal("999.00")
        assert merged.closing == Decimal("3471.51")
        assert merged.source == "extraction+statement_text"


SUMMARY_PAGE = "ACCOUNT SUMMARY\nBALANCE B/F 1,000.00\nBALANCE C/F 3,471.51\n" + "terms " * 40
ROWS_PAGE = "02 MAR GRABFOOD -12.50 987.50\n" * 10
LEGAL_PAGE = "IMPORTANT NOTICE " * 20


class TestPageSelection:
    """Tests for narrowing long statements to their transaction pages."""

    @pytest.fixture
    def long_pdf(self, monkeypatch):
        pages = [SUMMARY_PAGE, ROWS_PAGE, LEGAL_PAGE]

        def fake_extract(content, max_pages=20):
            return PdfText(
                text="\n\n".join(pages), page_count=3, pages_read=3, pages=pages
            )

        monkeypatch.setattr("statement_pipeline.extraction.router.extract_pdf_text", fake_extract)

    def extract(self, service):
        router = ExtractionRouter(service, max_text_chars=500)
        return router.extract([FetchedDocument("u/long.pdf", PDF_BYTES)])

    def test_only_selected_pages_are_sent(self, long_pdf, sample_payload):
        service = FakeService(json.dumps(sample_payload), pages_output='{"pages": [2]}')

        result = self.extract(service)

        assert service.page_calls == [[SUMMARY_PAGE, ROWS_PAGE, LEGAL_PAGE]]
        sent = service.text_calls[0][0]
        assert "GRABFOOD" in sent
        assert "ACCOUNT SUMMARY" not in sent
        assert "IMPORTANT NOTICE" not in sent
        assert result.stats.text_chars == len(ROWS_PAGE)

    def test_anchors_read_from_unselected_pages(self, long_pdf, sample_payload):
        del sample_payload["opening_balance"]
        del sample_payload["closing_balance"]
        service = FakeService(json.dumps(sample_payload), pages_output="[2]")

        result = self.extract(service)

        assert result.balances.opening == Decimal("1000.00")
        assert result.balances.closing == Decimal("3471.51")

    @pytest.mark.parametrize(
        "pages_output", ['{"pages": []}', '{"pages": [0, 9, true]}', "no idea"]
    )
    def test_falls_back_to_all_pages(self, long_pdf, sample_payload, pages_output):
        service = FakeService(json.dumps(sample_payload), pages_output=pages_output)

        result = self.extract(service)

        sent = service.text_calls[0][0]
        assert sent.startswith("ACCOUNT SUMMARY")
        assert result.stats.text_chars == 500

    def test_short_text_skips_selection(self, text_pdf, sample_payload):
        service = FakeService(json.dumps(sample_payload))

        ExtractionRouter(service).extract([FetchedDocument("u/1.pdf", PDF_BYTES)])

        assert service.page_calls == []

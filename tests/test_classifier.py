"""Tests for content classification."""

import pytest

from harvester.resolver.classifier import (
    BodyKind,
    ContentClassifier,
    SniffResult,
    plain_mime_type,
    sniff_first_line,
)
from harvester.resolver.types import ResourceKind

PAPER_URL = "https://repo.example.org/files/123"


@pytest.fixture
def classifier():
    return ContentClassifier(want_documents=True, want_datasets=True)


class TestHeaders:
    def test_pdf_content_type(self, classifier):
        result = classifier.classify(PAPER_URL, {"Content-Type": "application/pdf"})
        assert result.kind is ResourceKind.DOCUMENT
        assert result.mime_type == "application/pdf"
        assert result.type_declared

    def test_charset_and_quotes_are_stripped(self, classifier):
        result = classifier.classify(PAPER_URL, {"content-type": '"application/pdf"; charset=binary'})
        assert result.kind is ResourceKind.DOCUMENT

    def test_html_is_page(self, classifier):
        result = classifier.classify(PAPER_URL, {"Content-Type": "text/html; charset=UTF-8"})
        assert result.kind is ResourceKind.PAGE

    def test_octet_stream_with_pdf_filename_is_document(self, classifier):
        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Disposition": 'attachment; filename="paper.pdf"',
        }
        assert classifier.classify(PAPER_URL, headers).kind is ResourceKind.DOCUMENT

    def test_octet_stream_with_dataset_filename_is_dataset(self, classifier):
        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Disposition": "attachment; filename=table.csv",
        }
        assert classifier.classify(PAPER_URL, headers).kind is ResourceKind.DATASET

    def test_octet_stream_falls_back_to_url(self, classifier):
        headers = {"Content-Type": "application/octet-stream"}
        assert classifier.classify("https://repo.example.org/a.pdf", headers).kind is ResourceKind.DOCUMENT
        assert classifier.classify(PAPER_URL, headers).kind is ResourceKind.UNKNOWN

    def test_bare_attachment_disposition_uses_url(self, classifier):
        headers = {"Content-Disposition": "attachment"}
        assert classifier.classify("https://repo.example.org/get/pdf/1", headers).kind is ResourceKind.DOCUMENT

    def test_vendor_placeholder_type(self, classifier):
        headers = {
            "Content-Type": "System.IO.FileInfo",
            "Content-Disposition": 'inline; filename="report.pdf"',
        }
        result = classifier.classify(PAPER_URL, headers)
        assert result.kind is ResourceKind.DOCUMENT
        assert result.mime_type == "system.io.fileinfo"

    def test_dataset_mime_type(self, classifier):
        result = classifier.classify(PAPER_URL, {"Content-Type": "text/csv"})
        assert result.kind is ResourceKind.DATASET

    def test_unknown_type(self, classifier):
        result = classifier.classify(PAPER_URL, {"Content-Type": "image/png"})
        assert result.kind is ResourceKind.UNKNOWN
        assert result.type_declared

    def test_unwanted_families_are_not_recognized(self):
        documents_only = ContentClassifier(want_documents=True, want_datasets=False)
        datasets_only = ContentClassifier(want_documents=False, want_datasets=True)

        assert documents_only.classify(PAPER_URL, {"Content-Type": "application/zip"}).kind is ResourceKind.UNKNOWN
        assert datasets_only.classify(PAPER_URL, {"Content-Type": "application/pdf"}).kind is ResourceKind.UNKNOWN

    def test_classify_is_idempotent(self, classifier):
        headers = {"Content-Type": "application/octet-stream", "Content-Disposition": "attachment; filename=a.pdf"}
        first = classifier.classify(PAPER_URL, headers)
        second = classifier.classify(PAPER_URL, headers)
        assert first == second


class TestBodySniffing:
    def test_no_headers_html_body_is_page(self, classifier):
        sniffer = lambda: sniff_first_line(["", "<!DOCTYPE html>", "<html>"])
        result = classifier.classify(PAPER_URL, {}, sniffer)
        assert result.kind is ResourceKind.PAGE
        assert not result.type_declared
        assert result.sniffed

    def test_no_headers_pdf_body_is_document(self, classifier):
        result = classifier.classify(PAPER_URL, {}, lambda: SniffResult(BodyKind.PDF, "%PDF-1.4"))
        assert result.kind is ResourceKind.DOCUMENT
        assert result.sniffed

    def test_no_headers_without_sniffer(self, classifier):
        result = classifier.classify(PAPER_URL, {})
        assert result.kind is ResourceKind.UNKNOWN
        assert not result.type_declared

    def test_no_headers_unrecognized_body(self, classifier):
        result = classifier.classify(PAPER_URL, {}, lambda: sniff_first_line(["plain words"]))
        assert result.kind is ResourceKind.UNKNOWN
        assert not result.type_declared


class TestHelpers:
    def test_sniff_skips_noise_lines(self):
        result = sniff_first_line(["", " ", "x", '<?xml version="1.0"?>', "<!-- c -->", "%PDF-1.5"])
        assert result == SniffResult(BodyKind.PDF, "%PDF-1.5")

    def test_sniff_empty_body(self):
        assert sniff_first_line([]) is None

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("application/pdf", "application/pdf"),
            ("text/html; charset=utf-8", "text/html"),
            ("('application/pdf')", "application/pdf"),
            ("application/pdf; name=paper.pdf", "application/pdf"),
            ("", None),
        ],
    )
    def test_plain_mime_type(self, raw, expected):
        assert plain_mime_type(raw) == expected

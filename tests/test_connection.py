"""Tests for single connection attempts."""

import random
import threading

import pytest
import requests

from conftest import FakeClock, FakeWeb, build_harness, make_config
from harvester.resolver.connection import ConnectionManager
from harvester.resolver.errors import (
    BlockedError,
    ConnTimeoutError,
    HeadUnsupportedError,
    ProtocolError,
)
from harvester.resolver.health import DomainHealthStore
from harvester.resolver.types import FailureCategory, HttpMethod, Role

PDF_URL = "https://repo.example.org/files/paper.pdf"


class FixedGap(random.Random):
    def uniform(self, a, b):
        return 5.0


def fixed_gap_connection():
    config = make_config(min_politeness_delay_seconds=1.0, max_politeness_delay_seconds=7.0)
    clock = FakeClock()
    web = FakeWeb(clock)
    web.pdf(PDF_URL)
    connection = ConnectionManager(
        config,
        DomainHealthStore(config),
        session_factory=web.session,
        clock=clock.now,
        sleep=clock.sleep,
        rng=FixedGap(),
    )
    return connection, clock, web


class TestMethodSelection:
    def test_page_requests_use_get(self, harness):
        harness.web.html("https://repo.example.org/record/1", "<html></html>")
        response = harness.connection.attempt("https://repo.example.org/record/1", None, Role.PAGE_REQUEST)

        assert response.method is HttpMethod.GET
        assert harness.web.calls[0].method == "GET"
        assert harness.web.calls[0].timeout == (15.0, 15.0)

    def test_links_use_head(self, harness):
        harness.web.pdf(PDF_URL)
        response = harness.connection.attempt(PDF_URL, "repo.example.org", Role.CANDIDATE_RESOURCE)

        assert response.method is HttpMethod.HEAD
        assert harness.web.calls[0].timeout == (10.0, 10.0)
        assert harness.web.calls[0].headers["User-Agent"] == harness.config.user_agent

    def test_candidates_use_get_when_downloading(self):
        h = build_harness(download_documents=True)
        h.web.pdf(PDF_URL)

        response = h.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert response.method is HttpMethod.GET

    def test_get_only_domains(self):
        h = build_harness(get_only_domains=["cdn.example.org"])
        h.web.pdf("https://x.cdn.example.org/files/a.pdf")

        response = h.connection.attempt("https://x.cdn.example.org/files/a.pdf", None, Role.INTERNAL_LINK)
        assert response.method is HttpMethod.GET

    def test_explicit_method_wins(self, harness):
        harness.web.pdf(PDF_URL)
        response = harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE, method=HttpMethod.GET)
        assert response.method is HttpMethod.GET


class TestHeadRejection:
    def test_candidate_falls_back_to_get(self, harness):
        harness.web.add(PDF_URL, 405, method="HEAD")
        harness.web.pdf(PDF_URL)

        response = harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)

        assert response.status_code == 200
        assert response.method is HttpMethod.GET
        assert [call.method for call in harness.web.calls] == ["HEAD", "GET"]
        assert harness.web.responses[0].closed
        assert harness.health.is_head_unsupported("repo.example.org")

    def test_internal_link_raises_and_marks_domain(self, harness):
        harness.web.add("https://repo.example.org/rec/1/files", 501, method="HEAD")

        with pytest.raises(HeadUnsupportedError):
            harness.connection.attempt("https://repo.example.org/rec/1/files", None, Role.INTERNAL_LINK)

        # Later internal links on the domain fail without a request.
        with pytest.raises(HeadUnsupportedError):
            harness.connection.attempt("https://repo.example.org/rec/2/files", None, Role.INTERNAL_LINK)
        assert len(harness.web.calls) == 1

    def test_head_unsupported_domain_gets_get_for_candidates(self, harness):
        harness.health.mark_head_unsupported("repo.example.org")
        harness.web.pdf(PDF_URL)

        response = harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert response.method is HttpMethod.GET


class TestAcceptLanguage:
    def test_406_retries_without_accept_language(self, harness):
        url = "https://repo.example.org/record/1"
        harness.web.add(url, 406)
        harness.web.html(url, "<html></html>")

        response = harness.connection.attempt(url, None, Role.PAGE_REQUEST)

        assert response.status_code == 200
        first, second = harness.web.calls
        assert "Accept-Language" in first.headers
        assert "Accept-Language" not in second.headers
        assert harness.health.is_accept_language_unsupported("repo.example.org")


class TestFailures:
    def test_dns_failure_blacklists_domain(self, harness):
        url = "https://nohost.example.org/files/a.pdf"
        harness.web.add_error(url, requests.exceptions.ConnectionError("Failed to resolve 'nohost.example.org'"))

        with pytest.raises(BlockedError):
            harness.connection.attempt(url, None, Role.CANDIDATE_RESOURCE)
        assert harness.health.is_blacklisted("nohost.example.org")

        with pytest.raises(BlockedError):
            harness.connection.attempt(url, None, Role.CANDIDATE_RESOURCE)
        assert harness.connection.attempts_made == 1

    def test_timeouts_count_until_blacklisted(self):
        h = build_harness(timeout_threshold=1)
        h.web.add_error(PDF_URL, requests.exceptions.ReadTimeout("read timed out"))

        with pytest.raises(ConnTimeoutError):
            h.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert h.health.failure_count("repo.example.org", FailureCategory.TIMEOUT_OR_CONNECT_ERROR) == 1

        with pytest.raises(BlockedError):
            h.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert h.health.is_blacklisted("repo.example.org")

    def test_tls_failure_blacklists(self, harness):
        harness.web.add_error(PDF_URL, requests.exceptions.SSLError("certificate verify failed"))

        with pytest.raises(BlockedError):
            harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert harness.health.tls_blacklisted == 1

    def test_other_connection_errors_are_protocol_errors(self, harness):
        harness.web.add_error(PDF_URL, requests.exceptions.ConnectionError("connection reset by peer"))

        with pytest.raises(ProtocolError):
            harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert not harness.health.is_blacklisted("repo.example.org")

    def test_blacklisted_domain_is_refused_without_request(self, harness):
        harness.health.blacklist("repo.example.org", reason="test")

        with pytest.raises(BlockedError):
            harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert harness.connection.attempts_made == 0
        assert harness.web.calls == []

    def test_blocked_path_is_refused(self):
        h = build_harness(path_403_threshold=0)
        h.health.record_403("repo.example.org", "https://repo.example.org/files/")

        with pytest.raises(BlockedError):
            h.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert h.web.calls == []

    def test_blocked_path_wins_over_head_rejection(self):
        h = build_harness(path_403_threshold=0)
        h.health.mark_head_unsupported("repo.example.org")
        h.health.record_403("repo.example.org", "https://repo.example.org/record/1/")

        with pytest.raises(BlockedError):
            h.connection.attempt("https://repo.example.org/record/1/files", None, Role.INTERNAL_LINK)
        assert h.web.calls == []

    def test_missing_domain(self, harness):
        with pytest.raises(ProtocolError):
            harness.connection.attempt("file:///tmp/a.pdf", None, Role.CANDIDATE_RESOURCE)


class TestUrlRewrites:
    def test_confirmed_https_domain_is_rewritten(self, harness):
        harness.health.mark_https_confirmed("repo.example.org")
        harness.web.pdf(PDF_URL)

        response = harness.connection.attempt("http://repo.example.org/files/paper.pdf", None, Role.CANDIDATE_RESOURCE)

        assert response.url == PDF_URL
        assert harness.web.calls[0].url == PDF_URL
        assert harness.connection.offline_https_rewrites == 1

    def test_escaped_amp_is_unescaped_and_fetched_with_get(self, harness):
        harness.web.pdf("https://repo.example.org/get?id=1&format=pdf")

        response = harness.connection.attempt(
            "https://repo.example.org/get?id=1&amp%3Bformat=pdf",
            None,
            Role.CANDIDATE_RESOURCE,
        )

        assert response.url == "https://repo.example.org/get?id=1&format=pdf"
        assert response.method is HttpMethod.GET


class TestPoliteness:
    def test_same_domain_requests_are_spaced(self):
        h = build_harness(min_politeness_delay_seconds=1.0, max_politeness_delay_seconds=7.0)
        h.web.pdf(PDF_URL)

        h.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()
        h.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()

        first, second = h.web.calls
        assert 1.0 <= second.at - first.at <= 7.0
        assert len(h.clock.sleeps) == 1

    def test_different_domains_do_not_wait(self):
        h = build_harness(min_politeness_delay_seconds=1.0, max_politeness_delay_seconds=7.0)
        h.web.pdf(PDF_URL)
        h.web.pdf("https://data.example.net/files/b.pdf")

        h.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()
        h.connection.attempt("https://data.example.net/files/b.pdf", None, Role.CANDIDATE_RESOURCE).close()

        assert h.clock.sleeps == []

    def test_concurrent_workers_on_one_domain(self):
        h = build_harness(min_politeness_delay_seconds=1.0, max_politeness_delay_seconds=2.0)
        h.web.pdf(PDF_URL)
        errors = []

        def work():
            try:
                h.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=work) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(h.clock.sleeps) == 1
        assert h.web.sessions_created == 2

    def test_gap_is_drawn_before_comparing_elapsed_time(self):
        connection, clock, web = fixed_gap_connection()

        connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()
        clock.sleep(1.5)
        connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()

        first, second = web.calls
        assert second.at - first.at == pytest.approx(5.0)
        assert clock.sleeps == [1.5, pytest.approx(3.5)]

    def test_no_wait_once_the_gap_has_passed(self):
        connection, clock, web = fixed_gap_connection()

        connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()
        clock.sleep(6.0)
        connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()

        assert clock.sleeps == [6.0]


class TestRawResponse:
    def test_sniff_then_read_text_keeps_whole_body(self, harness):
        url = "https://repo.example.org/record/1"
        harness.web.add(url, body=b"<!DOCTYPE html>\n<html><body>x</body></html>")

        response = harness.connection.attempt(url, None, Role.PAGE_REQUEST)
        sniffed = response.sniff()

        assert sniffed is not None and sniffed.kind.value == "html"
        assert response.read_text(1024) == "<!DOCTYPE html>\n<html><body>x</body></html>"

    def test_read_text_respects_limit(self, harness):
        url = "https://repo.example.org/record/1"
        harness.web.add(url, body=b"a" * 100)

        response = harness.connection.attempt(url, None, Role.PAGE_REQUEST)
        assert response.read_text(10) is None

    def test_head_responses_are_not_sniffed(self, harness):
        harness.web.pdf(PDF_URL)
        response = harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        assert response.sniff() is None

    def test_close_is_idempotent(self, harness):
        harness.web.pdf(PDF_URL)
        response = harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE)
        response.close()
        response.close()

        assert response.closed
        assert harness.web.responses[0].close_calls == 1
        assert response.content_length == len(b"%PDF-1.7\nbinary\n")

    def test_close_drops_thread_session(self, harness):
        harness.web.pdf(PDF_URL)
        harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()
        harness.connection.close()
        harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE).close()

        assert harness.web.sessions_created == 2

    def test_stream_timeout_counts_against_domain(self):
        h = build_harness(timeout_threshold=0)
        url = "https://repo.example.org/record/1"
        h.web.add(url, body=b"line one\nline two\n", read_error=requests.exceptions.ConnectionError("Read timed out."))

        response = h.connection.attempt(url, None, Role.PAGE_REQUEST)

        with pytest.raises(BlockedError):
            response.read_text(1024)
        assert h.health.is_blacklisted("repo.example.org")

    def test_broken_stream_is_a_protocol_error(self, harness):
        harness.web.pdf(PDF_URL, read_error=requests.exceptions.ChunkedEncodingError("Connection broken"))
        response = harness.connection.attempt(PDF_URL, None, Role.CANDIDATE_RESOURCE, method=HttpMethod.GET)

        with pytest.raises(ProtocolError):
            list(response.iter_content(4))
        assert harness.health.failure_count("repo.example.org", FailureCategory.TIMEOUT_OR_CONNECT_ERROR) == 0

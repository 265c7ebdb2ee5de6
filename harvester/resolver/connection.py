"""Single HTTP attempts with politeness, method escalation, and failure mapping."""

from __future__ import annotations

import logging
import random
import socket
import threading
import time
from itertools import islice
from typing import Any, Callable, Iterator, NoReturn

import requests
from requests.structures import CaseInsensitiveDict
from urllib3.exceptions import NameResolutionError

from .classifier import SniffResult, sniff_first_line
from .config import ResolverConfig
from .errors import BlockedError, ConnTimeoutError, HeadUnsupportedError, ProtocolError
from .health import DomainHealthStore
from .rules import HTML_ESCAPED_AMP
from .types import FailureCategory, HttpMethod, Role, policy_for
from .url import domain_of, path_of, to_https

LOGGER = logging.getLogger(__name__)

HEAD_REJECTED_STATUSES = frozenset({405, 501})
ACCEPT_LANGUAGE_REJECTED_STATUS = 406
MAX_SNIFF_LINES = 64
MAX_SEND_ATTEMPTS = 3
DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "failed to resolve",
    "temporary failure in name resolution",
    "no address associated with hostname",
)
TIMEOUT_MARKERS = ("timed out", "timeout")


class RawResponse:
    """One streamed HTTP response plus the context it was requested in.

    The sniff buffer lives on this object, so concurrent classifications never
    share it. `close` is idempotent. A `requests` error raised while the body
    streams goes through `on_read_error`, which must raise a ResolutionError.
    """

    def __init__(
        self,
        response: requests.Response,
        *,
        url: str,
        domain: str,
        method: HttpMethod,
        on_read_error: Callable[[str, str, Exception], NoReturn] | None = None,
    ) -> None:
        self._response = response
        self.url = url
        self.domain = domain
        self.method = method
        self.status_code = int(response.status_code)
        self.headers: CaseInsensitiveDict[str] = CaseInsensitiveDict(response.headers or {})
        self._on_read_error = on_read_error or _raise_read_error

        self._lines: Iterator[str] | None = None
        self._consumed: list[str] = []
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def content_length(self) -> int | None:
        raw = self.headers.get("Content-Length")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def _guarded(self, stream: Callable[[], Iterator[Any]]) -> Iterator[Any]:
        try:
            yield from stream()
        except requests.RequestException as exc:
            self._on_read_error(self.url, self.domain, exc)

    def _line_iter(self) -> Iterator[str]:
        if self._lines is None:
            self._lines = (
                line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
                for line in self._guarded(self._response.iter_lines)
            )
        return self._lines

    def sniff(self) -> SniffResult | None:
        """Read lines until the first meaningful one and classify it."""

        if self.method is not HttpMethod.GET:
            return None

        def remembered() -> Iterator[str]:
            for line in islice(self._line_iter(), MAX_SNIFF_LINES):
                self._consumed.append(line)
                yield line

        return sniff_first_line(remembered())

    def read_text(self, max_bytes: int) -> str | None:
        """Return the decoded body, including lines already consumed by `sniff`.

        Returns None when the declared or actual size is not within (0, max_bytes].
        """

        declared = self.content_length
        if declared is not None and (declared <= 0 or declared > max_bytes):
            return None

        parts = list(self._consumed)
        size = sum(len(part) for part in parts)
        for line in self._line_iter():
            size += len(line) + 1
            if size > max_bytes:
                return None
            parts.append(line)

        text = "\n".join(parts)
        return text or None

    def iter_content(self, chunk_size: int) -> Iterator[bytes]:
        return self._guarded(lambda: self._response.iter_content(chunk_size=chunk_size))

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._response.close()

    def __enter__(self) -> "RawResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"RawResponse({self.method.value} {self.url} -> {self.status_code})"


class ConnectionManager:
    """Open one HTTP connection attempt per call.

    Concurrency model:
    - Each worker thread owns its `requests.Session`.
    - The politeness decision for a domain is made under that domain's
      politeness lock; the round-trip itself runs outside of it.
    """

    def __init__(
        self,
        config: ResolverConfig,
        health: DomainHealthStore,
        *,
        session_factory: Callable[[], Any] = requests.Session,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.health = health

        self._session_factory = session_factory
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()

        self._thread_local = threading.local()

        self._attempts_lock = threading.Lock()
        self._attempts_made = 0
        self._offline_https_rewrites = 0

    @property
    def attempts_made(self) -> int:
        with self._attempts_lock:
            return self._attempts_made

    @property
    def offline_https_rewrites(self) -> int:
        with self._attempts_lock:
            return self._offline_https_rewrites

    def attempt(
        self,
        target_url: str,
        domain: str | None,
        role: Role,
        *,
        method: HttpMethod | None = None,
    ) -> RawResponse:
        """Open one connection to `target_url` and return the unread response."""

        domain = domain or domain_of(target_url)
        if not domain:
            raise ProtocolError(f"Cannot find a domain in {target_url}")

        if self.health.is_blacklisted(domain):
            raise BlockedError(f"Domain {domain} is blacklisted", domains=(domain,))

        if self.health.is_path_blocked(domain, path_of(target_url)):
            raise BlockedError(
                f"Path of {target_url} is blocked after repeated HTTP 403 responses",
                domains=(domain,),
            )

        policy = policy_for(role)
        head_unsupported = self.health.is_head_unsupported(domain)
        if role is Role.INTERNAL_LINK and head_unsupported and method is not HttpMethod.GET:
            raise HeadUnsupportedError(f"Domain {domain} does not support HEAD requests")

        url = target_url
        if url.startswith("http:") and self.health.is_https_confirmed(domain):
            url = to_https(url)
            with self._attempts_lock:
                self._offline_https_rewrites += 1

        force_get = False
        if role is Role.CANDIDATE_RESOURCE and HTML_ESCAPED_AMP in url.lower():
            url = _unescape_amp(url)
            force_get = True

        if method is None:
            wants_get = (
                force_get
                or policy.reads_body
                or (role is Role.CANDIDATE_RESOURCE and self.config.download_documents)
                or head_unsupported
                or self.config.requires_get(domain)
            )
            method = HttpMethod.GET if wants_get else HttpMethod.HEAD

        send_accept_language = not self.health.is_accept_language_unsupported(domain)

        for _ in range(MAX_SEND_ATTEMPTS):
            response = self._send(url, domain, method, send_accept_language=send_accept_language)

            if method is HttpMethod.HEAD and response.status_code in HEAD_REJECTED_STATUSES:
                response.close()
                self.health.mark_head_unsupported(domain)
                if not policy.allows_get_fallback:
                    raise HeadUnsupportedError(
                        f"HEAD rejected with HTTP {response.status_code} by {domain}"
                    )
                LOGGER.debug("Retrying %s with GET after HEAD was rejected", url)
                method = HttpMethod.GET
                continue

            if response.status_code == ACCEPT_LANGUAGE_REJECTED_STATUS and send_accept_language:
                response.close()
                self.health.mark_accept_language_unsupported(domain)
                LOGGER.debug("Retrying %s without Accept-Language", url)
                send_accept_language = False
                continue

            return response

        raise ProtocolError(f"Gave up on {url} after {MAX_SEND_ATTEMPTS} adjusted requests")

    def close(self) -> None:
        """Close this thread's session, if any."""

        session = getattr(self._thread_local, "session", None)
        if session is not None:
            session.close()
            self._thread_local.session = None

    def _thread_local_session(self) -> Any:
        session = getattr(self._thread_local, "session", None)
        if session is None:
            session = self._session_factory()
            self._thread_local.session = session
        return session

    def _headers(self, *, send_accept_language: bool) -> dict[str, str]:
        headers = {"User-Agent": self.config.user_agent}
        if send_accept_language and self.config.accept_language:
            headers["Accept-Language"] = self.config.accept_language
        return headers

    def _send(
        self,
        url: str,
        domain: str,
        method: HttpMethod,
        *,
        send_accept_language: bool,
    ) -> RawResponse:
        self._wait_for_politeness(domain)
        with self._attempts_lock:
            self._attempts_made += 1

        session = self._thread_local_session()
        try:
            response = session.request(
                method.value,
                url,
                headers=self._headers(send_accept_language=send_accept_language),
                timeout=self.config.timeout_for(method),
                allow_redirects=False,
                stream=True,
            )
        except requests.exceptions.SSLError as exc:
            self.health.record_tls_failure(domain)
            raise BlockedError(f"TLS failure for {url}: {exc}", domains=(domain,)) from exc
        except requests.exceptions.Timeout as exc:
            self._on_timeout(url, domain, exc)
        except requests.exceptions.ConnectionError as exc:
            if _is_dns_failure(exc):
                self.health.blacklist(domain, reason="unknown host")
                raise BlockedError(f"Unknown host for {url}", domains=(domain,)) from exc
            if any(marker in str(exc).lower() for marker in TIMEOUT_MARKERS):
                self._on_timeout(url, domain, exc)
            raise ProtocolError(f"{exc.__class__.__name__}: {exc}") from exc
        except requests.RequestException as exc:
            raise ProtocolError(f"{exc.__class__.__name__}: {exc}") from exc

        return RawResponse(
            response,
            url=url,
            domain=domain,
            method=method,
            on_read_error=self._on_read_error,
        )

    def _on_timeout(
        self,
        url: str,
        domain: str,
        exc: Exception,
        *,
        action: str = "connecting to",
    ) -> NoReturn:
        if self.health.record_failure(domain, FailureCategory.TIMEOUT_OR_CONNECT_ERROR):
            raise BlockedError(
                f"Domain {domain} blacklisted after repeated timeouts",
                domains=(domain,),
            ) from exc
        raise ConnTimeoutError(f"Timed out {action} {url}") from exc

    def _on_read_error(self, url: str, domain: str, exc: Exception) -> NoReturn:
        if isinstance(exc, requests.exceptions.Timeout) or any(
            marker in str(exc).lower() for marker in TIMEOUT_MARKERS
        ):
            self._on_timeout(url, domain, exc, action="reading")
        _raise_read_error(url, domain, exc)

    def _wait_for_politeness(self, domain: str) -> None:
        min_delay = self.config.min_politeness_delay_seconds
        max_delay = self.config.max_politeness_delay_seconds
        record = self.health.record(domain)

        with record.politeness_lock:
            now = self._clock()
            last = record.last_connected_at
            if last is not None and max_delay > 0:
                with self._rng_lock:
                    gap = self._rng.uniform(min_delay, max_delay)
                elapsed = now - last
                if elapsed < gap:
                    deadline = now + gap - elapsed
                    # Sleeps can end early; keep sleeping until the deadline passes.
                    while True:
                        remaining = deadline - self._clock()
                        if remaining <= 0:
                            break
                        self._sleep(remaining)
                    now = self._clock()
            record.last_connected_at = now


def _raise_read_error(url: str, domain: str, exc: Exception) -> NoReturn:
    raise ProtocolError(f"Reading {url} failed: {exc.__class__.__name__}: {exc}") from exc


def _unescape_amp(url: str) -> str:
    for variant in ("amp%3B", "amp%3b"):
        url = url.replace(variant, "")
    return url


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        current = stack.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            stack.append(reason)
        for linked in (current.__cause__, current.__context__):
            if linked is not None:
                stack.append(linked)
        for arg in current.args:
            if isinstance(arg, BaseException):
                stack.append(arg)


def _is_dns_failure(exc: BaseException) -> bool:
    for cause in _causes(exc):
        if isinstance(cause, (NameResolutionError, socket.gaierror)):
            return True
    message = str(exc).lower()
    return any(marker in message for marker in DNS_FAILURE_MARKERS)


__all__ = ["ConnectionManager", "RawResponse"]

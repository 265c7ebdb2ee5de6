"""Shared fakes for resolver tests: scripted HTTP, per-thread clock, factories."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
import random
import threading
from typing import Any

import pytest

from harvester.resolver import (
    AlreadyFoundIndex,
    ConnectionManager,
    DomainHealthStore,
    FileStore,
    ResolutionEngine,
    ResolverConfig,
)


class FakeResponse:
    """Minimal stand-in for a streamed `requests.Response`."""

    def __init__(
        self,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        read_error: BaseException | None = None,
    ) -> None:
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.body = body
        self.read_error = read_error
        self.closed = False
        self.close_calls = 0

    def _stream(self, pieces):
        # With a read error, the first piece arrives and then the stream breaks.
        for index, piece in enumerate(pieces):
            if self.read_error is not None and index == 1:
                raise self.read_error
            yield piece
        if self.read_error is not None and len(pieces) < 2:
            raise self.read_error

    def iter_lines(self):
        yield from self._stream(self.body.splitlines())

    def iter_content(self, chunk_size: int = 1):
        pieces = [self.body[start : start + chunk_size] for start in range(0, len(self.body), chunk_size)]
        yield from self._stream(pieces)

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1


@dataclass
class Reply:
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    error: BaseException | None = None
    read_error: BaseException | None = None


@dataclass
class Call:
    method: str
    url: str
    headers: dict[str, str]
    timeout: Any
    at: float
    thread: str


class FakeClock:
    """Monotonic clock where each thread has its own time line.

    `sleep` only advances the calling thread, so concurrent workers do not
    drift each other's notion of "now".
    """

    def __init__(self) -> None:
        self._local = threading.local()
        self._lock = threading.Lock()
        self.sleeps: list[float] = []

    def now(self) -> float:
        return getattr(self._local, "now", 0.0)

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
        self._local.now = self.now() + max(0.0, seconds)


class FakeWeb:
    """Scripted responses keyed by URL (and optionally method).

    Each route holds a list of replies consumed in order; the last reply keeps
    being served. Unknown URLs answer 404.
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.calls: list[Call] = []
        self.responses: list[FakeResponse] = []
        self._routes: dict[tuple[str | None, str], list[Reply]] = defaultdict(list)
        self._lock = threading.Lock()
        self.sessions_created = 0

    def add(
        self,
        url: str,
        status_code: int = 200,
        *,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        method: str | None = None,
        read_error: BaseException | None = None,
    ) -> "FakeWeb":
        self._routes[(method, url)].append(
            Reply(
                status_code=status_code,
                headers=dict(headers or {}),
                body=body,
                read_error=read_error,
            )
        )
        return self

    def add_error(self, url: str, error: BaseException, *, method: str | None = None) -> "FakeWeb":
        self._routes[(method, url)].append(Reply(error=error))
        return self

    def redirect(self, url: str, location: str, status_code: int = 302) -> "FakeWeb":
        return self.add(url, status_code, headers={"Location": location})

    def pdf(
        self,
        url: str,
        body: bytes = b"%PDF-1.7\nbinary\n",
        *,
        read_error: BaseException | None = None,
        **extra_headers: str,
    ) -> "FakeWeb":
        headers = {"Content-Type": "application/pdf", "Content-Length": str(len(body))}
        headers.update(extra_headers)
        return self.add(url, headers=headers, body=body, read_error=read_error)

    def html(self, url: str, html: str, *, read_error: BaseException | None = None) -> "FakeWeb":
        return self.add(
            url,
            headers={"Content-Type": "text/html; charset=utf-8"},
            body=html.encode("utf-8"),
            read_error=read_error,
        )

    def session(self) -> "FakeSession":
        with self._lock:
            self.sessions_created += 1
        return FakeSession(self)

    def calls_to(self, url: str) -> list[Call]:
        with self._lock:
            return [call for call in self.calls if call.url == url]

    def _reply_for(self, method: str, url: str) -> Reply:
        with self._lock:
            for key in ((method, url), (None, url)):
                replies = self._routes.get(key)
                if replies:
                    return replies.pop(0) if len(replies) > 1 else replies[0]
        return Reply(status_code=404)

    def handle(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        call = Call(
            method=method,
            url=url,
            headers=dict(kwargs.get("headers") or {}),
            timeout=kwargs.get("timeout"),
            at=self.clock.now() if self.clock is not None else 0.0,
            thread=threading.current_thread().name,
        )
        with self._lock:
            self.calls.append(call)

        reply = self._reply_for(method, url)
        if reply.error is not None:
            raise reply.error
        response = FakeResponse(reply.status_code, reply.headers, reply.body, reply.read_error)
        with self._lock:
            self.responses.append(response)
        return response


class FakeSession:
    def __init__(self, web: FakeWeb) -> None:
        self.web = web
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        assert kwargs.get("allow_redirects") is False
        assert kwargs.get("stream") is True
        return self.web.handle(method, url, **kwargs)

    def close(self) -> None:
        self.closed = True


def make_config(**overrides: Any) -> ResolverConfig:
    """Config with politeness disabled unless a test asks for it."""

    payload: dict[str, Any] = {
        "worker_count": 2,
        "min_politeness_delay_seconds": 0.0,
        "max_politeness_delay_seconds": 0.0,
    }
    payload.update(overrides)
    return ResolverConfig(**payload)


@dataclass
class Harness:
    config: ResolverConfig
    web: FakeWeb
    clock: FakeClock
    health: DomainHealthStore
    index: AlreadyFoundIndex
    connection: ConnectionManager
    engine: ResolutionEngine


def build_harness(
    *,
    file_dir=None,
    seed: int = 7,
    **config_overrides: Any,
) -> Harness:
    config = make_config(**config_overrides)
    clock = FakeClock()
    web = FakeWeb(clock)
    health = DomainHealthStore(config)
    index = AlreadyFoundIndex()
    connection = ConnectionManager(
        config,
        health,
        session_factory=web.session,
        clock=clock.now,
        sleep=clock.sleep,
        rng=random.Random(seed),
    )
    file_store = None
    if file_dir is not None:
        file_store = FileStore(file_dir, max_content_bytes=config.max_content_bytes)
    engine = ResolutionEngine(
        config,
        health=health,
        index=index,
        connection=connection,
        file_store=file_store,
    )
    return Harness(config, web, clock, health, index, connection, engine)


@pytest.fixture
def harness() -> Harness:
    return build_harness()


@pytest.fixture
def config() -> ResolverConfig:
    return make_config()

"""Per-domain health bookkeeping shared by every resolver worker.

A `DomainHealthStore` is built once per run and injected into the connection
manager, redirect resolver, and engine. Each domain (collapsed to its health
unit, see `url.health_unit`) owns a `DomainHealthRecord` with its own locks;
there is no lock held across domains.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from .config import ResolverConfig
from .errors import BlockedError
from .rules import HANDLE_NET_MARKER
from .types import FailureCategory
from .url import domain_of, health_unit, path_of

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DomainHealthRecord:
    """Everything learned about one health unit during a run.

    `lock` guards the flags and counters. `politeness_lock` only serializes the
    "time since last contact" decision and is never held during network I/O.
    """

    domain: str
    blacklisted: bool = False
    blacklist_reason: str | None = None
    head_unsupported: bool = False
    accept_language_unsupported: bool = False
    https_confirmed: bool = False
    blocked_paths: set[str] = field(default_factory=set)
    path_403_counts: dict[str, int] = field(default_factory=dict)
    failure_counters: dict[FailureCategory, int] = field(default_factory=dict)
    successful_hits: int = 0
    last_connected_at: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    politeness_lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def to_json(self) -> dict[str, Any]:
        with self.lock:
            return {
                "domain": self.domain,
                "blacklisted": self.blacklisted,
                "blacklist_reason": self.blacklist_reason,
                "head_unsupported": self.head_unsupported,
                "accept_language_unsupported": self.accept_language_unsupported,
                "https_confirmed": self.https_confirmed,
                "blocked_paths": sorted(self.blocked_paths),
                "failure_counters": {
                    category.value: count for category, count in self.failure_counters.items()
                },
                "successful_hits": self.successful_hits,
            }


class DomainHealthStore:
    """Thread-safe registry of `DomainHealthRecord`s.

    Failure thresholds come from `ResolverConfig` and are compared with
    `count > threshold`, so the (threshold + 1)-th failure is the one that acts.
    A domain with at least as many confirmed hits as failures in a category is
    spared from blacklisting for that category.
    """

    def __init__(self, config: ResolverConfig) -> None:
        self.config = config

        self._records: dict[str, DomainHealthRecord] = {}
        self._registry_lock = threading.Lock()

        self._tls_lock = threading.Lock()
        self._tls_blacklisted = 0

        self._thresholds: dict[FailureCategory, int] = {
            FailureCategory.SERVER_ERROR_5XX: config.server_error_threshold,
            FailureCategory.TIMEOUT_OR_CONNECT_ERROR: config.timeout_threshold,
            FailureCategory.NO_TYPE_RETURNED: config.no_type_threshold,
            FailureCategory.NOT_DOC_NOR_PAGE: config.not_doc_nor_page_threshold,
        }

    @staticmethod
    def key_for(domain: str) -> str:
        return health_unit(domain)

    def record(self, domain: str) -> DomainHealthRecord:
        """Return the record for a domain, creating it on first contact."""

        key = self.key_for(domain)
        record = self._records.get(key)
        if record is not None:
            return record

        with self._registry_lock:
            record = self._records.get(key)
            if record is None:
                record = DomainHealthRecord(domain=key)
                self._records[key] = record
        return record

    def _existing(self, domain: str) -> DomainHealthRecord | None:
        return self._records.get(self.key_for(domain))

    def is_blacklisted(self, domain: str) -> bool:
        record = self._existing(domain)
        if record is None:
            return False
        with record.lock:
            return record.blacklisted

    def blacklist(self, domain: str, reason: str = "") -> None:
        """Refuse every further connection to the domain for this run."""

        record = self.record(domain)
        with record.lock:
            if record.blacklisted:
                return
            self._blacklist_locked(record, reason)

    @staticmethod
    def _blacklist_locked(record: DomainHealthRecord, reason: str) -> None:
        record.blacklisted = True
        record.blacklist_reason = reason or None
        record.failure_counters.clear()
        record.path_403_counts.clear()
        record.blocked_paths.clear()
        LOGGER.info("Blacklisted domain %s: %s", record.domain, reason or "unspecified")

    def record_failure(self, domain: str, category: FailureCategory) -> bool:
        """Count one failure and return True if the domain is now blacklisted."""

        if category is FailureCategory.SSL_ERROR:
            self.record_tls_failure(domain)
            return True

        threshold = self._thresholds[category]
        record = self.record(domain)
        with record.lock:
            if record.blacklisted:
                return True

            count = record.failure_counters.get(category, 0) + 1
            record.failure_counters[category] = count
            if count <= threshold:
                return False

            if record.successful_hits >= count:
                LOGGER.debug(
                    "Domain %s passed the %s threshold but has %d confirmed hits",
                    record.domain,
                    category.value,
                    record.successful_hits,
                )
                return False

            self._blacklist_locked(record, f"more than {threshold} {category.value} failures")
            return True

    def record_tls_failure(self, domain: str) -> None:
        """Blacklist after a TLS handshake failure; no plaintext retry is attempted."""

        record = self.record(domain)
        with record.lock:
            if not record.blacklisted:
                self._blacklist_locked(record, "TLS failure")
                with self._tls_lock:
                    self._tls_blacklisted += 1

    def record_success(self, domain: str) -> None:
        """Count one confirmed document/dataset hit for leniency decisions."""

        record = self.record(domain)
        with record.lock:
            record.successful_hits += 1

    def successful_hits(self, domain: str) -> int:
        record = self._existing(domain)
        if record is None:
            return 0
        with record.lock:
            return record.successful_hits

    def failure_count(self, domain: str, category: FailureCategory) -> int:
        record = self._existing(domain)
        if record is None:
            return 0
        with record.lock:
            return record.failure_counters.get(category, 0)

    def record_403(self, domain: str, path: str) -> bool:
        """Count one 403 for a path; return True if the domain got blacklisted.

        A path is blocked on the (threshold + 1)-th 403. A domain with more
        blocked paths than allowed is blacklisted and its path bookkeeping dropped.
        """

        record = self.record(domain)
        with record.lock:
            if record.blacklisted:
                return True
            if path in record.blocked_paths:
                return False

            count = record.path_403_counts.get(path, 0) + 1
            if count <= self.config.path_403_threshold:
                record.path_403_counts[path] = count
                return False

            record.path_403_counts.pop(path, None)
            record.blocked_paths.add(path)
            LOGGER.debug("Blocked path %s after %d HTTP 403 responses", path, count)

            if len(record.blocked_paths) > self.config.blocked_paths_threshold:
                self._blacklist_locked(
                    record,
                    f"more than {self.config.blocked_paths_threshold} paths blocked by HTTP 403",
                )
                return True
            return False

    def is_path_blocked(self, domain: str, path: str | None) -> bool:
        if not path:
            return False
        record = self._existing(domain)
        if record is None:
            return False
        with record.lock:
            return path in record.blocked_paths

    def mark_head_unsupported(self, domain: str) -> None:
        record = self.record(domain)
        with record.lock:
            record.head_unsupported = True

    def is_head_unsupported(self, domain: str) -> bool:
        record = self._existing(domain)
        if record is None:
            return False
        with record.lock:
            return record.head_unsupported

    def mark_accept_language_unsupported(self, domain: str) -> None:
        record = self.record(domain)
        with record.lock:
            record.accept_language_unsupported = True

    def is_accept_language_unsupported(self, domain: str) -> bool:
        record = self._existing(domain)
        if record is None:
            return False
        with record.lock:
            return record.accept_language_unsupported

    def mark_https_confirmed(self, domain: str) -> None:
        record = self.record(domain)
        with record.lock:
            record.https_confirmed = True

    def is_https_confirmed(self, domain: str) -> bool:
        record = self._existing(domain)
        if record is None:
            return False
        with record.lock:
            return record.https_confirmed

    def on_error_status(self, url: str, status_code: int) -> str:
        """Fold a terminal 4xx/5xx/unexpected status into domain health.

        Returns a human-readable message for the outcome comment, or raises
        `BlockedError` when the status got the domain blacklisted.
        """

        domain = domain_of(url)
        if status_code == 500 and domain and HANDLE_NET_MARKER in domain:
            # handle.net reports unknown handles as 500.
            status_code = 404

        if 400 <= status_code <= 499:
            message = f"Url {url} seems to be unreachable. Received: HTTP {status_code} Client Error."
            if status_code == 403 and domain:
                path = path_of(url)
                if path and self.record_403(domain, path):
                    raise BlockedError(message, domains=(domain,))
            return message

        if 500 <= status_code <= 599:
            message = f"Url {url} seems to be unreachable. Received: HTTP {status_code} Server Error."
            if domain and self.record_failure(domain, FailureCategory.SERVER_ERROR_5XX):
                raise BlockedError(message, domains=(domain,))
            return message

        message = f"Url {url} returned the unexpected HTTP status {status_code}."
        if domain:
            self.blacklist(domain, reason=f"unexpected HTTP {status_code}")
        raise BlockedError(message, domains=(domain,) if domain else ())

    @property
    def tls_blacklisted(self) -> int:
        with self._tls_lock:
            return self._tls_blacklisted

    def snapshot(self) -> dict[str, Any]:
        """Return JSON-friendly totals for the run summary."""

        with self._registry_lock:
            records = list(self._records.values())

        totals: dict[str, int] = defaultdict(int)
        blacklisted: list[str] = []
        head_unsupported: list[str] = []
        https_confirmed: list[str] = []
        blocked_paths = 0

        for record in records:
            with record.lock:
                if record.blacklisted:
                    blacklisted.append(record.domain)
                if record.head_unsupported:
                    head_unsupported.append(record.domain)
                if record.https_confirmed:
                    https_confirmed.append(record.domain)
                blocked_paths += len(record.blocked_paths)
                for category, count in record.failure_counters.items():
                    totals[category.value] += count

        return {
            "domains_seen": len(records),
            "blacklisted_domains": sorted(blacklisted),
            "tls_blacklisted": self.tls_blacklisted,
            "head_unsupported_domains": sorted(head_unsupported),
            "https_confirmed_domains": sorted(https_confirmed),
            "blocked_paths": blocked_paths,
            "open_failure_counters": dict(totals),
        }


__all__ = ["DomainHealthRecord", "DomainHealthStore"]

"""Thread-safe resolution statistics aggregation utilities."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
import threading
from typing import Any, Mapping

from .types import OutcomeKind, ResolutionOutcome, utc_now_iso


class StatsCollector:
    """Collect and summarize resolver runtime statistics.

    The collector is thread-safe and intended for use across concurrent
    resolution workers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = utc_now_iso()
        self._finished_at: str | None = None

        self._inputs = 0
        self._outcome_counts: dict[str, int] = defaultdict(int)
        self._error_type_counts: dict[str, int] = defaultdict(int)
        self._direct_links = 0
        self._stored_files = 0
        self._unchecked = 0
        self._invalid = 0

        self._health_snapshot: dict[str, Any] = {}
        self._connection_snapshot: dict[str, int] = {}
        self._custom_counters: dict[str, int] = defaultdict(int)

    def record_input(self, count: int = 1) -> None:
        """Record input records accepted by the loader."""

        if count <= 0:
            return
        with self._lock:
            self._inputs += count

    def record_outcome(self, outcome: ResolutionOutcome) -> None:
        """Record one final outcome of an input record."""

        with self._lock:
            self._outcome_counts[outcome.kind.value] += 1

            error_type = outcome.error_type
            if error_type is not None:
                self._error_type_counts[error_type] += 1

            if outcome.was_direct_link and outcome.found:
                self._direct_links += 1
            if outcome.stored_path:
                self._stored_files += 1
            if not outcome.was_checked:
                self._unchecked += 1
            if not outcome.was_valid:
                self._invalid += 1

    def record_health_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        """Attach the latest domain-health snapshot for the summary."""

        with self._lock:
            self._health_snapshot = dict(snapshot)

    def record_connection_snapshot(self, snapshot: Mapping[str, int]) -> None:
        """Attach connection counters (attempts, offline https rewrites)."""

        with self._lock:
            self._connection_snapshot = {str(key): int(value) for key, value in snapshot.items()}

    def increment(self, name: str, value: int = 1) -> None:
        """Increment a custom counter for ad-hoc instrumentation."""

        if not name or value == 0:
            return
        with self._lock:
            self._custom_counters[name] += value

    def finish(self) -> None:
        """Mark the run as finished."""

        with self._lock:
            self._finished_at = utc_now_iso()

    def count(self, kind: OutcomeKind) -> int:
        with self._lock:
            return self._outcome_counts.get(kind.value, 0)

    @property
    def total_outcomes(self) -> int:
        with self._lock:
            return sum(self._outcome_counts.values())

    def to_json(self) -> dict[str, Any]:
        """Return a JSON-serializable summary payload."""

        with self._lock:
            start = _parse_iso_utc(self._started_at)
            end = (
                _parse_iso_utc(self._finished_at)
                if self._finished_at
                else datetime.now(timezone.utc)
            )
            duration_seconds = max(0.0, (end - start).total_seconds())

            outcomes = {kind.value: self._outcome_counts.get(kind.value, 0) for kind in OutcomeKind}
            resolved_total = sum(self._outcome_counts.values())
            found_total = outcomes[OutcomeKind.DOCUMENT.value] + outcomes[OutcomeKind.DATASET.value]

            return {
                "started_at": self._started_at,
                "finished_at": self._finished_at,
                "duration_seconds": duration_seconds,
                "inputs": self._inputs,
                "resolved_total": resolved_total,
                "found_total": found_total,
                "outcomes": outcomes,
                "error_type_counts": dict(self._error_type_counts),
                "direct_links": self._direct_links,
                "stored_files": self._stored_files,
                "unchecked": self._unchecked,
                "invalid": self._invalid,
                "throughput": {
                    "resolved_per_second": (
                        resolved_total / duration_seconds if duration_seconds > 0 else 0.0
                    ),
                },
                "connection": dict(self._connection_snapshot),
                "domain_health": dict(self._health_snapshot),
                "custom_counters": dict(self._custom_counters),
            }


def _parse_iso_utc(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = ["StatsCollector"]

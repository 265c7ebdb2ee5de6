"""End-to-end resolution pipeline orchestration."""

from __future__ import annotations

import logging
from pathlib import Path
import queue
import threading
from typing import Any, Iterable

from .config import ResolverConfig
from .constants import DEFAULT_DOWNLOAD_CHUNK_BYTES, UNRETRIEVABLE_ID
from .engine import ResolutionEngine
from .frontier import PageCrawler
from .health import DomainHealthStore
from .index import AlreadyFoundIndex
from .rules import DEFAULT_RULES, RULES_VERSION, UrlRuleTable
from .stats import StatsCollector
from .storage import FileStore, OutputWriter, save_manifest
from .types import InputRecord, Locator, OutcomeKind, ResolutionOutcome, Role
from .url import canonicalize_url

LOGGER = logging.getLogger(__name__)

RESULTS_FILENAME = "results.jsonl"
FILES_DIRNAME = "files"
MANIFESTS_DIRNAME = "manifests"
CONFIG_MANIFEST = "resolver_config.json"
STATS_MANIFEST = "resolver_stats.json"
QUEUE_SLOTS_PER_WORKER = 4
WORKER_JOIN_TIMEOUT_SECONDS = 5.0

_SHUTDOWN = object()


class Pipeline:
    """Orchestrates loading, resolution, page crawling, output, and stats.

    One OutputRecord is written per input record, whatever happens to it.
    """

    def __init__(
        self,
        config: ResolverConfig,
        *,
        output_dir: str | Path,
        engine: ResolutionEngine | None = None,
        crawler: PageCrawler | None = None,
        writer: OutputWriter | None = None,
        stats: StatsCollector | None = None,
        rules: UrlRuleTable = DEFAULT_RULES,
    ) -> None:
        self.config = config
        self.rules = rules
        self.output_dir = Path(output_dir)

        if engine is None:
            file_store = None
            if config.download_documents:
                file_store = FileStore(
                    self.output_dir / FILES_DIRNAME,
                    max_content_bytes=config.max_content_bytes,
                    chunk_size=DEFAULT_DOWNLOAD_CHUNK_BYTES,
                )
            engine = ResolutionEngine(
                config,
                health=DomainHealthStore(config),
                index=AlreadyFoundIndex(),
                file_store=file_store,
                rules=rules,
            )
        self.engine = engine
        self.crawler = crawler if crawler is not None else PageCrawler(engine, config)
        self.writer = writer if writer is not None else OutputWriter(
            self.output_dir / RESULTS_FILENAME,
            batch_size=config.output_batch_size,
        )
        self.stats = stats if stats is not None else StatsCollector()

        self._stop_event = threading.Event()
        self._inputs_lock = threading.Lock()
        self._seen_inputs: dict[str, str] = {}

    @property
    def paths(self) -> dict[str, str]:
        manifests = self.output_dir / MANIFESTS_DIRNAME
        return {
            "output_dir": str(self.output_dir),
            "results": str(self.writer.path),
            "files": str(self.output_dir / FILES_DIRNAME),
            "config_manifest": str(manifests / CONFIG_MANIFEST),
            "stats_manifest": str(manifests / STATS_MANIFEST),
        }

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Stop dispatching new records; records already being resolved finish."""

        if not self._stop_event.is_set():
            LOGGER.info("Stop requested; finishing in-flight records")
        self._stop_event.set()

    def run(self, records: Iterable[InputRecord]) -> dict[str, Any]:
        """Resolve every record with a pool of worker threads and return a summary."""

        manifests = self.output_dir / MANIFESTS_DIRNAME
        save_manifest(
            manifests / CONFIG_MANIFEST,
            {**self.config.to_dict(), "rules_version": RULES_VERSION},
        )

        work: queue.Queue[Any] = queue.Queue(
            maxsize=self.config.worker_count * QUEUE_SLOTS_PER_WORKER
        )
        workers = [
            threading.Thread(
                target=self._worker,
                args=(work,),
                name=f"resolver-worker-{idx}",
                daemon=True,
            )
            for idx in range(self.config.worker_count)
        ]
        for worker in workers:
            worker.start()

        try:
            for record in records:
                if self._stop_event.is_set():
                    break
                self.stats.record_input()
                work.put(record)
        except BaseException:
            self.stop()
            raise
        finally:
            # Every queued record is written before the writer closes.
            work.join()
            for _ in workers:
                work.put(_SHUTDOWN)
            for worker in workers:
                worker.join(timeout=WORKER_JOIN_TIMEOUT_SECONDS)
            self.writer.close()

        self.stats.record_health_snapshot(self.engine.health.snapshot())
        self.stats.record_connection_snapshot(
            {
                "attempts_made": self.engine.connection.attempts_made,
                "offline_https_rewrites": self.engine.connection.offline_https_rewrites,
            }
        )
        self.stats.finish()
        summary = self.stats.to_json()
        summary["rules_version"] = RULES_VERSION
        save_manifest(manifests / STATS_MANIFEST, summary)

        return {
            "paths": self.paths,
            "stats": summary,
        }

    def _worker(self, work: queue.Queue[Any]) -> None:
        try:
            while True:
                item = work.get()
                try:
                    if item is _SHUTDOWN:
                        return
                    if self._stop_event.is_set():
                        self.stats.increment("skipped_after_stop")
                        continue
                    self._handle(item)
                except Exception:
                    LOGGER.exception("Could not record the outcome for %s", item.url)
                    self.stats.increment("unrecorded_outcomes")
                finally:
                    work.task_done()
        finally:
            self.engine.connection.close()

    def _handle(self, record: InputRecord) -> None:
        try:
            outcome = self.process(record)
        except Exception as exc:
            LOGGER.exception("Unexpected failure while resolving %s", record.url)
            outcome = ResolutionOutcome(
                locator=Locator.for_page(record.url, record.id),
                kind=OutcomeKind.UNREACHABLE,
                comment=f"Unexpected error: {exc.__class__.__name__}: {exc}",
            )
        self.writer.write(outcome.to_output_record())
        self.stats.record_outcome(outcome)

    def process(self, record: InputRecord) -> ResolutionOutcome:
        """Resolve one input record, crawling its page when it is not a direct hit."""

        locator = Locator.for_page(record.url, record.id)

        reason = self.exclusion_reason(record.url)
        if reason is not None:
            LOGGER.debug("Excluding input %s (%s)", record.url, reason)
            return ResolutionOutcome(
                locator=locator,
                kind=OutcomeKind.UNREACHABLE,
                comment=f"Excluded input url: {reason}",
                was_checked=False,
            )

        first_id = self._claim_input(record)
        if first_id is not None:
            return ResolutionOutcome(
                locator=locator,
                kind=OutcomeKind.DUPLICATE,
                comment=f"Duplicate of input ID={first_id}",
                was_checked=False,
                original_id=first_id,
            )

        outcome = self.engine.resolve_page(locator)
        if outcome.kind is not OutcomeKind.PAGE:
            return outcome
        return self.crawler.crawl(outcome)

    def exclusion_reason(self, url: str) -> str | None:
        """Return why an input URL is skipped without a connection, or None."""

        lower_url = url.strip().lower()
        return self.rules.input_exclusion_reason(lower_url) or self.rules.rejection_reason(
            lower_url,
            Role.PAGE_REQUEST,
            keep_datasets=self.config.want_datasets,
        )

    def _claim_input(self, record: InputRecord) -> str | None:
        key = canonicalize_url(record.url) or record.url.strip()
        with self._inputs_lock:
            first_id = self._seen_inputs.get(key)
            if first_id is None:
                self._seen_inputs[key] = record.id or UNRETRIEVABLE_ID
            return first_id


__all__ = ["Pipeline"]

"""Resolution state machine: connect, follow redirects, classify, record.

`START -> CONNECTING -> REDIRECTING* -> CLASSIFYING -> terminal`, where the
terminal state is one of the `OutcomeKind` values. Each call produces exactly
one `ResolutionOutcome` and closes every response it opened.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from .classifier import Classification, ContentClassifier
from .config import ResolverConfig
from .connection import ConnectionManager, RawResponse
from .constants import (
    ALREADY_DOWNLOADED_PREFIX,
    DATASET_COMMENT,
    DEFAULT_DOWNLOAD_CHUNK_BYTES,
)
from .errors import ClassificationUnknownError, FileNotRetrievedError, ResolutionError
from .health import DomainHealthStore
from .index import AlreadyFoundIndex
from .redirects import AlreadyFound, RedirectResolver
from .rules import DEFAULT_RULES, VIEWCONTENT_MARKER, UrlRuleTable
from .storage import FileStore
from .types import (
    FailureCategory,
    HttpMethod,
    Locator,
    OutcomeKind,
    ResolutionOutcome,
    ResourceKind,
    Role,
)
from .url import canonicalize_url, domain_of

LOGGER = logging.getLogger(__name__)

RESOURCE_OUTCOMES: dict[ResourceKind, OutcomeKind] = {
    ResourceKind.DOCUMENT: OutcomeKind.DOCUMENT,
    ResourceKind.DATASET: OutcomeKind.DATASET,
}


class ResolutionEngine:
    """Resolve Locators into classified outcomes.

    Collaborators are built from `config` unless injected; a shared
    `DomainHealthStore` and `AlreadyFoundIndex` must be passed explicitly when
    several engines run side by side.
    """

    def __init__(
        self,
        config: ResolverConfig,
        *,
        health: DomainHealthStore | None = None,
        index: AlreadyFoundIndex | None = None,
        connection: ConnectionManager | None = None,
        classifier: ContentClassifier | None = None,
        redirects: RedirectResolver | None = None,
        file_store: FileStore | None = None,
        rules: UrlRuleTable = DEFAULT_RULES,
    ) -> None:
        self.config = config
        self.rules = rules
        # Collaborators may be empty (and falsy) when injected; test for None.
        if health is None:
            health = DomainHealthStore(config)
        if index is None:
            index = AlreadyFoundIndex()
        if connection is None:
            connection = ConnectionManager(config, health)
        if classifier is None:
            classifier = ContentClassifier(
                want_documents=config.want_documents,
                want_datasets=config.want_datasets,
                rules=rules,
            )
        if redirects is None:
            redirects = RedirectResolver(config, health, connection, index, rules=rules)
        self.health = health
        self.index = index
        self.connection = connection
        self.classifier = classifier
        self.redirects = redirects
        self.file_store = file_store

        self._dispatch: dict[Role, Callable[[Locator], ResolutionOutcome]] = {
            Role.PAGE_REQUEST: self.resolve_page,
            Role.INTERNAL_LINK: self._resolve,
            Role.CANDIDATE_RESOURCE: self.resolve_candidate,
        }

    def resolve(self, locator: Locator) -> ResolutionOutcome:
        """Resolve any Locator, dispatching on its role."""

        return self._dispatch[locator.role](locator)

    def resolve_page(self, locator: Locator) -> ResolutionOutcome:
        """Resolve a top-level input URL."""

        if locator.role is not Role.PAGE_REQUEST:
            raise ValueError(f"resolve_page needs a page request, got {locator.role.value}")
        return self._resolve(locator)

    def resolve_candidate(self, locator: Locator) -> ResolutionOutcome:
        """Resolve a link suspected to be the document/dataset itself."""

        if locator.role is Role.PAGE_REQUEST:
            raise ValueError("resolve_candidate cannot take a page request")
        return self._resolve(locator)

    def _resolve(self, locator: Locator) -> ResolutionOutcome:
        # START
        target = canonicalize_url(locator.target_url)
        if target is None:
            return ResolutionOutcome(
                locator=locator,
                kind=OutcomeKind.UNREACHABLE,
                comment=f"Invalid url: {locator.target_url}",
                was_valid=False,
            )

        entry = self.index.lookup(target)
        if entry is not None:
            return self.duplicate(locator, entry.url, entry.original_id)

        domain = domain_of(target)
        if domain is None:
            return ResolutionOutcome(
                locator=locator,
                kind=OutcomeKind.UNREACHABLE,
                comment=f"No domain in url: {target}",
                was_valid=False,
            )

        # CONNECTING
        try:
            response = self.connection.attempt(target, domain, locator.role)
        except ResolutionError as exc:
            return self._unreachable(locator, exc)

        # REDIRECTING
        try:
            result = self.redirects.follow(response, locator)
        except ResolutionError as exc:
            return self._unreachable(locator, exc)

        if isinstance(result, AlreadyFound):
            return self.duplicate(locator, result.url, result.original_id)

        # CLASSIFYING
        terminal = result.response
        try:
            return self._classify(locator, terminal)
        except ResolutionError as exc:
            return self._unreachable(locator, exc, final_url=terminal.url)
        finally:
            terminal.close()

    def _classify(self, locator: Locator, response: RawResponse) -> ResolutionOutcome:
        final_url = response.url
        sniffer = response.sniff if response.method is HttpMethod.GET else None
        classification = self.classifier.classify(final_url, response.headers, sniffer)

        if classification.kind in RESOURCE_OUTCOMES:
            return self._found(locator, response, classification)

        if classification.kind is ResourceKind.PAGE:
            return self._page(locator, response)

        policy = locator.policy
        if not classification.type_declared:
            if policy.demands_type:
                self.health.record_failure(response.domain, FailureCategory.NO_TYPE_RETURNED)
            raise ClassificationUnknownError(f"No content type could be found for {final_url}")

        if locator.is_page_request:
            self.health.record_failure(response.domain, FailureCategory.NOT_DOC_NOR_PAGE)
        raise ClassificationUnknownError(
            f"{final_url} is neither a wanted resource nor a page ({classification.mime_type})"
        )

    def _found(
        self,
        locator: Locator,
        response: RawResponse,
        classification: Classification,
    ) -> ResolutionOutcome:
        final_url = response.url
        if not self.index.add(final_url, locator.id):
            entry = self.index.lookup(final_url)
            return self.duplicate(
                locator,
                final_url,
                None if entry is None else entry.original_id,
            )

        self.health.record_success(response.domain)
        outcome = ResolutionOutcome(
            locator=locator,
            kind=RESOURCE_OUTCOMES[classification.kind],
            final_url=final_url,
            http_method=response.method,
            was_direct_link=self._is_direct(locator, final_url),
        )
        if outcome.kind is OutcomeKind.DATASET:
            outcome.comment = DATASET_COMMENT
        LOGGER.info("Found %s %s for %s", outcome.kind.value, final_url, locator.source_url)

        if self.config.download_documents:
            try:
                outcome.stored_path = str(self._retrieve(response, classification))
                outcome.comment = outcome.stored_path
            except ResolutionError as exc:
                LOGGER.warning("Could not store %s: %s", final_url, exc)
                outcome.comment = f"File not retrieved: {exc}"
        return outcome

    def _retrieve(self, response: RawResponse, classification: Classification) -> Path:
        file_store = self.file_store
        if file_store is None:
            raise FileNotRetrievedError(f"No file store is configured for {response.url}")

        source = response
        reopened = response.method is not HttpMethod.GET or classification.sniffed
        if reopened:
            source = self.connection.attempt(
                response.url,
                response.domain,
                Role.CANDIDATE_RESOURCE,
                method=HttpMethod.GET,
            )
        try:
            if not 200 <= source.status_code <= 299:
                raise FileNotRetrievedError(
                    f"Re-opening {response.url} returned HTTP {source.status_code}"
                )
            return file_store.store(
                source.iter_content(DEFAULT_DOWNLOAD_CHUNK_BYTES),
                url=source.url,
                content_disposition=source.headers.get("Content-Disposition"),
                kind=classification.kind,
                declared_length=source.content_length,
            )
        finally:
            if reopened:
                source.close()

    def _page(self, locator: Locator, response: RawResponse) -> ResolutionOutcome:
        final_url = response.url
        if not locator.is_page_request:
            return ResolutionOutcome(
                locator=locator,
                kind=OutcomeKind.PAGE,
                final_url=final_url,
                http_method=response.method,
            )

        if VIEWCONTENT_MARKER in final_url.lower():
            raise ClassificationUnknownError(f"{final_url} is a preview page without a document")

        body = response.read_text(self.config.max_content_bytes)
        return ResolutionOutcome(
            locator=locator.with_page_url(final_url),
            kind=OutcomeKind.PAGE,
            final_url=final_url,
            http_method=response.method,
            was_direct_link=self._is_direct(locator, final_url),
            body=body,
        )

    def duplicate(
        self,
        locator: Locator,
        url: str,
        original_id: str | None,
    ) -> ResolutionOutcome:
        """Build the DUPLICATE outcome for a URL an earlier input already matched."""

        comment = ""
        if self.config.download_documents:
            comment = f"{ALREADY_DOWNLOADED_PREFIX}{original_id or ''}"
        return ResolutionOutcome(
            locator=locator,
            kind=OutcomeKind.DUPLICATE,
            final_url=url,
            comment=comment,
            original_id=original_id,
        )

    @staticmethod
    def _unreachable(
        locator: Locator,
        exc: ResolutionError,
        *,
        final_url: str | None = None,
    ) -> ResolutionOutcome:
        LOGGER.debug("Unreachable %s: %s", locator.target_url, exc)
        return ResolutionOutcome(
            locator=locator,
            kind=OutcomeKind.UNREACHABLE,
            final_url=final_url,
            comment=str(exc),
            error=exc,
        )

    @staticmethod
    def _is_direct(locator: Locator, final_url: str) -> bool:
        if not locator.is_page_request:
            return False
        sources = {
            canonicalize_url(locator.source_url),
            canonicalize_url(locator.page_url),
            canonicalize_url(locator.target_url),
        }
        return final_url in sources


__all__ = ["ResolutionEngine"]

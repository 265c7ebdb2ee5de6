"""Page frontier: look for the document or dataset linked from a landing page."""

from __future__ import annotations

import logging

from .config import ResolverConfig
from .constants import NO_DOC_IN_PAGE_COMMENT
from .engine import ResolutionEngine
from .errors import BlockedError, HeadUnsupportedError, ResolutionError
from .sciencedirect import ScienceDirectHandler, is_sciencedirect_family
from .types import Locator, OutcomeKind, ResolutionOutcome, Role
from .url import domain_of, extract_links_from_html

LOGGER = logging.getLogger(__name__)


class PageCrawler:
    """Resolve the links of one page until a wanted resource turns up.

    Links shaped like a document or dataset are tried first as candidate
    resources; the rest follow as internal links, up to
    `max_internal_links_per_page`. The crawl of a page stops as soon as its
    domain gets blocked or refuses HEAD for internal links.
    """

    def __init__(self, engine: ResolutionEngine, config: ResolverConfig | None = None) -> None:
        self.engine = engine
        self.config = config if config is not None else engine.config
        self.rules = engine.rules
        self.sciencedirect = ScienceDirectHandler(engine)

    def crawl(self, page_outcome: ResolutionOutcome) -> ResolutionOutcome:
        """Return the first document/dataset outcome reachable from a page outcome."""

        if page_outcome.kind is not OutcomeKind.PAGE:
            raise ValueError(f"Can only crawl page outcomes, got {page_outcome.kind.value}")

        page = page_outcome.locator
        page_url = page_outcome.final_url or page.page_url
        if is_sciencedirect_family(page_url):
            return self.sciencedirect.crawl(page_outcome)
        if not page_outcome.body:
            return self._not_found(page, "Page has no readable body")

        links = extract_links_from_html(page_outcome.body, base_url=page_url)
        candidates, internal = self.partition_links(links, page_url)
        LOGGER.debug(
            "Page %s has %d candidate and %d internal links",
            page_url,
            len(candidates),
            len(internal),
        )

        for link in candidates + internal:
            entry = self.engine.index.lookup(link)
            if entry is not None:
                return self.engine.duplicate(page.for_link(link), entry.url, entry.original_id)

        page_domain = domain_of(page_url)
        internal = internal[: self.config.max_internal_links_per_page]
        attempts = [(link, True) for link in candidates] + [(link, False) for link in internal]

        for link, candidate in attempts:
            outcome = self.engine.resolve(page.for_link(link, candidate=candidate))
            if outcome.found or outcome.kind is OutcomeKind.DUPLICATE:
                return outcome

            if isinstance(outcome.error, HeadUnsupportedError) and not candidate:
                LOGGER.debug("Stopping crawl of %s: %s", page_url, outcome.error)
                return self._not_found(page, str(outcome.error), error=outcome.error)
            if page_domain is not None and self.engine.health.is_blacklisted(page_domain):
                LOGGER.debug("Stopping crawl of %s: domain %s is blocked", page_url, page_domain)
                return self._not_found(
                    page,
                    f"Domain {page_domain} got blocked while crawling the page",
                    error=BlockedError(f"Domain {page_domain} is blacklisted", domains=(page_domain,)),
                )

        return self._not_found(page, NO_DOC_IN_PAGE_COMMENT)

    def partition_links(self, links: list[str], page_url: str) -> tuple[list[str], list[str]]:
        """Split page links into (candidate, internal) lists, dropping excluded ones."""

        keep_datasets = self.config.want_datasets
        candidates: list[str] = []
        internal: list[str] = []
        seen: set[str] = {page_url}
        for link in links:
            if link in seen:
                continue
            seen.add(link)
            lower_link = link.lower()

            shaped = (
                self.config.want_documents and self.rules.looks_like_document(lower_link)
            ) or (keep_datasets and self.rules.looks_like_dataset(lower_link))
            role = Role.CANDIDATE_RESOURCE if shaped else Role.INTERNAL_LINK
            reason = self.rules.rejection_reason(lower_link, role, keep_datasets=keep_datasets)
            if reason is not None:
                LOGGER.debug("Skipping link %s (%s)", link, reason)
                continue
            (candidates if shaped else internal).append(link)
        return candidates, internal

    @staticmethod
    def _not_found(
        page: Locator,
        comment: str,
        *,
        error: ResolutionError | None = None,
    ) -> ResolutionOutcome:
        return ResolutionOutcome(
            locator=page,
            kind=OutcomeKind.UNREACHABLE,
            comment=comment,
            error=error,
        )


__all__ = ["PageCrawler"]

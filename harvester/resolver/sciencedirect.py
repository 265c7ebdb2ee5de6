"""ScienceDirect-family pages, whose document link is hidden behind scripts.

`linkinghub.elsevier.com` pages redirect to their ScienceDirect article with
JavaScript, so the article URL is built from the pii instead. The article
names an intermediate page in its document-url `<meta>` tag, and that page
sets `window.location` to a short-lived PDF URL.
"""

from __future__ import annotations

import logging
import re

from .engine import ResolutionEngine
from .errors import ResolutionError
from .types import Locator, OutcomeKind, ResolutionOutcome
from .url import domain_of, extract_meta_doc_url, filename_of

LOGGER = logging.getLogger(__name__)

LINKINGHUB_DOMAIN = "linkinghub.elsevier.com"
SCIENCEDIRECT_DOMAIN = "sciencedirect.com"
SCIENCEDIRECT_ARTICLE_URL = "https://www.sciencedirect.com/science/article/pii/{pii}"
SCIENCEDIRECT_FINAL_DOC_URL = re.compile(r"window\.location\s+=\s+'([^']*)';")


def is_sciencedirect_family(url: str | None) -> bool:
    return domain_of(url) in {LINKINGHUB_DOMAIN, SCIENCEDIRECT_DOMAIN}


def article_url_for(linkinghub_url: str) -> str | None:
    """Map a linkinghub URL to its ScienceDirect article URL by pii."""

    pii = filename_of(linkinghub_url.split(";", 1)[0])
    if not pii:
        return None
    return SCIENCEDIRECT_ARTICLE_URL.format(pii=pii)


class ScienceDirectHandler:
    """Walk linkinghub -> article -> meta doc page -> final PDF URL."""

    def __init__(self, engine: ResolutionEngine) -> None:
        self.engine = engine

    def crawl(self, page_outcome: ResolutionOutcome) -> ResolutionOutcome:
        page = page_outcome.locator
        page_url = page_outcome.final_url or page.page_url
        html = page_outcome.body

        if domain_of(page_url) == LINKINGHUB_DOMAIN:
            article_url = article_url_for(page_url)
            if article_url is None:
                return self._not_found(page, f"No pii in linkinghub url {page_url}")
            article = self._open_page(page, article_url)
            if article.kind is not OutcomeKind.PAGE:
                return article
            page, page_url, html = article.locator, article.final_url or article_url, article.body

        LOGGER.debug("ScienceDirect page %s", page_url)
        meta_doc_url = extract_meta_doc_url(html, base_url=page_url) if html else None
        if meta_doc_url is None:
            return self._not_found(page, f"No meta doc url in ScienceDirect page {page_url}")

        doc_page = self._open_page(page, meta_doc_url)
        if doc_page.kind is not OutcomeKind.PAGE:
            return doc_page

        match = SCIENCEDIRECT_FINAL_DOC_URL.search(doc_page.body or "")
        if match is None or not match.group(1):
            return self._not_found(page, f"No final doc url in ScienceDirect page {meta_doc_url}")

        final_doc_url = match.group(1)
        outcome = self.engine.resolve(page.for_link(final_doc_url, candidate=True))
        if outcome.found or outcome.kind is OutcomeKind.DUPLICATE:
            return outcome
        LOGGER.warning("ScienceDirect final doc url %s was not a document", final_doc_url)
        return self._not_found(
            page,
            f"ScienceDirect final doc url {final_doc_url} was not a document",
            error=outcome.error,
        )

    def _open_page(self, page: Locator, url: str) -> ResolutionOutcome:
        outcome = self.engine.resolve_page(page.for_subpage(url))
        if outcome.found:
            outcome.was_direct_link = False
        return outcome

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


__all__ = ["ScienceDirectHandler", "article_url_for", "is_sciencedirect_family"]

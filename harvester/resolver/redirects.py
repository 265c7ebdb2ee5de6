"""Manual redirect following with per-hop validation.

Redirects are never followed by `requests` itself. Every hop is checked
against the rule table, the already-found index, and domain health before a
new connection is opened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import ResolverConfig
from .connection import ConnectionManager, RawResponse
from .errors import (
    BlockedError,
    HttpStatusError,
    ProtocolError,
    RedirectBudgetExceededError,
    RejectedTargetError,
)
from .health import DomainHealthStore
from .index import AlreadyFoundIndex
from .rules import DEFAULT_RULES, UrlRuleTable
from .types import Locator
from .url import canonicalize_url, domain_of, extract_links_from_html, is_https_upgrade, resolve_url

LOGGER = logging.getLogger(__name__)

MULTIPLE_CHOICES = 300


@dataclass(slots=True)
class Terminal:
    """The chain ended on a 2xx response, which the caller must close."""

    response: RawResponse
    redirects: int = 0


@dataclass(frozen=True, slots=True)
class AlreadyFound:
    """A hop pointed at a URL an earlier resolution already matched."""

    url: str
    original_id: str | None
    redirects: int = 0


FollowResult = Terminal | AlreadyFound


class RedirectResolver:
    """Follow 3xx chains up to the role's redirect budget."""

    def __init__(
        self,
        config: ResolverConfig,
        health: DomainHealthStore,
        connection: ConnectionManager,
        index: AlreadyFoundIndex,
        *,
        rules: UrlRuleTable = DEFAULT_RULES,
    ) -> None:
        self.config = config
        self.health = health
        self.connection = connection
        self.index = index
        self.rules = rules

    def follow(self, response: RawResponse, locator: Locator) -> FollowResult:
        """Walk the chain starting at `response` until a 2xx or a failure.

        Abandoned responses are closed here; the returned terminal response is not.
        """

        max_redirects = self.config.max_redirects_for(locator.role)
        redirects = 0

        try:
            while 300 <= response.status_code <= 399:
                redirects += 1
                if redirects > max_redirects:
                    raise RedirectBudgetExceededError(locator.target_url, max_redirects)

                current_url = response.url
                target = self._next_target(response)
                response.close()

                lower_target = target.lower()
                if self.rules.has_shared_site_session(lower_target):
                    self._block_shared_site_session(current_url, target)

                reason = self.rules.rejection_reason(
                    lower_target,
                    locator.role,
                    keep_datasets=self.config.want_datasets,
                )
                if reason is not None:
                    raise RejectedTargetError(current_url, target, reason)

                canonical = canonicalize_url(target)
                if canonical is None:
                    raise RejectedTargetError(current_url, target, "invalid url")

                entry = self.index.lookup(canonical)
                if entry is not None:
                    LOGGER.debug("Redirect target %s was already found", canonical)
                    return AlreadyFound(canonical, entry.original_id, redirects)

                domain = domain_of(canonical)
                if domain is None:
                    raise RejectedTargetError(current_url, target, "no domain")
                if is_https_upgrade(current_url, canonical):
                    self.health.mark_https_confirmed(domain)

                response = self.connection.attempt(canonical, domain, locator.role)

            if 200 <= response.status_code <= 299:
                return Terminal(response, redirects)

            status_code = response.status_code
            message = self.health.on_error_status(response.url, status_code)
            raise HttpStatusError(message, status_code=status_code)
        except BaseException:
            response.close()
            raise

    def _next_target(self, response: RawResponse) -> str:
        location = response.headers.get("Location")
        if location:
            resolved = resolve_url(response.url, location, canonicalize=False)
            if resolved is None:
                raise RejectedTargetError(response.url, location, "unusable Location header")
            return resolved

        if response.status_code != MULTIPLE_CHOICES:
            raise ProtocolError(
                f"HTTP {response.status_code} from {response.url} has no Location header"
            )

        body = response.read_text(self.config.max_content_bytes)
        links = extract_links_from_html(body, base_url=response.url) if body else []
        if not links:
            raise ProtocolError(f"HTTP 300 page at {response.url} offers no link")
        return links[0]

    def _block_shared_site_session(self, current_url: str, target: str) -> None:
        domains = tuple(
            domain for domain in (domain_of(target), domain_of(current_url)) if domain
        )
        for domain in domains:
            self.health.blacklist(domain, reason="shared site session redirect")
        raise BlockedError(
            f"Redirect from {current_url} joined a shared site session",
            domains=domains,
        )


__all__ = ["AlreadyFound", "FollowResult", "RedirectResolver", "Terminal"]

"""Core type definitions for the resolver.

This module is intentionally dependency-light so other resolver modules can
import shared records without introducing cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from .constants import DUPLICATE_STATUS, UNREACHABLE_STATUS, UNRETRIEVABLE_ID

if TYPE_CHECKING:
    from .errors import ResolutionError


class Role(str, Enum):
    """What a Locator's target is expected to be."""

    PAGE_REQUEST = "page_request"
    INTERNAL_LINK = "internal_link"
    CANDIDATE_RESOURCE = "candidate_resource"


class ResourceKind(str, Enum):
    """Classifier verdict for one terminal response."""

    DOCUMENT = "document"
    DATASET = "dataset"
    PAGE = "page"
    UNKNOWN = "unknown"


class OutcomeKind(str, Enum):
    """Terminal state of one resolution."""

    DOCUMENT = "document"
    DATASET = "dataset"
    PAGE = "page"
    UNREACHABLE = "unreachable"
    DUPLICATE = "duplicate"


class FailureCategory(str, Enum):
    """Per-domain failure counters kept by the health store."""

    SERVER_ERROR_5XX = "server_error_5xx"
    TIMEOUT_OR_CONNECT_ERROR = "timeout_or_connect_error"
    SSL_ERROR = "ssl_error"
    NO_TYPE_RETURNED = "no_type_returned"
    NOT_DOC_NOR_PAGE = "not_doc_nor_page"


class HttpMethod(str, Enum):
    HEAD = "HEAD"
    GET = "GET"


JSONPrimitive = str | int | float | bool | None
JSONValue = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONDict = dict[str, JSONValue]


def utc_now_iso() -> str:
    """Return an RFC3339-like UTC timestamp string for output rows."""

    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True, slots=True)
class RolePolicy:
    """Behavior switches that differ between roles.

    `reads_body` forces GET, `allows_get_fallback` permits re-issuing a HEAD
    rejected with 405/501 as GET, `long_redirect_chain` selects the page-level
    redirect budget, `demands_type` makes an untyped response a domain failure.
    """

    reads_body: bool
    allows_get_fallback: bool
    long_redirect_chain: bool
    demands_type: bool
    page_rules: bool


ROLE_POLICIES: dict[Role, RolePolicy] = {
    Role.PAGE_REQUEST: RolePolicy(
        reads_body=True,
        allows_get_fallback=True,
        long_redirect_chain=True,
        demands_type=True,
        page_rules=True,
    ),
    Role.INTERNAL_LINK: RolePolicy(
        reads_body=False,
        allows_get_fallback=False,
        long_redirect_chain=False,
        demands_type=False,
        page_rules=False,
    ),
    Role.CANDIDATE_RESOURCE: RolePolicy(
        reads_body=False,
        allows_get_fallback=True,
        long_redirect_chain=False,
        demands_type=True,
        page_rules=False,
    ),
}


def policy_for(role: Role) -> RolePolicy:
    return ROLE_POLICIES[role]


@dataclass(frozen=True, slots=True)
class InputRecord:
    """One id/url pair read from the input file."""

    url: str
    id: str | None = None
    line_number: int | None = None


@dataclass(frozen=True, slots=True)
class Locator:
    """One unit of resolution work: a target URL plus its role and lineage."""

    source_url: str
    page_url: str
    target_url: str
    role: Role
    id: str | None = None

    @classmethod
    def for_page(cls, url: str, id: str | None = None) -> "Locator":
        return cls(
            source_url=url,
            page_url=url,
            target_url=url,
            role=Role.PAGE_REQUEST,
            id=id,
        )

    def for_link(self, url: str, *, candidate: bool = False) -> "Locator":
        """Derive a Locator for a link found on this Locator's page."""

        return replace(
            self,
            target_url=url,
            role=Role.CANDIDATE_RESOURCE if candidate else Role.INTERNAL_LINK,
        )

    def for_subpage(self, url: str) -> "Locator":
        """Derive a page request for a page this Locator's page leads to."""

        return replace(self, target_url=url, role=Role.PAGE_REQUEST)

    def with_page_url(self, page_url: str) -> "Locator":
        return replace(self, page_url=page_url)

    @property
    def is_page_request(self) -> bool:
        return self.role is Role.PAGE_REQUEST

    @property
    def is_candidate_resource(self) -> bool:
        return self.role is Role.CANDIDATE_RESOURCE

    @property
    def policy(self) -> RolePolicy:
        return policy_for(self.role)


@dataclass(frozen=True, slots=True)
class OutputRecord:
    """One row of the resolver output file."""

    id: str
    source_url: str
    page_url: str
    final_url_or_status: str
    comment: str
    was_checked: bool
    was_valid: bool
    was_accessible: bool
    was_direct_link: bool
    created_at: str = field(default_factory=utc_now_iso)

    def to_json(self) -> JSONDict:
        return {
            "id": self.id,
            "source_url": self.source_url,
            "page_url": self.page_url,
            "final_url_or_status": self.final_url_or_status,
            "comment": self.comment,
            "was_checked": self.was_checked,
            "was_valid": self.was_valid,
            "was_accessible": self.was_accessible,
            "was_direct_link": self.was_direct_link,
            "created_at": self.created_at,
        }


@dataclass(slots=True)
class ResolutionOutcome:
    """Result of resolving one Locator."""

    locator: Locator
    kind: OutcomeKind
    final_url: str | None = None
    http_method: HttpMethod | None = None
    comment: str = ""
    was_direct_link: bool = False
    was_checked: bool = True
    was_valid: bool = True
    original_id: str | None = None
    stored_path: str | None = None
    body: str | None = field(default=None, repr=False)
    error: "ResolutionError | None" = None

    @property
    def found(self) -> bool:
        return self.kind in {OutcomeKind.DOCUMENT, OutcomeKind.DATASET}

    @property
    def error_type(self) -> str | None:
        return None if self.error is None else self.error.__class__.__name__

    def to_output_record(self) -> OutputRecord:
        locator = self.locator
        if self.kind is OutcomeKind.DUPLICATE and not self.final_url:
            final_url_or_status = DUPLICATE_STATUS
        elif self.kind in {OutcomeKind.UNREACHABLE, OutcomeKind.PAGE} or not self.final_url:
            final_url_or_status = UNREACHABLE_STATUS
        else:
            final_url_or_status = self.final_url

        return OutputRecord(
            id=locator.id or UNRETRIEVABLE_ID,
            source_url=locator.source_url,
            page_url=locator.page_url,
            final_url_or_status=final_url_or_status,
            comment=self.comment,
            was_checked=self.was_checked,
            was_valid=self.was_valid,
            was_accessible=final_url_or_status not in {UNREACHABLE_STATUS, DUPLICATE_STATUS},
            was_direct_link=self.was_direct_link,
        )


__all__ = [
    "FailureCategory",
    "HttpMethod",
    "InputRecord",
    "JSONDict",
    "JSONPrimitive",
    "JSONValue",
    "Locator",
    "OutcomeKind",
    "OutputRecord",
    "ROLE_POLICIES",
    "ResolutionOutcome",
    "ResourceKind",
    "Role",
    "RolePolicy",
    "policy_for",
    "utc_now_iso",
]

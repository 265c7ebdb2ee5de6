"""Content classification from unreliable headers or a sniffed first body line.

`ContentClassifier.classify` is a pure function of its inputs: the same URL,
headers, and sniff result always produce the same `Classification`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Mapping

from .rules import (
    DATASET_MIME_TYPES,
    DEFAULT_RULES,
    DOCUMENT_MIME_TYPES,
    GENERIC_MIME_TYPE,
    HTML_FIRST_LINE,
    MIME_TYPE_FILTER,
    PDF_FIRST_LINE_PREFIX,
    UNWANTED_BODY_LINE,
    VENDOR_PLACEHOLDER_MIME,
    UrlRuleTable,
)
from .types import ResourceKind

BARE_ATTACHMENT = "attachment"


class BodyKind(str, Enum):
    """What the first meaningful body line looks like."""

    HTML = "html"
    PDF = "pdf"
    UNDEFINED = "undefined"


@dataclass(frozen=True, slots=True)
class SniffResult:
    kind: BodyKind
    first_line: str | None = None


BodySniffer = Callable[[], "SniffResult | None"]


@dataclass(frozen=True, slots=True)
class Classification:
    """Classifier verdict.

    `type_declared` is False when the response carried neither Content-Type
    nor Content-Disposition. `sniffed` is True when the verdict came from the
    body, in which case a document must be re-opened before it is stored.
    """

    kind: ResourceKind
    mime_type: str | None = None
    type_declared: bool = True
    sniffed: bool = False


def sniff_first_line(lines: Iterable[str]) -> SniffResult | None:
    """Classify a body by its first meaningful line.

    Blank, one-character, whitespace-only, `<?xml` and `<!--` lines are skipped.
    Returns None when the body has no meaningful line at all.
    """

    for line in lines:
        if len(line) <= 1 or UNWANTED_BODY_LINE.match(line):
            continue

        lowered = line.lower()
        if HTML_FIRST_LINE.match(lowered):
            return SniffResult(BodyKind.HTML, line)
        if lowered.startswith(PDF_FIRST_LINE_PREFIX):
            return SniffResult(BodyKind.PDF, line)
        return SniffResult(BodyKind.UNDEFINED, line)

    return None


def plain_mime_type(content_type: str) -> str | None:
    """Strip charset/name/parenthesis noise and quotes from a Content-Type value."""

    lowered = content_type.replace('"', "").replace("'", "").strip().lower()
    if not lowered:
        return None

    if "charset" in lowered or "name" in lowered or lowered.startswith("("):
        match = MIME_TYPE_FILTER.match(lowered)
        if match is None:
            return None
        lowered = match.group(1)
    else:
        lowered = lowered.split(";", maxsplit=1)[0]

    return lowered.strip() or None


class ContentClassifier:
    """Decide document/dataset/page/unknown for one terminal response."""

    def __init__(
        self,
        *,
        want_documents: bool = True,
        want_datasets: bool = True,
        rules: UrlRuleTable = DEFAULT_RULES,
    ) -> None:
        self.want_documents = want_documents
        self.want_datasets = want_datasets
        self.rules = rules
        self._document_mime_types = DOCUMENT_MIME_TYPES if want_documents else frozenset()
        self._dataset_mime_types = DATASET_MIME_TYPES if want_datasets else frozenset()

    def classify(
        self,
        final_url: str,
        headers: Mapping[str, str],
        body_sniffer: BodySniffer | None = None,
    ) -> Classification:
        """Classify from headers, falling back to the body sniffer if both type headers are missing."""

        lower_url = final_url.lower()
        content_type = _header(headers, "Content-Type")
        disposition = _header(headers, "Content-Disposition")

        if content_type is None:
            if disposition is not None:
                return Classification(self._from_disposition(disposition, lower_url))
            return self._from_body(body_sniffer)

        lowered = content_type.lower()
        if VENDOR_PLACEHOLDER_MIME in lowered:
            kind = self._from_disposition(disposition, lower_url, datasets=False)
            return Classification(kind, mime_type=VENDOR_PLACEHOLDER_MIME)

        mime_type = plain_mime_type(lowered)
        if mime_type is None:
            return Classification(self._from_url(lower_url))

        if mime_type in self._document_mime_types:
            return Classification(ResourceKind.DOCUMENT, mime_type=mime_type)
        if mime_type in self._dataset_mime_types:
            return Classification(ResourceKind.DATASET, mime_type=mime_type)
        if GENERIC_MIME_TYPE.fullmatch(mime_type):
            return Classification(
                self._from_disposition(disposition, lower_url),
                mime_type=mime_type,
            )
        if _is_page_mime(mime_type):
            return Classification(ResourceKind.PAGE, mime_type=mime_type)
        return Classification(ResourceKind.UNKNOWN, mime_type=mime_type)

    def _from_disposition(
        self,
        disposition: str | None,
        lower_url: str,
        *,
        datasets: bool = True,
    ) -> ResourceKind:
        if disposition is not None:
            lowered = disposition.strip().lower()
            if lowered != BARE_ATTACHMENT:
                if self.want_documents and "pdf" in lowered:
                    return ResourceKind.DOCUMENT
                cleaned = lowered.replace('"', "").replace("'", "")
                if datasets and self.want_datasets and self.rules.looks_like_dataset(cleaned):
                    return ResourceKind.DATASET
                return ResourceKind.UNKNOWN
        if not datasets:
            if self.want_documents and "pdf" in lower_url:
                return ResourceKind.DOCUMENT
            return ResourceKind.UNKNOWN
        return self._from_url(lower_url)

    def _from_url(self, lower_url: str) -> ResourceKind:
        if self.want_documents and "pdf" in lower_url:
            return ResourceKind.DOCUMENT
        if self.want_datasets and self.rules.looks_like_dataset(lower_url):
            return ResourceKind.DATASET
        return ResourceKind.UNKNOWN

    def _from_body(self, body_sniffer: BodySniffer | None) -> Classification:
        if body_sniffer is None:
            return Classification(ResourceKind.UNKNOWN, type_declared=False)

        sniffed = body_sniffer()
        if sniffed is None or sniffed.kind is BodyKind.UNDEFINED:
            return Classification(ResourceKind.UNKNOWN, type_declared=False, sniffed=True)
        if sniffed.kind is BodyKind.HTML:
            return Classification(
                ResourceKind.PAGE,
                mime_type="text/html",
                type_declared=False,
                sniffed=True,
            )
        if not self.want_documents:
            return Classification(ResourceKind.UNKNOWN, type_declared=False, sniffed=True)
        return Classification(
            ResourceKind.DOCUMENT,
            mime_type="application/pdf",
            type_declared=False,
            sniffed=True,
        )


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _is_page_mime(mime_type: str) -> bool:
    if "htm" in mime_type:
        return True
    return "text" in mime_type and not any(token in mime_type for token in ("xml", "csv", "tsv"))


__all__ = [
    "BodyKind",
    "BodySniffer",
    "Classification",
    "ContentClassifier",
    "SniffResult",
    "plain_mime_type",
    "sniff_first_line",
]

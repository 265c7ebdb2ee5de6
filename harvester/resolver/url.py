"""URL canonicalization, domain/path extraction, and link extraction helpers."""

from __future__ import annotations

import posixpath
import re
from typing import Sequence
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup


DEFAULT_ALLOWED_SCHEMES = ("http", "https")
SKIP_HREF_PREFIXES = ("javascript:", "mailto:", "tel:", "data:")

# Hosts like "www.", "ww2." or "www3." are the same site as the bare domain.
WWW_PREFIX = re.compile(r"^ww[w\d]\w*\.")
JSESSIONID_FILTER = re.compile(
    r"(.+://.+?)(?:;(?:JSESSIONID|jsessionid)=[^?#]+)([?#].*)?$"
)
SINGLE_PAGE_ROUTE_MARKER = "#/"
META_DOC_URL_NAME = re.compile(r"^(?:.*citation_pdf|eprints\.document)_url$", re.IGNORECASE)
HEALTH_UNIT_LABELS = 3


def domain_of(url: str | None) -> str | None:
    """Return the lower-cased host of a URL without its `www.` prefix."""

    if not url:
        return None

    raw = url.strip()
    parsed = urlsplit(raw if "://" in raw else f"//{raw}")
    host = (parsed.hostname or "").strip().lower().strip(".")
    if not host:
        return None

    host = WWW_PREFIX.sub("", host, count=1)
    return host or None


def health_unit(domain: str) -> str:
    """Collapse a host to its last three labels.

    `a.b.example.com` and `c.b.example.com` both map to `b.example.com`, so
    sibling repository subdomains share one politeness and health record.
    """

    labels = [label for label in domain.lower().strip(".").split(".") if label]
    if len(labels) <= HEALTH_UNIT_LABELS:
        return ".".join(labels)
    return ".".join(labels[-HEALTH_UNIT_LABELS:])


def is_http_url(url: str, allowed_schemes: Sequence[str] = DEFAULT_ALLOWED_SCHEMES) -> bool:
    """Return True if URL is absolute and has an allowed HTTP-like scheme."""

    parsed = urlsplit(url)
    if not parsed.scheme or not parsed.netloc:
        return False
    return parsed.scheme.lower() in {scheme.lower() for scheme in allowed_schemes}


def path_of(url: str) -> str | None:
    """Return scheme, host, and directory of a URL, ending with `/`.

    `https://example.com/a/b/paper.pdf` yields `https://example.com/a/b/`;
    a trailing slash is ignored, so `https://example.com/a/b/` yields
    `https://example.com/a/`. These are the keys used for 403 tracking.
    """

    parsed = urlsplit(url.strip())
    if not parsed.scheme or not parsed.netloc:
        return None

    path = parsed.path.rstrip("/")
    directory = path.rsplit("/", maxsplit=1)[0] if "/" in path else ""
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{directory}/"


def filename_of(url: str) -> str | None:
    """Return the last non-empty path segment of a URL."""

    path = urlsplit(url.strip()).path.rstrip("/")
    if not path:
        return None
    name = path.rsplit("/", maxsplit=1)[-1]
    return name or None


def remove_jsessionid(url: str) -> str:
    """Drop a `;jsessionid=...` path parameter, keeping query and fragment."""

    match = JSESSIONID_FILTER.match(url)
    if match is None:
        return url
    return match.group(1) + (match.group(2) or "")


def _has_default_port(scheme: str, port: int | None) -> bool:
    if port is None:
        return False
    return (scheme == "http" and port == 80) or (scheme == "https" and port == 443)


def _normalize_netloc(parsed_url) -> str:  # urllib.parse.SplitResult
    host = (parsed_url.hostname or "").lower()
    if not host:
        return parsed_url.netloc.lower()

    userinfo = ""
    if parsed_url.username:
        userinfo = quote(parsed_url.username, safe="")
        if parsed_url.password:
            userinfo += ":" + quote(parsed_url.password, safe="")
        userinfo += "@"

    port: int | None
    try:
        port = parsed_url.port
    except ValueError:
        port = None

    if port is not None and not _has_default_port(parsed_url.scheme.lower(), port):
        return f"{userinfo}{host}:{port}"
    return f"{userinfo}{host}"


def _normalize_path(path: str) -> str:
    if not path:
        return "/"

    collapsed = re.sub(r"/{2,}", "/", path)
    normalized = posixpath.normpath(collapsed)

    if collapsed.startswith("/") and not normalized.startswith("/"):
        normalized = "/" + normalized
    if normalized in {"", "."}:
        normalized = "/"
    if collapsed.endswith("/") and not normalized.endswith("/"):
        normalized += "/"

    return normalized


def canonicalize_url(
    url: str | None,
    *,
    allowed_schemes: Sequence[str] = DEFAULT_ALLOWED_SCHEMES,
) -> str | None:
    """Canonicalize an absolute URL for dedup and connection.

    Scheme and host are lower-cased, default ports and session ids dropped, the
    path is collapsed, and the fragment is removed unless it is a `#/` route.
    Query strings are kept verbatim. Returns `None` for invalid URLs.
    """

    if not url:
        return None

    raw = url.strip()
    if not raw:
        return None

    raw = remove_jsessionid(raw)
    parsed = urlsplit(raw)
    if not parsed.scheme or not parsed.netloc:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in {item.lower() for item in allowed_schemes}:
        return None

    netloc = _normalize_netloc(parsed)
    if not netloc:
        return None

    fragment = parsed.fragment if SINGLE_PAGE_ROUTE_MARKER in raw else ""
    return urlunsplit((scheme, netloc, _normalize_path(parsed.path), parsed.query, fragment))


def is_https_upgrade(current_url: str, target_url: str) -> bool:
    """Return True when target only differs from current by `http` to `https`."""

    if not current_url.startswith("http:") or not target_url.startswith("https:"):
        return False
    return current_url[len("http:"):] == target_url[len("https:"):]


def to_https(url: str) -> str:
    """Rewrite the first `http:` of a URL to `https:`."""

    if url.startswith("http:"):
        return "https:" + url[len("http:"):]
    return url


def resolve_url(
    base_url: str,
    href: str | None,
    *,
    canonicalize: bool = True,
    allowed_schemes: Sequence[str] = DEFAULT_ALLOWED_SCHEMES,
) -> str | None:
    """Resolve possibly relative link against base URL and validate scheme."""

    if href is None:
        return None

    candidate = href.strip()
    if not candidate or candidate.startswith("#"):
        return None

    lowered = candidate.lower()
    if any(lowered.startswith(prefix) for prefix in SKIP_HREF_PREFIXES):
        return None

    absolute = urljoin(base_url, candidate)
    if canonicalize:
        return canonicalize_url(absolute, allowed_schemes=allowed_schemes)

    if is_http_url(absolute, allowed_schemes=allowed_schemes):
        return absolute
    return None


def extract_links_from_html(
    html: str | bytes,
    *,
    base_url: str,
    include_nofollow: bool = True,
) -> list[str]:
    """Extract resolved links from tags that can point at a document.

    Returns links in document order with duplicates removed.
    """

    soup = BeautifulSoup(html, "lxml")

    out: list[str] = []
    seen: set[str] = set()

    for element in soup.find_all(["a", "area", "link", "meta"]):
        if element.name == "meta":
            if str(element.get("name", "")).lower() != "citation_pdf_url":
                continue
            href = element.get("content")
        elif element.name == "link":
            if "alternate" not in {value.lower() for value in (element.get("rel") or [])}:
                continue
            href = element.get("href")
        else:
            href = element.get("href")
        if not href:
            continue

        rel_values = {value.lower() for value in (element.get("rel") or [])}
        if not include_nofollow and "nofollow" in rel_values:
            continue

        resolved = resolve_url(base_url, str(href))
        if not resolved or resolved in seen:
            continue

        seen.add(resolved)
        out.append(resolved)

    return out


def extract_meta_doc_url(html: str | bytes, *, base_url: str) -> str | None:
    """Return the resolved content of the first document-url `<meta>` tag, if any."""

    soup = BeautifulSoup(html, "lxml")
    for element in soup.find_all("meta"):
        if not META_DOC_URL_NAME.match(str(element.get("name", ""))):
            continue
        resolved = resolve_url(base_url, element.get("content"))
        if resolved:
            return resolved
    return None


__all__ = [
    "DEFAULT_ALLOWED_SCHEMES",
    "SKIP_HREF_PREFIXES",
    "canonicalize_url",
    "domain_of",
    "extract_links_from_html",
    "extract_meta_doc_url",
    "filename_of",
    "health_unit",
    "is_http_url",
    "is_https_upgrade",
    "path_of",
    "remove_jsessionid",
    "resolve_url",
    "to_https",
]

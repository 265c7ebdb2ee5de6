"""Versioned URL and MIME rule table.

Every pattern used to reject, recognize, or disambiguate a URL lives here so
the connection, redirect, classifier, and frontier layers share one copy.
Bump `RULES_VERSION` whenever a pattern changes; it is recorded in the run
manifest next to the config.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Pattern

from .types import Role, policy_for

RULES_VERSION = "2024.2"

URL_DIRECTORY_FILTER = re.compile(
    r".*/(?:profile|login|auth\.|authentication\.|ac(?:c)?ess|join|subscr|register|submit|post/|send/"
    r"|shop/|watch|import|bookmark|announcement|rss|feed|about|faq|wiki|news|events|cart|support"
    r"|sitemap|htmlmap|license|disclaimer|polic(?:y|ies)|privacy|terms|help|law"
    r"|(?:my|your)?account|user|fund|aut(?:h)?or|editor|citation|review|external|statistics"
    r"|application|permission|ethic|conta(?:c)?t|survey|wallet|contribute|deposit|donate|template"
    r"|logo|image|photo|advertiser|people|(?:the)?press"
    r"|error|(?:mis|ab)use|gateway|sorryserver|cookieabsent|notfound|404\.(?:\w)?htm).*"
)
UNSUPPORTED_DOC_EXTENSION_FILTER = re.compile(r".+\.(?:doc|docx|ppt|pptx)(?:\?.+)?$")
PAGE_FILE_EXTENSION_FILTER = re.compile(
    r".+\.(?:ico|css|js|gif|jpg|jpeg|png|wav|mp3|mp4|webm|mkv|mov|pt|xml|rdf|bib|nt|refer|enw|ris"
    r"|n3|csv|tsv|mso|dtl|svg|asc|txt|c|cc|cxx|cpp|java|py)(?:\?.+)?$"
)
INNER_LINK_FILE_EXTENSION_FILTER = re.compile(
    r".+\.(?:ico|css|js|gif|jpg|jpeg|png|wav|mp3|mp4|webm|mkv|mov|pt|xml|rdf|bib|nt|refer|enw|ris"
    r"|n3|csv|tsv|mso|dtl|svg|do|asc|txt|c|cc|cxx|cpp|java|py)(?:\?.+)?$"
)
INNER_LINK_KEYWORDS_FILTER = re.compile(r".*(?:doi\.org|mailto:|\?lang=|isallowed=n).*")
PLAIN_PAGE_EXTENSION_FILTER = re.compile(
    r".+\.(?:php|php2|php3|php4|php5|phtml|htm|html|shtml|xht|xhtm|xhtml|xml|rdf|bib|nt|refer|enw"
    r"|ris|n3|csv|tsv|aspx|asp|jsp|do|asc)$"
)
INNER_LINK_FORMAT_FILTER = re.compile(r".+format=(?:xml|htm|html|shtml|xht|xhtm|xhtml).*")
SPECIFIC_DOMAIN_FILTER = re.compile(
    r".+://.*(?:google|goo\.gl|gstatic|facebook|twitter|youtube|linkedin|wordpress|s\.w\.org|ebay"
    r"|bing|amazon\.|wikipedia|myspace|yahoo|mail|pinterest|reddit|blog|tumblr|evernote|skype"
    r"|microsoft|adobe|buffer|digg|stumbleupon|addthis|delicious|dailymotion|gostats|blogger"
    r"|copyright|friendfeed|newsvine|telegram|getpocket|flipboard|instapaper|line\.me|vk"
    r"|ok\.ru|douban|baidu|qzone|xing|renren|weibo|doubleclick|github).*/.*"
)
PLAIN_DOMAIN_FILTER = re.compile(r".+://[\w.:-]+/?$")

DOCUMENT_URL_SHAPE = re.compile(
    r"(?:\.pdf(?:$|[?#&;/])|/pdfs?(?:/|$)|[/=_]download|bitstream|fulltext|getfile|get_file"
    r"|viewcontent\.cgi|/attachments?/|[?&](?:type|format)=pdf)"
)
DATASET_URL_SHAPE = re.compile(
    r".+(?:datasets?/.*|(?:\.|format=)(?:xls[xbm]?|xlt[xm]?|csv|tsv|tab|(?:geo)?json|xml|ods|ddi"
    r"|rdf|g?zip|zipx|[rt]ar|[7x]z|t?gz|[gb]z\d*|smil?|por|ascii|dta|sav|dat|txt|tif+|twf|svg"
    r"|sas7bdat|spss|sas|stata|(?:my|postgre)?sql(?:ite)?|bigquery|sh[px]|sb[xn]|prj|dbf"
    r"|(?:m|acc)db|mif|mat|pcd|bt|n[sc]?\d*|h\d+|hdf\d*|trs|opj|jcamp|fcs|fas(?:ta)?|keys"
    r"|values|pdb|cif|hkl|gff\d*|[bs]am|ab1|sra)(?:\?.+)?$)"
)

SHARED_SITE_SESSION_MARKER = "sharedsitesession"
HTML_ESCAPED_AMP = "amp%3b"
VIEWCONTENT_MARKER = "viewcontent.cgi"
HANDLE_NET_MARKER = "handle.net"

MIME_TYPE_FILTER = re.compile(r"(?:\(['\"]?)?([\w]+/[\w+\-.]+).*")
GENERIC_MIME_TYPE = re.compile(
    r"(?:(?:application|binary)/(?:(?:x-)?octet-stream|save|force-download))|unknown"
)
VENDOR_PLACEHOLDER_MIME = "system.io.fileinfo"

DOCUMENT_MIME_TYPES = frozenset({"application/pdf", "application/x-pdf", "image/pdf"})
DATASET_MIME_TYPES = frozenset(
    {
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/csv",
        "text/tab-separated-values",
        "application/json",
        "application/xml",
        "application/rdf+xml",
        "application/smil+xml",
        "application/smil",
        "text/rdf+n3",
        "text/plain",
        "application/zip",
        "application/gzip",
        "application/rar",
        "application/vnd.rar",
        "application/x-tar",
        "application/x-7z-compressed",
        "application/x-sas-data",
        "application/x-netcdf",
        "application/x-sql",
        "image/tiff",
    }
)

HTML_FIRST_LINE = re.compile(r"^\s*<(?:!doctype\s)?html")
PDF_FIRST_LINE_PREFIX = "%pdf-"
UNWANTED_BODY_LINE = re.compile(r"^(?:\s+|\s*<(?:\?xml|!--).*)$")

# Input URLs on these sites never lead to a usable document.
INPUT_SITE_EXCLUSIONS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("JavaScript-driven site", ("frontiersin.org", "tandfonline.com")),
    ("elsevier landing site", ("www.elsevier.com", "journals.elsevier.com")),
    ("crawler-sensitive site", ("europepmc.org", "ncbi.nlm.nih.gov")),
    ("results directory", ("doaj.org/toc/",)),
    ("site serving HTML documents", ("dlib.org", "saberes.fcecon.unr.edu.ar")),
    ("site requiring login for documents", ("bibliotecadigital.uel.br", "cepr.org")),
)


@dataclass(frozen=True, slots=True)
class _Rule:
    reason: str
    pattern: Pattern[str]
    file_extension: bool = False


@dataclass(frozen=True, slots=True)
class UrlRuleTable:
    """Exclusion and shape rules applied to lower-cased URLs."""

    version: str = RULES_VERSION
    page_rules: tuple[_Rule, ...] = field(
        default_factory=lambda: (
            _Rule("plain domain", PLAIN_DOMAIN_FILTER),
            _Rule("unwanted domain", SPECIFIC_DOMAIN_FILTER),
            _Rule("unwanted directory", URL_DIRECTORY_FILTER),
            _Rule("unwanted file extension", PAGE_FILE_EXTENSION_FILTER, file_extension=True),
            _Rule("unsupported document extension", UNSUPPORTED_DOC_EXTENSION_FILTER),
        )
    )
    internal_link_rules: tuple[_Rule, ...] = field(
        default_factory=lambda: (
            _Rule("plain domain", PLAIN_DOMAIN_FILTER),
            _Rule("unwanted domain", SPECIFIC_DOMAIN_FILTER),
            _Rule("unwanted directory", URL_DIRECTORY_FILTER),
            _Rule("unwanted keyword", INNER_LINK_KEYWORDS_FILTER),
            _Rule(
                "unwanted file extension",
                INNER_LINK_FILE_EXTENSION_FILTER,
                file_extension=True,
            ),
            _Rule("plain page extension", PLAIN_PAGE_EXTENSION_FILTER, file_extension=True),
            _Rule("unwanted format", INNER_LINK_FORMAT_FILTER),
            _Rule("unsupported document extension", UNSUPPORTED_DOC_EXTENSION_FILTER),
        )
    )
    input_exclusions: tuple[tuple[str, tuple[str, ...]], ...] = INPUT_SITE_EXCLUSIONS

    def rejection_reason(
        self,
        lower_url: str,
        role: Role,
        *,
        keep_datasets: bool = False,
    ) -> str | None:
        """Return why a URL is unwanted for a role, or None if it is acceptable.

        Dataset-shaped URLs skip the file-extension rules when datasets are wanted.
        """

        rules = self.page_rules if policy_for(role).page_rules else self.internal_link_rules
        skip_extensions = keep_datasets and self.looks_like_dataset(lower_url)
        for rule in rules:
            if skip_extensions and rule.file_extension:
                continue
            if rule.pattern.fullmatch(lower_url):
                return rule.reason
        return None

    def input_exclusion_reason(self, lower_url: str) -> str | None:
        for reason, markers in self.input_exclusions:
            if any(marker in lower_url for marker in markers):
                return reason
        return None

    @staticmethod
    def has_shared_site_session(lower_url: str) -> bool:
        return SHARED_SITE_SESSION_MARKER in lower_url

    @staticmethod
    def looks_like_document(lower_url: str) -> bool:
        return DOCUMENT_URL_SHAPE.search(lower_url) is not None

    @staticmethod
    def looks_like_dataset(lower_url: str) -> bool:
        return DATASET_URL_SHAPE.fullmatch(lower_url) is not None


DEFAULT_RULES = UrlRuleTable()


__all__ = [
    "DATASET_MIME_TYPES",
    "DEFAULT_RULES",
    "DOCUMENT_MIME_TYPES",
    "GENERIC_MIME_TYPE",
    "HANDLE_NET_MARKER",
    "HTML_ESCAPED_AMP",
    "HTML_FIRST_LINE",
    "MIME_TYPE_FILTER",
    "PDF_FIRST_LINE_PREFIX",
    "RULES_VERSION",
    "UNWANTED_BODY_LINE",
    "UrlRuleTable",
    "VENDOR_PLACEHOLDER_MIME",
    "VIEWCONTENT_MARKER",
]

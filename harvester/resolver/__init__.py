"""Resolver package: connection handling, domain health, classification, and pipeline."""

from .classifier import Classification, ContentClassifier, sniff_first_line
from .config import ResolverConfig, apply_env_overrides, load_config, load_config_payload, save_config
from .connection import ConnectionManager, RawResponse
from .engine import ResolutionEngine
from .errors import (
    BlockedError,
    ClassificationUnknownError,
    ConfigError,
    ConnTimeoutError,
    FileNotRetrievedError,
    HeadUnsupportedError,
    HttpStatusError,
    ProtocolError,
    RedirectBudgetExceededError,
    RejectedTargetError,
    ResolutionError,
)
from .frontier import PageCrawler
from .health import DomainHealthRecord, DomainHealthStore
from .index import AlreadyFoundIndex, IndexEntry
from .loader import load_records, parse_line
from .pipeline import Pipeline
from .redirects import AlreadyFound, RedirectResolver, Terminal
from .rules import DEFAULT_RULES, RULES_VERSION, UrlRuleTable
from .sciencedirect import ScienceDirectHandler
from .stats import StatsCollector
from .storage import FileStore, OutputWriter, save_manifest
from .types import (
    FailureCategory,
    HttpMethod,
    InputRecord,
    Locator,
    OutcomeKind,
    OutputRecord,
    ResolutionOutcome,
    ResourceKind,
    Role,
    utc_now_iso,
)
from .url import canonicalize_url, domain_of, extract_links_from_html, health_unit, resolve_url

__all__ = [
    "AlreadyFound",
    "AlreadyFoundIndex",
    "BlockedError",
    "Classification",
    "ClassificationUnknownError",
    "ConfigError",
    "ConnTimeoutError",
    "ConnectionManager",
    "ContentClassifier",
    "DEFAULT_RULES",
    "DomainHealthRecord",
    "DomainHealthStore",
    "FailureCategory",
    "FileNotRetrievedError",
    "FileStore",
    "HeadUnsupportedError",
    "HttpMethod",
    "HttpStatusError",
    "IndexEntry",
    "InputRecord",
    "Locator",
    "OutcomeKind",
    "OutputRecord",
    "OutputWriter",
    "PageCrawler",
    "Pipeline",
    "ProtocolError",
    "RULES_VERSION",
    "RawResponse",
    "RedirectBudgetExceededError",
    "RedirectResolver",
    "RejectedTargetError",
    "ResolutionEngine",
    "ResolutionError",
    "ResolutionOutcome",
    "ResolverConfig",
    "ResourceKind",
    "Role",
    "ScienceDirectHandler",
    "StatsCollector",
    "Terminal",
    "UrlRuleTable",
    "apply_env_overrides",
    "canonicalize_url",
    "domain_of",
    "extract_links_from_html",
    "health_unit",
    "load_config",
    "load_config_payload",
    "load_records",
    "parse_line",
    "resolve_url",
    "save_config",
    "save_manifest",
    "sniff_first_line",
    "utc_now_iso",
]

"""Typed resolver configuration with JSON/YAML load/save and env overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore

from .constants import (
    DEFAULT_ACCEPT_LANGUAGE,
    DEFAULT_BLOCKED_PATHS_THRESHOLD,
    DEFAULT_DOWNLOAD_DOCUMENTS,
    DEFAULT_GET_ONLY_DOMAINS,
    DEFAULT_GET_TIMEOUT_SECONDS,
    DEFAULT_HEAD_TIMEOUT_SECONDS,
    DEFAULT_MAX_CONTENT_BYTES,
    DEFAULT_MAX_INTERNAL_LINKS_PER_PAGE,
    DEFAULT_MAX_POLITENESS_DELAY_SECONDS,
    DEFAULT_MAX_REDIRECTS_INTERNAL,
    DEFAULT_MAX_REDIRECTS_PAGE,
    DEFAULT_MIN_POLITENESS_DELAY_SECONDS,
    DEFAULT_NOT_DOC_NOR_PAGE_THRESHOLD,
    DEFAULT_NO_TYPE_THRESHOLD,
    DEFAULT_OUTPUT_BATCH_SIZE,
    DEFAULT_PATH_403_THRESHOLD,
    DEFAULT_SERVER_ERROR_THRESHOLD,
    DEFAULT_TIMEOUT_THRESHOLD,
    DEFAULT_USER_AGENT,
    DEFAULT_WANT_DATASETS,
    DEFAULT_WANT_DOCUMENTS,
    DEFAULT_WORKER_COUNT,
    ENV_PREFIX,
    JSON_INDENT,
    SUPPORTED_CONFIG_SUFFIXES,
)
from .errors import ConfigError
from .types import HttpMethod, JSONValue, Role, policy_for


def _as_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid float for '{key}': {value!r}") from exc


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid int for '{key}': {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid int for '{key}': {value!r}") from exc


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Invalid bool for '{key}': {value!r}")


def _as_domain_list(value: Any, key: str) -> list[str]:
    if isinstance(value, str):
        value = [item for item in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"Invalid domain list for '{key}': {value!r}")
    return [str(item).strip().lower() for item in value if str(item).strip()]


@dataclass(slots=True)
class ResolverConfig:
    """Run-wide resolver settings. Fixed once the run starts."""

    worker_count: int = DEFAULT_WORKER_COUNT
    download_documents: bool = DEFAULT_DOWNLOAD_DOCUMENTS
    want_documents: bool = DEFAULT_WANT_DOCUMENTS
    want_datasets: bool = DEFAULT_WANT_DATASETS

    max_redirects_page: int = DEFAULT_MAX_REDIRECTS_PAGE
    max_redirects_internal: int = DEFAULT_MAX_REDIRECTS_INTERNAL
    head_timeout_seconds: float = DEFAULT_HEAD_TIMEOUT_SECONDS
    get_timeout_seconds: float = DEFAULT_GET_TIMEOUT_SECONDS
    min_politeness_delay_seconds: float = DEFAULT_MIN_POLITENESS_DELAY_SECONDS
    max_politeness_delay_seconds: float = DEFAULT_MAX_POLITENESS_DELAY_SECONDS

    server_error_threshold: int = DEFAULT_SERVER_ERROR_THRESHOLD
    timeout_threshold: int = DEFAULT_TIMEOUT_THRESHOLD
    no_type_threshold: int = DEFAULT_NO_TYPE_THRESHOLD
    not_doc_nor_page_threshold: int = DEFAULT_NOT_DOC_NOR_PAGE_THRESHOLD
    path_403_threshold: int = DEFAULT_PATH_403_THRESHOLD
    blocked_paths_threshold: int = DEFAULT_BLOCKED_PATHS_THRESHOLD

    max_content_bytes: int = DEFAULT_MAX_CONTENT_BYTES
    max_internal_links_per_page: int = DEFAULT_MAX_INTERNAL_LINKS_PER_PAGE
    output_batch_size: int = DEFAULT_OUTPUT_BATCH_SIZE

    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    get_only_domains: list[str] = field(default_factory=lambda: list(DEFAULT_GET_ONLY_DOMAINS))

    metadata: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.worker_count <= 0:
            raise ConfigError("worker_count must be > 0")
        if not (self.want_documents or self.want_datasets):
            raise ConfigError("At least one of want_documents/want_datasets must be enabled")
        if self.max_redirects_page < 0 or self.max_redirects_internal < 0:
            raise ConfigError("redirect limits must be >= 0")
        if self.head_timeout_seconds <= 0 or self.get_timeout_seconds <= 0:
            raise ConfigError("timeouts must be > 0")
        if self.min_politeness_delay_seconds < 0:
            raise ConfigError("min_politeness_delay_seconds must be >= 0")
        if self.max_politeness_delay_seconds < self.min_politeness_delay_seconds:
            raise ConfigError(
                "max_politeness_delay_seconds must be >= min_politeness_delay_seconds"
            )
        for name in (
            "server_error_threshold",
            "timeout_threshold",
            "no_type_threshold",
            "not_doc_nor_page_threshold",
            "path_403_threshold",
            "blocked_paths_threshold",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if self.max_content_bytes <= 0:
            raise ConfigError("max_content_bytes must be > 0")
        if self.max_internal_links_per_page <= 0:
            raise ConfigError("max_internal_links_per_page must be > 0")
        if self.output_batch_size <= 0:
            raise ConfigError("output_batch_size must be > 0")

        self.get_only_domains = _as_domain_list(self.get_only_domains, "get_only_domains")

    def max_redirects_for(self, role: Role) -> int:
        """Return the redirect budget for a role."""

        if policy_for(role).long_redirect_chain:
            return self.max_redirects_page
        return self.max_redirects_internal

    def timeout_for(self, method: HttpMethod) -> tuple[float, float]:
        """Return the (connect, read) timeout pair for an HTTP method."""

        seconds = self.get_timeout_seconds if method is HttpMethod.GET else self.head_timeout_seconds
        return (seconds, seconds)

    def requires_get(self, domain: str) -> bool:
        """Return True for hosts configured to always be fetched with GET."""

        return any(domain == item or domain.endswith("." + item) for item in self.get_only_domains)

    def to_dict(self) -> dict[str, Any]:
        """Serialize config for manifests and reproducibility."""

        return {
            "worker_count": self.worker_count,
            "download_documents": self.download_documents,
            "want_documents": self.want_documents,
            "want_datasets": self.want_datasets,
            "max_redirects_page": self.max_redirects_page,
            "max_redirects_internal": self.max_redirects_internal,
            "head_timeout_seconds": self.head_timeout_seconds,
            "get_timeout_seconds": self.get_timeout_seconds,
            "min_politeness_delay_seconds": self.min_politeness_delay_seconds,
            "max_politeness_delay_seconds": self.max_politeness_delay_seconds,
            "server_error_threshold": self.server_error_threshold,
            "timeout_threshold": self.timeout_threshold,
            "no_type_threshold": self.no_type_threshold,
            "not_doc_nor_page_threshold": self.not_doc_nor_page_threshold,
            "path_403_threshold": self.path_403_threshold,
            "blocked_paths_threshold": self.blocked_paths_threshold,
            "max_content_bytes": self.max_content_bytes,
            "max_internal_links_per_page": self.max_internal_links_per_page,
            "output_batch_size": self.output_batch_size,
            "user_agent": self.user_agent,
            "accept_language": self.accept_language,
            "get_only_domains": list(self.get_only_domains),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ResolverConfig":
        """Build config from a parsed dictionary."""

        def get(key: str, default: Any) -> Any:
            value = payload.get(key)
            return default if value is None else value

        return cls(
            worker_count=_as_int(get("worker_count", DEFAULT_WORKER_COUNT), "worker_count"),
            download_documents=_as_bool(
                get("download_documents", DEFAULT_DOWNLOAD_DOCUMENTS),
                "download_documents",
            ),
            want_documents=_as_bool(get("want_documents", DEFAULT_WANT_DOCUMENTS), "want_documents"),
            want_datasets=_as_bool(get("want_datasets", DEFAULT_WANT_DATASETS), "want_datasets"),
            max_redirects_page=_as_int(
                get("max_redirects_page", DEFAULT_MAX_REDIRECTS_PAGE),
                "max_redirects_page",
            ),
            max_redirects_internal=_as_int(
                get("max_redirects_internal", DEFAULT_MAX_REDIRECTS_INTERNAL),
                "max_redirects_internal",
            ),
            head_timeout_seconds=_as_float(
                get("head_timeout_seconds", DEFAULT_HEAD_TIMEOUT_SECONDS),
                "head_timeout_seconds",
            ),
            get_timeout_seconds=_as_float(
                get("get_timeout_seconds", DEFAULT_GET_TIMEOUT_SECONDS),
                "get_timeout_seconds",
            ),
            min_politeness_delay_seconds=_as_float(
                get("min_politeness_delay_seconds", DEFAULT_MIN_POLITENESS_DELAY_SECONDS),
                "min_politeness_delay_seconds",
            ),
            max_politeness_delay_seconds=_as_float(
                get("max_politeness_delay_seconds", DEFAULT_MAX_POLITENESS_DELAY_SECONDS),
                "max_politeness_delay_seconds",
            ),
            server_error_threshold=_as_int(
                get("server_error_threshold", DEFAULT_SERVER_ERROR_THRESHOLD),
                "server_error_threshold",
            ),
            timeout_threshold=_as_int(
                get("timeout_threshold", DEFAULT_TIMEOUT_THRESHOLD),
                "timeout_threshold",
            ),
            no_type_threshold=_as_int(
                get("no_type_threshold", DEFAULT_NO_TYPE_THRESHOLD),
                "no_type_threshold",
            ),
            not_doc_nor_page_threshold=_as_int(
                get("not_doc_nor_page_threshold", DEFAULT_NOT_DOC_NOR_PAGE_THRESHOLD),
                "not_doc_nor_page_threshold",
            ),
            path_403_threshold=_as_int(
                get("path_403_threshold", DEFAULT_PATH_403_THRESHOLD),
                "path_403_threshold",
            ),
            blocked_paths_threshold=_as_int(
                get("blocked_paths_threshold", DEFAULT_BLOCKED_PATHS_THRESHOLD),
                "blocked_paths_threshold",
            ),
            max_content_bytes=_as_int(
                get("max_content_bytes", DEFAULT_MAX_CONTENT_BYTES),
                "max_content_bytes",
            ),
            max_internal_links_per_page=_as_int(
                get("max_internal_links_per_page", DEFAULT_MAX_INTERNAL_LINKS_PER_PAGE),
                "max_internal_links_per_page",
            ),
            output_batch_size=_as_int(
                get("output_batch_size", DEFAULT_OUTPUT_BATCH_SIZE),
                "output_batch_size",
            ),
            user_agent=str(get("user_agent", DEFAULT_USER_AGENT)),
            accept_language=str(get("accept_language", DEFAULT_ACCEPT_LANGUAGE)),
            get_only_domains=_as_domain_list(
                get("get_only_domains", list(DEFAULT_GET_ONLY_DOMAINS)),
                "get_only_domains",
            ),
            metadata=dict(get("metadata", {})),
        )


def apply_env_overrides(
    payload: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Overlay `RESOLVER_<FIELD>` environment variables onto a config payload.

    Values are parsed as YAML scalars, so `true`, `3` and `[a, b]` keep their types.
    """

    env = os.environ if environ is None else environ
    merged = dict(payload)
    for config_field in fields(ResolverConfig):
        if config_field.name == "metadata":
            continue
        raw = env.get(ENV_PREFIX + config_field.name.upper())
        if raw is None:
            continue
        try:
            merged[config_field.name] = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid value for {ENV_PREFIX}{config_field.name.upper()}") from exc
    return merged


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"YAML config at {path} must be a mapping at top level")
    return data


def load_config_payload(path: str | Path) -> dict[str, Any]:
    """Read a JSON/YAML config file into a plain mapping."""

    config_path = Path(path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigError(
            f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
        )

    if suffix == ".json":
        try:
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON config at {config_path}: {exc}") from exc
    else:
        payload = _load_yaml(config_path)

    if not isinstance(payload, dict):
        raise ConfigError(f"Config at {config_path} must be a mapping")
    return payload


def load_config(path: str | Path) -> ResolverConfig:
    """Load ResolverConfig from JSON/YAML path."""

    return ResolverConfig.from_dict(load_config_payload(path))


def save_config(config: ResolverConfig, path: str | Path) -> None:
    """Save ResolverConfig as JSON or YAML based on file extension."""

    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    suffix = out_path.suffix.lower()
    payload = config.to_dict()

    if suffix == ".json":
        out_path.write_text(
            json.dumps(payload, indent=JSON_INDENT, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return

    if suffix in {".yaml", ".yml"}:
        out_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return

    raise ConfigError(
        f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
    )


__all__ = [
    "ResolverConfig",
    "apply_env_overrides",
    "load_config",
    "load_config_payload",
    "save_config",
]

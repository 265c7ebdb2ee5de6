"""Default values shared by resolver config, connection handling, and storage."""

from __future__ import annotations

DEFAULT_WORKER_COUNT = 8
DEFAULT_DOWNLOAD_DOCUMENTS = False
DEFAULT_WANT_DOCUMENTS = True
DEFAULT_WANT_DATASETS = False

DEFAULT_MAX_REDIRECTS_PAGE = 7
DEFAULT_MAX_REDIRECTS_INTERNAL = 2

DEFAULT_HEAD_TIMEOUT_SECONDS = 10.0
DEFAULT_GET_TIMEOUT_SECONDS = 15.0

DEFAULT_MIN_POLITENESS_DELAY_SECONDS = 1.0
DEFAULT_MAX_POLITENESS_DELAY_SECONDS = 7.0

DEFAULT_SERVER_ERROR_THRESHOLD = 10
DEFAULT_TIMEOUT_THRESHOLD = 25
DEFAULT_NO_TYPE_THRESHOLD = 10
DEFAULT_NOT_DOC_NOR_PAGE_THRESHOLD = 10
DEFAULT_PATH_403_THRESHOLD = 10
DEFAULT_BLOCKED_PATHS_THRESHOLD = 50

DEFAULT_MAX_CONTENT_BYTES = 1_073_741_824
DEFAULT_MAX_INTERNAL_LINKS_PER_PAGE = 100
DEFAULT_OUTPUT_BATCH_SIZE = 500
DEFAULT_DOWNLOAD_CHUNK_BYTES = 64 * 1024

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:84.0) Gecko/20100101 Firefox/84.0"
)
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.5"

# Hosts that answer HEAD with misleading or empty responses.
DEFAULT_GET_ONLY_DOMAINS = (
    "os.zhdk.cloud.switch.ch",
    "pdf.sciencedirectassets.com",
)

UNRETRIEVABLE_ID = "unretrievable"
UNREACHABLE_STATUS = "unreachable"
DUPLICATE_STATUS = "duplicate"
ALREADY_DOWNLOADED_PREFIX = "This file is probably already downloaded from ID="
DATASET_COMMENT = "It's a dataset-url."
NO_DOC_IN_PAGE_COMMENT = "No docUrl was found in page"

ENV_PREFIX = "RESOLVER_"
JSON_INDENT = 2
SUPPORTED_CONFIG_SUFFIXES = (".json", ".yaml", ".yml")


__all__ = [
    "ALREADY_DOWNLOADED_PREFIX",
    "DATASET_COMMENT",
    "DEFAULT_ACCEPT_LANGUAGE",
    "DEFAULT_BLOCKED_PATHS_THRESHOLD",
    "DEFAULT_DOWNLOAD_CHUNK_BYTES",
    "DEFAULT_DOWNLOAD_DOCUMENTS",
    "DEFAULT_GET_ONLY_DOMAINS",
    "DEFAULT_GET_TIMEOUT_SECONDS",
    "DEFAULT_HEAD_TIMEOUT_SECONDS",
    "DEFAULT_MAX_CONTENT_BYTES",
    "DEFAULT_MAX_INTERNAL_LINKS_PER_PAGE",
    "DEFAULT_MAX_POLITENESS_DELAY_SECONDS",
    "DEFAULT_MAX_REDIRECTS_INTERNAL",
    "DEFAULT_MAX_REDIRECTS_PAGE",
    "DEFAULT_MIN_POLITENESS_DELAY_SECONDS",
    "DEFAULT_NOT_DOC_NOR_PAGE_THRESHOLD",
    "DEFAULT_NO_TYPE_THRESHOLD",
    "DEFAULT_OUTPUT_BATCH_SIZE",
    "DEFAULT_PATH_403_THRESHOLD",
    "DEFAULT_SERVER_ERROR_THRESHOLD",
    "DEFAULT_TIMEOUT_THRESHOLD",
    "DEFAULT_USER_AGENT",
    "DEFAULT_WANT_DATASETS",
    "DEFAULT_WANT_DOCUMENTS",
    "DEFAULT_WORKER_COUNT",
    "DUPLICATE_STATUS",
    "ENV_PREFIX",
    "JSON_INDENT",
    "NO_DOC_IN_PAGE_COMMENT",
    "SUPPORTED_CONFIG_SUFFIXES",
    "UNREACHABLE_STATUS",
    "UNRETRIEVABLE_ID",
]

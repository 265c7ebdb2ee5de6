"""Run-scoped index of URLs already resolved to a document or dataset."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .url import canonicalize_url


@dataclass(frozen=True, slots=True)
class IndexEntry:
    url: str
    original_id: str | None


class AlreadyFoundIndex:
    """Map canonical final URLs to the id of the input that found them first.

    Entries are written once and never replaced. Lookups and inserts use the
    canonical form, so `http://Host/a;jsessionid=1` and `http://host/a` share
    an entry.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, IndexEntry] = {}

    @staticmethod
    def key_for(url: str) -> str:
        return canonicalize_url(url) or url.strip()

    def lookup(self, url: str) -> IndexEntry | None:
        key = self.key_for(url)
        with self._lock:
            return self._entries.get(key)

    def add(self, url: str, original_id: str | None) -> bool:
        """Insert an entry; return False if the URL was already present."""

        key = self.key_for(url)
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = IndexEntry(url=key, original_id=original_id)
            return True

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and self.lookup(url) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["AlreadyFoundIndex", "IndexEntry"]

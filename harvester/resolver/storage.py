"""Filesystem outputs: downloaded files, batched output rows, and run manifests.

Writers in this module are thread-safe. Files appear under their final name
only once completely written (temp file + `os.replace`).
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Iterable, Mapping
from urllib.parse import unquote

from .errors import FileNotRetrievedError
from .types import OutputRecord, ResourceKind
from .url import filename_of

LOGGER = logging.getLogger(__name__)

FILENAME_FROM_DISPOSITION = re.compile(
    r".*filename\*?=(?:utf-8'')?[\"']?([\w\-.%() ]+)[\"';]*.*",
    re.IGNORECASE,
)
UNSAFE_FILENAME_CHARS = re.compile(r"[^\w\-.() ]")
UNNAMED_FILE_BASE = "unretrievableDocName"
DOCUMENT_EXTENSION = ".pdf"
MAX_FILENAME_LENGTH = 200


def _atomic_write_json(path: Path, payload: Mapping[str, Any]) -> None:
    content = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=path.name + ".",
        suffix=".tmp",
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def save_manifest(path: str | Path, payload: Mapping[str, Any]) -> Path:
    """Write a JSON manifest atomically and return its path."""

    out_path = Path(path)
    _atomic_write_json(out_path, dict(payload))
    return out_path


class FileStore:
    """Store matched documents/datasets under one directory.

    File names come from `Content-Disposition`, then the URL tail, then a
    numbered placeholder. Clashing names get `(1)`, `(2)`... suffixes.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        max_content_bytes: int,
        chunk_size: int = 64 * 1024,
    ) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.max_content_bytes = max_content_bytes
        self.chunk_size = chunk_size

        self._names_lock = threading.Lock()
        self._reserved: set[str] = set()

    @staticmethod
    def filename_hint(url: str, content_disposition: str | None = None) -> str | None:
        """Suggest a file name from `Content-Disposition` or the URL tail."""

        if content_disposition:
            match = FILENAME_FROM_DISPOSITION.match(content_disposition)
            if match is not None:
                name = unquote(match.group(1)).strip()
                if name:
                    return name

        tail = filename_of(url)
        if tail is None:
            return None
        return unquote(tail).strip() or None

    def store(
        self,
        chunks: Iterable[bytes],
        *,
        url: str,
        content_disposition: str | None = None,
        kind: ResourceKind = ResourceKind.DOCUMENT,
        declared_length: int | None = None,
    ) -> Path:
        """Stream chunks into a new file and return its final path."""

        if declared_length is not None and (
            declared_length <= 0 or declared_length > self.max_content_bytes
        ):
            raise FileNotRetrievedError(
                f"Refusing {url}: declared size {declared_length} is outside (0, {self.max_content_bytes}]"
            )

        name = self._reserve_name(self.filename_hint(url, content_disposition), kind)
        path = self.directory / name
        tmp_fd, tmp_path = tempfile.mkstemp(dir=str(self.directory), prefix=".", suffix=".part")
        size = 0
        try:
            with os.fdopen(tmp_fd, "wb") as handle:
                for chunk in chunks:
                    if not chunk:
                        continue
                    size += len(chunk)
                    if size > self.max_content_bytes:
                        raise FileNotRetrievedError(
                            f"Refusing {url}: body exceeds {self.max_content_bytes} bytes"
                        )
                    handle.write(chunk)
                handle.flush()
                os.fsync(handle.fileno())
            if size == 0:
                raise FileNotRetrievedError(f"Refusing {url}: empty body")
            os.replace(tmp_path, path)
        except Exception:
            self._release_name(name)
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise

        LOGGER.debug("Stored %s (%d bytes) from %s", path, size, url)
        return path

    def _reserve_name(self, hint: str | None, kind: ResourceKind) -> str:
        base = UNSAFE_FILENAME_CHARS.sub("_", hint or "").strip(" .")[:MAX_FILENAME_LENGTH]
        if not base:
            base = UNNAMED_FILE_BASE

        stem, extension = os.path.splitext(base)
        if kind is ResourceKind.DOCUMENT and extension.lower() != DOCUMENT_EXTENSION:
            stem, extension = base, DOCUMENT_EXTENSION

        with self._names_lock:
            candidate = stem + extension
            number = 0
            while candidate in self._reserved or (self.directory / candidate).exists():
                number += 1
                candidate = f"{stem}({number}){extension}"
            self._reserved.add(candidate)
            return candidate

    def _release_name(self, name: str) -> None:
        with self._names_lock:
            self._reserved.discard(name)


class OutputWriter:
    """Append output rows to a JSONL file in batches."""

    def __init__(self, path: str | Path, *, batch_size: int = 500) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")

        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.batch_size = batch_size

        self._lock = threading.Lock()
        self._buffer: list[str] = []
        self._written = 0
        self._closed = False

    @property
    def written(self) -> int:
        with self._lock:
            return self._written

    def write(self, record: OutputRecord | Mapping[str, Any]) -> None:
        """Buffer one row; flush when the batch is full."""

        payload = record.to_json() if isinstance(record, OutputRecord) else dict(record)
        line = json.dumps(payload, ensure_ascii=False, sort_keys=True)
        with self._lock:
            if self._closed:
                raise RuntimeError(f"OutputWriter for {self.path} is closed")
            self._buffer.append(line)
            if len(self._buffer) >= self.batch_size:
                self._flush_locked()

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._flush_locked()
            self._closed = True

    def _flush_locked(self) -> None:
        if not self._buffer:
            return
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write("\n".join(self._buffer) + "\n")
        self._written += len(self._buffer)
        LOGGER.debug("Wrote %d output rows to %s", len(self._buffer), self.path)
        self._buffer.clear()

    def __enter__(self) -> "OutputWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["FileStore", "OutputWriter", "save_manifest"]

"""Input readers for id/url pairs.

Accepted line formats, mixed freely within one file:

- JSON objects: `{"id": "rec-1", "url": "https://..."}`
- tab-separated `id<TAB>url`
- a bare URL
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator

from .types import InputRecord

LOGGER = logging.getLogger(__name__)

COMMENT_PREFIX = "#"


def parse_line(line: str, line_number: int | None = None) -> InputRecord | None:
    """Parse one input line, returning None for blank, comment, or malformed lines."""

    raw = line.strip()
    if not raw or raw.startswith(COMMENT_PREFIX):
        return None

    if raw.startswith("{"):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Skipping line %s: invalid JSON (%s)", line_number, exc)
            return None
        if not isinstance(payload, dict):
            LOGGER.warning("Skipping line %s: expected a JSON object", line_number)
            return None
        url = payload.get("url")
        record_id = payload.get("id")
    elif "\t" in raw:
        record_id, url = (part.strip() for part in raw.split("\t", maxsplit=1))
    else:
        record_id, url = None, raw

    if not isinstance(url, str) or not url.strip():
        LOGGER.warning("Skipping line %s: no url", line_number)
        return None
    url = url.strip()

    if record_id is not None:
        record_id = str(record_id).strip() or None
    return InputRecord(url=url, id=record_id, line_number=line_number)


def load_records(path: str | Path) -> Iterator[InputRecord]:
    """Yield InputRecords from a JSONL/TSV/plain-URL file, one per usable line."""

    in_path = Path(path)
    with in_path.open("r", encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            record = parse_line(line, line_number)
            if record is not None:
                yield record


__all__ = ["load_records", "parse_line"]

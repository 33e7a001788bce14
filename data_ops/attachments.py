"""
Attachment ingestion and the per-session attachment holder.

``load_attachment`` turns a dropped file into either a tabular context
(CSV) or a structured-record context (JSON). ``AttachmentState`` owns the
active context for one chat session; the two kinds are mutually
exclusive and installing one clears the other.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .tabular import (
    ParseError,
    ParsedTable,
    build_slim_csv,
    compute_dataset_summary,
    enrich_with_engagement,
    parse_rows,
)

RECORD_ARRAY_KEYS = ("videos", "records", "items")


@dataclass
class TabularContext:
    """A loaded CSV and its derived artifacts.

    ``source_text`` is the raw file text, kept only in memory for the
    encoded transport used by Python-analysis turns.
    """
    name: str
    table: ParsedTable
    summary: str
    slim_csv: str
    source_text: str

    @property
    def headers(self) -> list[str]:
        return self.table.headers

    @property
    def rows(self) -> list[dict]:
        return self.table.rows

    @property
    def row_count(self) -> int:
        return self.table.row_count

    def descriptor(self) -> dict:
        return {"name": self.name, "kind": "csv", "size": self.row_count}


@dataclass
class RecordContext:
    """A loaded JSON record array."""
    name: str
    records: list[dict] = field(default_factory=list)

    @property
    def fields(self) -> list[str]:
        return list(self.records[0].keys()) if self.records else []

    @property
    def record_count(self) -> int:
        return len(self.records)

    def descriptor(self) -> dict:
        return {"name": self.name, "kind": "json", "size": self.record_count}


Attachment = Union[TabularContext, RecordContext]


def build_tabular_context(name: str, text: str, slim_limit: int = 40_000) -> TabularContext:
    """Parse CSV text, add the engagement column, summary and slim projection."""
    table = parse_rows(text)
    rows, headers = enrich_with_engagement(table.rows, table.headers)
    enriched = ParsedTable(headers=headers, rows=rows)
    return TabularContext(
        name=name,
        table=enriched,
        summary=compute_dataset_summary(rows, headers),
        slim_csv=build_slim_csv(rows, headers, limit=slim_limit),
        source_text=text,
    )


def parse_records(text: str) -> list[dict]:
    """Parse a JSON record array.

    Accepts a bare array or an object holding the array under one of
    ``videos``, ``records`` or ``items``. Non-dict entries are skipped.

    Raises:
        ParseError: On invalid JSON or when no records are found.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}") from e
    if isinstance(data, dict):
        data = next((data[k] for k in RECORD_ARRAY_KEYS if isinstance(data.get(k), list)), None)
    if not isinstance(data, list):
        raise ParseError(
            f"JSON must be an array of records or an object with one of: {', '.join(RECORD_ARRAY_KEYS)}"
        )
    records = [item for item in data if isinstance(item, dict)]
    if not records:
        raise ParseError("JSON contains no records.")
    return records


def load_attachment(name: str, text: str, slim_limit: int = 40_000) -> Attachment:
    """Build a tabular or record context from a file's name and text.

    The extension decides; for anything else the content is sniffed (a
    leading ``[`` or ``{`` means JSON).
    """
    suffix = Path(name).suffix.lower()
    if suffix == ".json":
        return RecordContext(name=name, records=parse_records(text))
    if suffix in (".csv", ".tsv", ".txt") or not text.lstrip().startswith(("[", "{")):
        return build_tabular_context(name, text, slim_limit=slim_limit)
    return RecordContext(name=name, records=parse_records(text))


def load_attachment_file(path: Union[str, Path], slim_limit: int = 40_000) -> Attachment:
    path = Path(path)
    return load_attachment(path.name, path.read_text(encoding="utf-8-sig"), slim_limit=slim_limit)


class AttachmentState:
    """Holds the active attachment context for one chat session.

    At most one of ``tabular`` / ``records`` is set. ``fresh_tabular`` is
    True when the tabular context was installed since the last turn started
    (a same-turn drop).
    """

    def __init__(self) -> None:
        self._tabular: Optional[TabularContext] = None
        self._records: Optional[RecordContext] = None
        self._fresh_tabular = False

    @property
    def tabular(self) -> Optional[TabularContext]:
        return self._tabular

    @property
    def records(self) -> Optional[RecordContext]:
        return self._records

    @property
    def fresh_tabular(self) -> bool:
        return self._fresh_tabular

    def install(self, attachment: Attachment) -> None:
        """Install a context, replacing whatever was loaded before."""
        if isinstance(attachment, TabularContext):
            self._tabular = attachment
            self._records = None
            self._fresh_tabular = True
        elif isinstance(attachment, RecordContext):
            self._records = attachment
            self._tabular = None
            self._fresh_tabular = False
        else:
            raise TypeError(f"Unsupported attachment: {type(attachment).__name__}")

    def mark_turn_consumed(self) -> None:
        """Called after a turn; a fresh drop becomes session data."""
        self._fresh_tabular = False

    def clear(self) -> None:
        self._tabular = None
        self._records = None
        self._fresh_tabular = False

    @property
    def active(self) -> Optional[Attachment]:
        return self._tabular or self._records

    def descriptor(self) -> Optional[dict]:
        active = self.active
        return active.descriptor() if active else None

"""
Tabular adapter protocol and parse DTOs.

Contract:
    TabularAdapter.read() decodes a whole file into a column list plus a row
    matrix.  Row order is the physical data-row order of the file (empty
    rows dropped), so row index + 1 is the row number reported to users.

Architecture: coop_ingestion/adapters. File I/O only, no DB imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ReadOptions:
    """How to interpret a file.

    ``encoding`` of None or ``"auto"`` enables detection (CSV only).
    ``sample_size`` caps the returned rows; ``total_rows`` is always the
    full count.
    """

    has_headers: bool = True
    delimiter: str = ","
    encoding: str | None = None
    sample_size: int | None = None


@dataclass(frozen=True)
class ParsedFile:
    """Decoded file: column names and data rows (header row excluded)."""

    columns: tuple[str, ...]
    rows: tuple[tuple[Any, ...], ...]
    total_rows: int
    encoding: str
    has_headers: bool


@dataclass(frozen=True)
class ColumnSuggestion:
    """Heuristic column -> field guess."""

    column_name: str
    suggested_field: str
    confidence: int

    def to_json(self) -> dict[str, Any]:
        return {
            "columnName": self.column_name,
            "suggestedField": self.suggested_field,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class FilePreview:
    """Bounded preview returned before mapping."""

    columns: tuple[str, ...]
    sample_data: tuple[tuple[Any, ...], ...]
    total_rows: int
    encoding: str
    has_headers: bool
    suggested_mapping: tuple[ColumnSuggestion, ...]

    def to_json(self) -> dict[str, Any]:
        return {
            "columns": list(self.columns),
            "sampleData": [list(r) for r in self.sample_data],
            "totalRows": self.total_rows,
            "encoding": self.encoding,
            "hasHeaders": self.has_headers,
            "suggestedMapping": [s.to_json() for s in self.suggested_mapping],
        }


@runtime_checkable
class TabularAdapter(Protocol):
    """Protocol for decoding one file format into a ParsedFile."""

    def read(self, source_path: Path, options: ReadOptions) -> ParsedFile:
        ...

    def check_structure(self, source_path: Path) -> None:
        """Raise FileFormatError when the file cannot be an importable table."""
        ...


def synthetic_column_name(index: int) -> str:
    """Name for a column without a header (0-based index -> Column1, Column2...)."""
    return f"Column{index + 1}"

"""
XLSX tabular adapter (openpyxl, read-only, cached values).

Only the first worksheet is read.  Cell values keep their spreadsheet type:
dates come back as ``date``/``datetime``, numbers as ``int``/``float``
(integral floats collapse to ``int``), booleans as ``bool``, text stripped.
Empty cells become ``""`` and fully empty rows are skipped.
"""

from __future__ import annotations

import zipfile
from datetime import datetime, time
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from coop_kernel.exceptions import FileFormatError

from coop_ingestion.adapters.base import ParsedFile, ReadOptions, synthetic_column_name

_OPEN_ERRORS = (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError)


def _cell_value(cell: Any) -> Any:
    """Typed value of an openpyxl cell ('' for empty)."""
    value = getattr(cell, "value", None)
    if value is None:
        return ""
    if getattr(cell, "is_date", False) or isinstance(value, datetime):
        if isinstance(value, datetime) and value.time() == time(0, 0):
            return value.date()
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, int):
        return value
    return str(value).strip()


def _open_workbook(source_path: Path) -> Any:
    try:
        return openpyxl.load_workbook(source_path, read_only=True, data_only=True)
    except _OPEN_ERRORS as exc:
        raise FileFormatError(source_path.name, f"cannot open workbook: {exc}") from exc


class XlsxTabularAdapter:
    """Decode the first worksheet of an .xlsx workbook into columns + rows."""

    def read(self, source_path: Path, options: ReadOptions) -> ParsedFile:
        wb = _open_workbook(source_path)
        try:
            if not wb.worksheets:
                raise FileFormatError(source_path.name, "workbook has no worksheets")
            sheet = wb.worksheets[0]
            rows: list[list[Any]] = []
            for row in sheet.iter_rows():
                values = [_cell_value(c) for c in row]
                if any(v != "" for v in values):
                    rows.append(values)
        finally:
            wb.close()

        width = 0
        for values in rows:
            for i in range(len(values) - 1, -1, -1):
                if values[i] != "":
                    width = max(width, i + 1)
                    break

        if options.has_headers and rows:
            header, data = rows[0], rows[1:]
            columns = []
            for i in range(width):
                cell = header[i] if i < len(header) else ""
                columns.append(str(cell).strip() if cell != "" else synthetic_column_name(i))
        else:
            data = rows
            columns = [synthetic_column_name(i) for i in range(width)]

        normalized = [
            tuple(values[:width]) + ("",) * (width - min(len(values), width))
            for values in data
        ]
        kept = normalized if options.sample_size is None else normalized[: options.sample_size]

        return ParsedFile(
            columns=tuple(columns),
            rows=tuple(kept),
            total_rows=len(normalized),
            encoding="utf8",
            has_headers=options.has_headers,
        )

    def check_structure(self, source_path: Path) -> None:
        wb = _open_workbook(source_path)
        try:
            if not wb.worksheets:
                raise FileFormatError(source_path.name, "workbook has no worksheets")
        finally:
            wb.close()

"""Tabular file adapters: CSV and XLSX decoding, previews, column suggestions."""

from coop_ingestion.adapters.base import (
    ColumnSuggestion,
    FilePreview,
    ParsedFile,
    ReadOptions,
    TabularAdapter,
)
from coop_ingestion.adapters.csv_adapter import CsvTabularAdapter
from coop_ingestion.adapters.reader import (
    TabularFileReader,
    preview_file,
    read_tabular_file,
    validate_file_structure,
)
from coop_ingestion.adapters.suggestions import suggest_columns
from coop_ingestion.adapters.xlsx_adapter import XlsxTabularAdapter

__all__ = [
    "ColumnSuggestion",
    "CsvTabularAdapter",
    "FilePreview",
    "ParsedFile",
    "ReadOptions",
    "TabularAdapter",
    "TabularFileReader",
    "XlsxTabularAdapter",
    "preview_file",
    "read_tabular_file",
    "suggest_columns",
    "validate_file_structure",
]

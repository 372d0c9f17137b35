"""
TabularFileReader: format dispatch, previews, and structure checks.

The declared file type selects the adapter before any I/O happens, so an
unsupported type is rejected without touching the file.
"""

from __future__ import annotations

from pathlib import Path

from coop_kernel.exceptions import UnsupportedFileTypeError
from coop_kernel.logging_config import get_logger

from coop_ingestion.adapters.base import FilePreview, ParsedFile, ReadOptions, TabularAdapter
from coop_ingestion.adapters.csv_adapter import CsvTabularAdapter
from coop_ingestion.adapters.suggestions import suggest_columns
from coop_ingestion.adapters.xlsx_adapter import XlsxTabularAdapter
from coop_ingestion.domain.types import FileType

logger = get_logger("ingestion.reader")

DEFAULT_SAMPLE_SIZE = 10


def default_adapters() -> dict[FileType, TabularAdapter]:
    return {
        FileType.CSV: CsvTabularAdapter(),
        FileType.EXCEL: XlsxTabularAdapter(),
    }


class TabularFileReader:
    """Reads uploaded files through the adapter registered for their type."""

    def __init__(self, adapters: dict[FileType, TabularAdapter] | None = None):
        self._adapters = adapters if adapters is not None else default_adapters()

    def _adapter(self, file_type: FileType | str) -> TabularAdapter:
        try:
            return self._adapters[FileType(file_type)]
        except (ValueError, KeyError):
            raise UnsupportedFileTypeError(str(getattr(file_type, "value", file_type))) from None

    def read(
        self,
        source_path: Path,
        file_type: FileType | str,
        options: ReadOptions | None = None,
    ) -> ParsedFile:
        adapter = self._adapter(file_type)
        parsed = adapter.read(Path(source_path), options or ReadOptions())
        logger.debug(
            "file_parsed",
            extra={
                "file_type": str(FileType(file_type).value),
                "columns": len(parsed.columns),
                "total_rows": parsed.total_rows,
                "encoding": parsed.encoding,
            },
        )
        return parsed

    def preview(
        self,
        source_path: Path,
        file_type: FileType | str,
        options: ReadOptions | None = None,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
    ) -> FilePreview:
        """Parse with a capped sample; the true row count is still reported."""
        base = options or ReadOptions()
        parsed = self.read(
            source_path,
            file_type,
            ReadOptions(
                has_headers=base.has_headers,
                delimiter=base.delimiter,
                encoding=base.encoding,
                sample_size=sample_size,
            ),
        )
        return FilePreview(
            columns=parsed.columns,
            sample_data=parsed.rows,
            total_rows=parsed.total_rows,
            encoding=parsed.encoding,
            has_headers=parsed.has_headers,
            suggested_mapping=suggest_columns(parsed.columns),
        )

    def validate_structure(self, source_path: Path, file_type: FileType | str) -> None:
        """Raise FileFormatError if the file is not an importable table."""
        self._adapter(file_type).check_structure(Path(source_path))


def read_tabular_file(
    source_path: Path,
    file_type: FileType | str,
    options: ReadOptions | None = None,
) -> ParsedFile:
    return TabularFileReader().read(source_path, file_type, options)


def preview_file(
    source_path: Path,
    file_type: FileType | str,
    options: ReadOptions | None = None,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> FilePreview:
    return TabularFileReader().preview(source_path, file_type, options, sample_size)


def validate_file_structure(source_path: Path, file_type: FileType | str) -> None:
    TabularFileReader().validate_structure(source_path, file_type)

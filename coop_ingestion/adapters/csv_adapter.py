"""
CSV tabular adapter.

Reads raw bytes so the encoding can be sniffed: a UTF-8 BOM wins, then a
strict UTF-8 decode, then Latin-1 (which never fails).  An explicitly
requested encoding other than UTF-8 is trusted as-is.  Lines with no
content are skipped.
"""

from __future__ import annotations

import codecs
import csv
import io
from pathlib import Path

from coop_kernel.exceptions import FileFormatError

from coop_ingestion.adapters.base import ParsedFile, ReadOptions, synthetic_column_name

_AUTO = {"", "auto"}
_UTF8_ALIASES = {"utf8", "utf-8", "utf_8", "utf-8-sig", "utf8-sig"}


def decode_bytes(raw: bytes, requested: str | None, file_name: str = "<csv>") -> tuple[str, str]:
    """Decode CSV bytes; return (text, encoding label).

    Labels use the short names clients send back (``utf8``, ``latin1``).
    """
    req = (requested or "auto").strip().lower()

    if raw.startswith(codecs.BOM_UTF8):
        return raw[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace"), "utf8"

    if req in _AUTO or req in _UTF8_ALIASES:
        try:
            return raw.decode("utf-8"), "utf8"
        except UnicodeDecodeError:
            return raw.decode("latin-1"), "latin1"

    try:
        return raw.decode(req), req
    except LookupError:
        raise FileFormatError(file_name, f"unknown encoding {requested!r}") from None
    except UnicodeDecodeError as exc:
        raise FileFormatError(file_name, f"content is not valid {requested}: {exc}") from exc


class CsvTabularAdapter:
    """Decode a delimited text file into columns + rows."""

    def read(self, source_path: Path, options: ReadOptions) -> ParsedFile:
        try:
            raw = source_path.read_bytes()
        except OSError as exc:
            raise FileFormatError(source_path.name, f"cannot read file: {exc}") from exc

        text, encoding = decode_bytes(raw, options.encoding, source_path.name)
        delimiter = options.delimiter or ","

        try:
            reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
            rows = [row for row in reader if any(cell.strip() for cell in row)]
        except csv.Error as exc:
            raise FileFormatError(source_path.name, f"malformed CSV: {exc}") from exc

        if options.has_headers and rows:
            header, data = rows[0], rows[1:]
            columns = [cell.strip() or synthetic_column_name(i) for i, cell in enumerate(header)]
        else:
            data = rows
            width = max((len(r) for r in rows), default=0)
            columns = [synthetic_column_name(i) for i in range(width)]

        width = len(columns)
        padded = [tuple(r) + ("",) * (width - len(r)) for r in data]
        if options.sample_size is not None:
            kept = padded[: options.sample_size]
        else:
            kept = padded

        return ParsedFile(
            columns=tuple(columns),
            rows=tuple(kept),
            total_rows=len(padded),
            encoding=encoding,
            has_headers=options.has_headers,
        )

    def check_structure(self, source_path: Path) -> None:
        try:
            size = source_path.stat().st_size
        except OSError as exc:
            raise FileFormatError(source_path.name, f"cannot read file: {exc}") from exc
        if size == 0:
            raise FileFormatError(source_path.name, "file is empty")

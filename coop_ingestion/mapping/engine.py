"""
Mapping engine: pure transformation from a raw row to a canonical record.

ZERO I/O.  Mapping is positional: each FieldMapping reads the cell at its
``column_index`` (pinned when the mapping is saved against the file's
column list).  Transforms run on non-empty values only; a default fills
whatever is still empty afterwards.  A value that fails numeric, boolean
or date parsing is passed through unchanged so validation can report it.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from coop_kernel.exceptions import MappingColumnError

from coop_ingestion.domain.types import FieldMapping, FieldTransform, TransformKind

TRUE_TOKENS = frozenset({"true", "1", "yes", "oui"})
FALSE_TOKENS = frozenset({"false", "0", "no", "non"})

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d/%m/%Y", "%d-%m-%Y")


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _parse_date(value: Any, fmt: str | None) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if fmt:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            return value
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for candidate in _DATE_FORMATS:
        try:
            return datetime.strptime(s, candidate).date()
        except ValueError:
            continue
    return value


def apply_transform(value: Any, transform: FieldTransform | None) -> Any:
    """Apply a field transform. Pure function."""
    if transform is None:
        return value

    result = value
    kind = transform.kind
    if kind is not None and not _is_empty(value):
        if kind == TransformKind.UPPERCASE:
            result = str(value).upper()
        elif kind == TransformKind.LOWERCASE:
            result = str(value).lower()
        elif kind == TransformKind.TRIM:
            result = str(value).strip()
        elif kind == TransformKind.NUMBER:
            if isinstance(value, bool):
                result = value
            elif isinstance(value, (int, Decimal)):
                result = Decimal(value)
            else:
                try:
                    result = Decimal(str(value).strip())
                except (InvalidOperation, ValueError):
                    result = value
        elif kind == TransformKind.BOOLEAN:
            if isinstance(value, bool):
                result = value
            else:
                token = str(value).strip().lower()
                if token in TRUE_TOKENS:
                    result = True
                elif token in FALSE_TOKENS:
                    result = False
        elif kind == TransformKind.DATE:
            result = _parse_date(value, transform.format)

    if _is_empty(result) and transform.default_value is not None:
        return transform.default_value
    return result


def resolve_column_indexes(
    mappings: Sequence[FieldMapping],
    columns: Sequence[str],
) -> tuple[FieldMapping, ...]:
    """Pin each mapping to the position of its column in ``columns``.

    Raises:
        MappingColumnError: A mapping names a column the file does not have.
    """
    positions = {}
    for i, name in enumerate(columns):
        positions.setdefault(name, i)
    resolved = []
    for m in mappings:
        if m.column_name not in positions:
            raise MappingColumnError(m.column_name, list(columns))
        resolved.append(replace(m, column_index=positions[m.column_name]))
    return tuple(resolved)


class FieldMapper:
    """Applies a FieldMapping list to raw rows."""

    def __init__(self, mappings: Sequence[FieldMapping]):
        self._mappings = tuple(mappings)

    @property
    def mappings(self) -> tuple[FieldMapping, ...]:
        return self._mappings

    def map_row(self, row: Sequence[Any]) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for position, mapping in enumerate(self._mappings):
            index = mapping.column_index if mapping.column_index is not None else position
            raw = row[index] if index < len(row) else None
            record[mapping.field_name] = apply_transform(raw, mapping.transform)
        return record

    def map_rows(self, rows: Sequence[Sequence[Any]]) -> list[dict[str, Any]]:
        return [self.map_row(r) for r in rows]

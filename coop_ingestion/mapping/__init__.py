"""Field mapping: raw row -> canonical record."""

from coop_ingestion.mapping.engine import FieldMapper, apply_transform, resolve_column_indexes

__all__ = ["FieldMapper", "apply_transform", "resolve_column_indexes"]

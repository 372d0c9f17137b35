"""Pure domain layer for ingestion: types, lifecycle, validators, ledgers."""

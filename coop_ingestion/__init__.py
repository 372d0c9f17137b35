"""
coop_ingestion -- Bulk data import for the cooperative platform.

Reads uploaded CSV/XLSX files, maps columns to canonical fields, validates
the mapped rows per import type, and applies them to the entity store
through per-type importer strategies.

Architecture:
    coop_ingestion/ is a top-level package.  It depends on coop_kernel and
    coop_config.  The apply and rollback phases run inside coop_batch jobs;
    nothing in coop_kernel imports from ingestion.
"""

"""
coop_batch -- durable job queue and worker for the import apply phase.

Import apply and rollback run as rows in ``import_jobs``, claimed by an
in-process worker thread with at-most-N attempts and exponential backoff.

Architecture:
    coop_batch/ is a top-level package.  It depends on coop_ingestion for
    the task implementations; nothing in coop_ingestion imports from it.

Invariants:
    - Job idempotency: UNIQUE idempotency_key per task and session.
    - Clock injection: retry and claim times come from the injected Clock.
    - Each job runs in its own transaction; claims commit before work starts.
    - Graceful shutdown: the worker finishes its current job before exiting.
"""

"""
coop_batch.tasks -- Task protocol, registry, and the import task implementations.
"""

from coop_batch.tasks.base import JobTask, TaskRegistry
from coop_batch.tasks.import_tasks import ApplyImportTask, RollbackImportTask

__all__ = [
    "ApplyImportTask",
    "JobTask",
    "RollbackImportTask",
    "TaskRegistry",
]

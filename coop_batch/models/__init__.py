"""
coop_batch.models -- ORM model for the job queue.

Architecture: coop_batch/models. Imports from coop_kernel.db.base only.
"""

from coop_batch.models.job import ImportJobModel

__all__ = ["ImportJobModel"]

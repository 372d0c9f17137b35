"""coop_batch.services -- job queue persistence and the polling worker."""

from coop_batch.services.queue import JobQueue
from coop_batch.services.worker import ImportWorker

__all__ = ["ImportWorker", "JobQueue"]

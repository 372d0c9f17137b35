"""
JobTask protocol and TaskRegistry.

Contract:
    The worker looks up the claimed job's ``task_type`` in a TaskRegistry
    and calls ``run(job, session_factory)``.  Returning means success; any
    exception is a failed attempt that the queue reschedules or buries.

Architecture:
    coop_batch/tasks.  Only imports from coop_batch.domain and the kernel
    exceptions.

Invariants enforced:
    - One task per ``task_type`` string.
    - Tasks open their own units of work from ``session_factory``, so a
      failure can be written to the import session after the apply
      transaction rolled back.  The job row itself belongs to the worker.
"""

from __future__ import annotations

from typing import Callable, Iterator, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from coop_kernel.exceptions import TaskNotRegisteredError

from coop_batch.domain.types import ImportJob


@runtime_checkable
class JobTask(Protocol):
    task_type: str
    description: str

    def run(self, job: ImportJob, session_factory: Callable[[], Session]) -> None: ...


class TaskRegistry:
    """task_type -> JobTask."""

    def __init__(self, tasks: tuple[JobTask, ...] = ()) -> None:
        self._by_type: dict[str, JobTask] = {}
        for task in tasks:
            self.register(task)

    def register(self, task: JobTask) -> None:
        """Raises ValueError when ``task.task_type`` is taken."""
        existing = self._by_type.setdefault(task.task_type, task)
        if existing is not task:
            raise ValueError(f"Task type '{task.task_type}' is already registered")

    def get(self, task_type: str) -> JobTask:
        task = self._by_type.get(task_type)
        if task is None:
            raise TaskNotRegisteredError(task_type, self.list_tasks())
        return task

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_type))

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._by_type

    def __iter__(self) -> Iterator[JobTask]:
        return iter(self._by_type.values())

    def __len__(self) -> int:
        return len(self._by_type)

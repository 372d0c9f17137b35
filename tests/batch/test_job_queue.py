"""
JobQueue: idempotent submit, claim order, retry backoff, DEAD after
max_attempts, and reclaiming jobs whose worker stopped heartbeating.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from coop_batch.domain.types import JobStatus, compute_backoff_ms
from coop_batch.services.queue import JobQueue
from coop_batch.tasks.base import TaskRegistry
from coop_config.schema import QueueSettings
from coop_kernel.domain.clock import ensure_utc
from coop_kernel.exceptions import JobIdempotencyError, JobNotFoundError, TaskNotRegisteredError


@pytest.fixture
def settings():
    return QueueSettings(max_attempts=3, backoff_base_ms=1000, visibility_timeout_seconds=60)


@pytest.fixture
def queue(session, deterministic_clock, settings):
    return JobQueue(session, deterministic_clock, settings)


def _enqueue(queue, actor_id, key="import.apply:s1", task_type="import.apply"):
    return queue.enqueue(task_type, {"session_id": "s1"}, key, actor_id)


class TestBackoff:
    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(1, 1000), (2, 2000), (3, 4000), (0, 1000)],
    )
    def test_doubles_per_attempt(self, attempt, expected):
        assert compute_backoff_ms(1000, attempt) == expected


class TestEnqueue:
    def test_creates_pending_job_due_now(self, queue, test_actor_id, deterministic_clock):
        job = _enqueue(queue, test_actor_id)

        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert ensure_utc(job.next_run_at) == deterministic_clock.now()
        assert queue.find_by_key("import.apply:s1").job_id == job.job_id

    def test_duplicate_key_rejected(self, queue, test_actor_id):
        first = _enqueue(queue, test_actor_id)
        with pytest.raises(JobIdempotencyError) as exc_info:
            _enqueue(queue, test_actor_id)
        assert exc_info.value.existing_job_id == str(first.job_id)

    def test_unknown_task_rejected_when_registry_given(self, session, deterministic_clock, test_actor_id):
        queue = JobQueue(session, deterministic_clock, task_registry=TaskRegistry())
        with pytest.raises(TaskNotRegisteredError):
            _enqueue(queue, test_actor_id)

    def test_unknown_job(self, queue):
        with pytest.raises(JobNotFoundError):
            queue.get_job(uuid4())


class TestClaimAndOutcome:
    def test_claims_oldest_due_job_once(self, queue, test_actor_id, deterministic_clock):
        first = _enqueue(queue, test_actor_id, key="a")
        deterministic_clock.advance(1)
        _enqueue(queue, test_actor_id, key="b")

        claimed = queue.claim_next()
        assert claimed.job_id == first.job_id
        assert claimed.status == JobStatus.RUNNING
        assert claimed.attempts == 1
        assert queue.claim_next().idempotency_key == "b"
        assert queue.claim_next() is None

    def test_complete(self, queue, test_actor_id):
        job = _enqueue(queue, test_actor_id)
        queue.claim_next()
        done = queue.complete(job.job_id)
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.is_terminal
        assert queue.claim_next() is None

    def test_retry_waits_for_backoff_then_goes_dead(self, queue, test_actor_id, deterministic_clock):
        job = _enqueue(queue, test_actor_id)

        queue.claim_next()
        failed = queue.fail(job.job_id, "boom")
        assert failed.status == JobStatus.FAILED
        assert ensure_utc(failed.next_run_at) == deterministic_clock.now() + timedelta(seconds=1)
        assert queue.claim_next() is None

        deterministic_clock.advance(1)
        assert queue.claim_next().attempts == 2
        queue.fail(job.job_id, "boom again")

        deterministic_clock.advance(1)
        assert queue.claim_next() is None
        deterministic_clock.advance(1)
        assert queue.claim_next().attempts == 3

        dead = queue.fail(job.job_id, "x" * 5000, stack="Traceback ...")
        assert dead.status == JobStatus.DEAD
        assert len(dead.last_error) == 4000
        assert dead.last_traceback == "Traceback ..."

        deterministic_clock.advance(3600)
        assert queue.claim_next() is None

    def test_stale_running_job_is_reclaimed(self, queue, test_actor_id, deterministic_clock):
        job = _enqueue(queue, test_actor_id)
        queue.claim_next()

        deterministic_clock.advance(30)
        queue.heartbeat(job.job_id, progress=40)
        deterministic_clock.advance(45)
        assert queue.claim_next() is None

        deterministic_clock.advance(30)
        reclaimed = queue.claim_next()
        assert reclaimed.job_id == job.job_id
        assert reclaimed.attempts == 2
        assert reclaimed.progress == 0

    def test_heartbeat_progress_never_goes_backwards(self, queue, test_actor_id):
        job = _enqueue(queue, test_actor_id)
        queue.claim_next()
        queue.heartbeat(job.job_id, progress=60)
        assert queue.heartbeat(job.job_id, progress=20).progress == 60
        assert queue.heartbeat(job.job_id, progress=250).progress == 100

    def test_list_jobs_by_status(self, queue, test_actor_id, deterministic_clock):
        _enqueue(queue, test_actor_id, key="a")
        deterministic_clock.advance(1)
        _enqueue(queue, test_actor_id, key="b")
        queue.claim_next()
        assert [j.idempotency_key for j in queue.list_jobs(JobStatus.PENDING)] == ["b"]
        assert len(queue.list_jobs()) == 2

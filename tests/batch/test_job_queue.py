"""Tests for DatabaseJobQueue (the kernel's JobDispatcher backed by queued_jobs)."""

from acredita_batch.domain.types import JobStatus
from acredita_batch.services.job_queue import DatabaseJobQueue
from acredita_kernel.domain.collaborators import JobDispatcher


def test_schedule_inserts_queued_row(session, clock):
    queue = DatabaseJobQueue(session, clock=clock, max_attempts=5)
    queue.schedule("credential.generate", {"credential_id": "abc"})

    [job] = queue.list_jobs()
    assert job.job_type == "credential.generate"
    assert job.status == JobStatus.QUEUED
    assert job.payload == {"credential_id": "abc"}
    assert job.attempts == 0
    assert job.max_attempts == 5
    assert job.available_at == clock.now()
    assert queue.get(job.job_id) == job


def test_payload_is_copied(session, clock):
    queue = DatabaseJobQueue(session, clock=clock)
    payload = {"batch_id": "b1"}
    queue.schedule("print_batch.render", payload)
    payload["batch_id"] = "changed"

    assert queue.list_jobs()[0].payload == {"batch_id": "b1"}


def test_list_filters(session, clock):
    queue = DatabaseJobQueue(session, clock=clock)
    queue.schedule("credential.generate", {"credential_id": "1"})
    clock.advance(1)
    queue.schedule("print_batch.render", {"batch_id": "2"})

    assert [j.job_type for j in queue.list_jobs()] == ["credential.generate", "print_batch.render"]
    assert len(queue.list_jobs(job_type="print_batch.render")) == 1
    assert queue.list_jobs(status=JobStatus.FAILED) == []


def test_scheduled_job_disappears_with_rollback(session_factory, clock):
    session = session_factory()
    DatabaseJobQueue(session, clock=clock).schedule("credential.generate", {"credential_id": "1"})
    session.rollback()

    assert DatabaseJobQueue(session, clock=clock).list_jobs() == []
    session.close()


def test_implements_dispatcher_protocol(session):
    assert isinstance(DatabaseJobQueue(session), JobDispatcher)

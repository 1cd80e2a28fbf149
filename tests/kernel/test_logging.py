"""Tests for acredita_kernel.logging_config: context fields and exception payloads."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from acredita_kernel.domain.lifecycle import PrintBatchStatus
from acredita_kernel.domain.values import PrintFilters
from acredita_kernel.exceptions import RetryLimitExceededError, UnauthorizedActionError
from acredita_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def stream():
    """Fresh configuration writing to a buffer; the suite configuration is restored after."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    reset_logging()
    configure_logging(handler=handler, level=logging.DEBUG)
    yield buffer
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _records(buffer: StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


class TestContextFields:
    def test_every_field_reaches_the_payload(self, stream):
        LogContext.set(
            correlation_id="unit-1",
            actor_id="actor-1",
            request_id="req-1",
            batch_id="batch-1",
            job_id="job-1",
            run_id="run-1",
        )
        get_logger("batch.bulk").info("bulk_chunk_approved", extra={"approved": 100})

        [record] = _records(stream)
        assert {k: record[k] for k in LogContext._FIELD_NAMES} == {
            "correlation_id": "unit-1",
            "actor_id": "actor-1",
            "request_id": "req-1",
            "batch_id": "batch-1",
            "job_id": "job-1",
            "run_id": "run-1",
        }
        assert record["approved"] == 100
        assert record["logger"] == "acredita.batch.bulk"

    def test_nested_bind_restores_outer_run(self, stream):
        logger = get_logger("batch.bulk")
        with LogContext.bind(run_id="run-1", actor_id="actor-1"):
            with LogContext.bind(correlation_id="unit-a"):
                logger.info("bulk_unit_started")
            logger.info("bulk_run_finished")
        logger.info("outside")

        inner, outer, outside = _records(stream)
        assert inner["correlation_id"] == "unit-a"
        assert inner["run_id"] == "run-1"
        assert "correlation_id" not in outer
        assert outer["actor_id"] == "actor-1"
        assert "run_id" not in outside

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(job_id="j", provider_id="ignored"):
            assert LogContext.get_all() == {"job_id": "j"}

    def test_render_logs_carry_batch_id(
        self, print_batch_service, world, add_employee, make_ready_credential,
        test_actor_id, captured_logs,
    ):
        make_ready_credential(add_employee(world.beta, "Ana", "Brown"))
        queued = print_batch_service.queue_batch(PrintFilters(event_id=world.event.id), test_actor_id)

        assert print_batch_service.render(queued.id).status == PrintBatchStatus.READY

        render_logs = [
            r for r in captured_logs()
            if r["message"] in ("print_batch_render_started", "print_batch_rendered")
        ]
        assert len(render_logs) == 2
        assert {r["batch_id"] for r in render_logs} == {str(queued.id)}
        assert "batch_id" not in LogContext.get_all()


class TestExceptionPayload:
    def test_retry_limit_attributes(self, stream):
        try:
            raise RetryLimitExceededError("cred-1", 3, 3)
        except RetryLimitExceededError:
            get_logger("services.credential").error("regenerate_refused", exc_info=True)

        [record] = _records(stream)
        assert record["exc_type"] == "RetryLimitExceededError"
        assert record["exc_code"] == "RETRY_LIMIT_EXCEEDED"
        assert record["exc_credential_id"] == "cred-1"
        assert record["exc_retry_count"] == 3
        assert record["exc_max_retries"] == 3
        assert "traceback" in record

    def test_unauthorized_action_attributes(self, stream):
        actor = uuid4()
        with LogContext.bind(actor_id=str(actor)):
            try:
                raise UnauthorizedActionError(str(actor), "print_batch.cleanup", "print_batches")
            except UnauthorizedActionError:
                get_logger("services.print_batch").warning("denied", exc_info=True)

        [record] = _records(stream)
        assert record["actor_id"] == str(actor)
        assert record["exc_code"] == "UNAUTHORIZED_ACTION"
        assert record["exc_action"] == "print_batch.cleanup"
        assert record["exc_entity_ref"] == "print_batches"

    def test_uuid_and_status_values_serialized(self, stream):
        credential_id = uuid4()
        get_logger("services.credential").info(
            "credential_generated",
            extra={"credential_id": credential_id, "status": PrintBatchStatus.READY},
        )

        [record] = _records(stream)
        assert record["credential_id"] == str(credential_id)
        assert record["status"] == "ready"


def test_configure_is_idempotent(stream):
    configure_logging(handler=logging.StreamHandler(StringIO()))
    root = logging.getLogger("acredita")
    assert len(root.handlers) == 1
    assert root.propagate is False
    assert isinstance(root.handlers[0].formatter, StructuredFormatter)

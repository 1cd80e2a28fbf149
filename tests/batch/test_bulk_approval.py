"""
Tests for BulkApprovalRunner.

Seed data is committed through the per-test session; the runner and the
job worker then use their own sessions on the same in-memory database.
``FakePacer`` records every pause and can drive the worker while the
runner waits.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from acredita_batch.domain.types import BulkRunOptions
from acredita_batch.models import QueuedJobModel
from acredita_batch.orchestrator import AccreditationOrchestrator
from acredita_kernel.domain.lifecycle import RequestStatus
from acredita_kernel.models import Credential
from acredita_kernel.selectors.request_selector import RequestSelector

from tests.conftest import FakeCredentialRenderer, FakePacer


@pytest.fixture
def orchestrator(session, clock, blob_store, test_actor_id):
    return AccreditationOrchestrator.from_session(
        session,
        clock=clock,
        blob_store=blob_store,
        credential_renderer=FakeCredentialRenderer(),
        actor_id=test_actor_id,
    )


@pytest.fixture
def worker(orchestrator, session_factory):
    return orchestrator.create_worker(session_factory)


@pytest.fixture
def working_pacer(worker):
    """Pacer that lets the job worker drain the queue on every pause."""
    return FakePacer(on_wait=lambda seconds: worker.run_until_idle())


@pytest.fixture
def drafts(add_employee, make_request, clock):
    """Factory: ``drafts(provider, n)`` creates n draft requests, oldest first."""

    def _make(provider, count, **request_kwargs):
        created = []
        for n in range(count):
            employee = add_employee(provider, f"Worker{n:03d}", provider.name.split()[0])
            created.append(make_request(employee, **request_kwargs))
            clock.advance(1)
        return created

    return _make


def _options(world, **kwargs):
    values = {
        "area_id": world.north.id,
        "batch_size": 100,
        "wait_time_seconds": 10.0,
        "poll_interval_seconds": 5.0,
        "max_wait_seconds": 300.0,
    }
    values.update(kwargs)
    return BulkRunOptions(**values)


def _statuses(session_factory, provider):
    """Status counts read through a separate session; the per-test session
    must not expire ``world`` while the runner shares its connection."""
    provider_id = provider.id
    reader = session_factory()
    try:
        return RequestSelector(reader).count_by_status_for_provider(provider_id)
    finally:
        reader.close()


def _job_count(session_factory):
    reader = session_factory()
    try:
        return reader.execute(select(func.count(QueuedJobModel.id))).scalar_one()
    finally:
        reader.close()


def _unit(summary, provider):
    [unit] = [u for u in summary.units if u.unit_id == provider.id]
    return unit


class TestFullRun:
    def test_chunks_pacing_and_single_batch(
        self, session, session_factory, orchestrator, working_pacer, world, drafts,
    ):
        drafts(world.beta, 250)
        session.commit()

        runner = orchestrator.create_bulk_runner(session_factory, pacer=working_pacer)
        summary = runner.run(_options(world))

        assert [u.unit_name for u in summary.units] == ["Alpha Catering", "Beta Security"]
        assert _unit(summary, world.alpha).skipped

        beta = _unit(summary, world.beta)
        assert beta.total == 250
        assert beta.submitted == 250
        assert beta.approved == 250
        assert beta.chunks == (100, 100, 50)
        assert beta.credentials_ready == 250
        assert [b.credential_count for b in beta.print_batches] == [250]
        assert beta.print_batches[0].event_id == world.event.id

        assert working_pacer.waits == [10.0, 10.0, 5.0]
        assert summary.exit_code == 0
        assert _statuses(session_factory, world.beta) == {RequestStatus.APPROVED: 250}

    def test_dry_run_reports_without_mutating(
        self, session, session_factory, orchestrator, worker, world, drafts,
    ):
        drafts(world.beta, 3)
        session.commit()

        dry_options = _options(world, batch_size=2, dry_run=True)
        real_options = _options(
            world, batch_size=2, wait_time_seconds=1.0, poll_interval_seconds=1.0,
        )

        dry_pacer = FakePacer()
        dry = orchestrator.create_bulk_runner(session_factory, pacer=dry_pacer).run(dry_options)

        assert dry_pacer.waits == []
        assert _statuses(session_factory, world.beta) == {RequestStatus.DRAFT: 3}
        assert _job_count(session_factory) == 0

        real_pacer = FakePacer(on_wait=lambda seconds: worker.run_until_idle())
        real = orchestrator.create_bulk_runner(session_factory, pacer=real_pacer).run(real_options)

        for provider in (world.alpha, world.beta):
            dry_unit, real_unit = _unit(dry, provider), _unit(real, provider)
            assert (dry_unit.total, dry_unit.submitted, dry_unit.approved, dry_unit.chunks) == (
                real_unit.total, real_unit.submitted, real_unit.approved, real_unit.chunks,
            )
        assert _unit(dry, world.beta).chunks == (2, 1)
        assert _unit(dry, world.alpha).submitted == 0
        assert dry.dry_run is True
        assert real.total_approved == 3


class TestUnitSelection:
    def test_resumes_unit_with_ready_unprinted_credentials(
        self, session, session_factory, orchestrator, world, add_employee, make_ready_credential,
    ):
        credential = make_ready_credential(add_employee(world.beta, "Ana", "Brown"))
        session.commit()

        pacer = FakePacer()
        summary = orchestrator.create_bulk_runner(session_factory, pacer=pacer).run(_options(world))

        beta = _unit(summary, world.beta)
        assert beta.resumed is True
        assert beta.total == 0
        assert beta.approved == 0
        assert [b.credential_count for b in beta.print_batches] == [1]
        assert pacer.waits == []

        reader = session_factory()
        try:
            stamped = reader.get(Credential, credential.id)
            assert stamped.print_batch_id == beta.print_batches[0].batch_id
        finally:
            reader.close()

    def test_skipped_units_do_not_pause(self, session, session_factory, orchestrator, world, drafts):
        drafts(world.beta, 1)
        session.commit()

        pacer = FakePacer()
        summary = orchestrator.create_bulk_runner(session_factory, pacer=pacer).run(
            _options(world, wait_credentials=False),
        )

        assert _unit(summary, world.alpha).skipped
        assert _unit(summary, world.beta).approved == 1
        assert summary.units_skipped == 1
        assert pacer.waits == []

    def test_explicit_provider_list(self, session, session_factory, orchestrator, world, drafts):
        drafts(world.beta, 1)
        session.commit()

        summary = orchestrator.create_bulk_runner(session_factory, pacer=FakePacer()).run(
            _options(world, provider_ids=(world.beta.id, uuid4()), wait_credentials=False),
        )

        assert [u.unit_id for u in summary.units] == [world.beta.id]


class TestErrors:
    @pytest.fixture
    def broken_alpha(self, session, world, drafts):
        """Alpha holds a draft without zones (cannot be submitted); Beta a valid draft."""
        [bad] = drafts(world.alpha, 1, zone_ids=())
        drafts(world.beta, 1)
        session.commit()
        return bad

    def test_first_error_stops_the_run(
        self, session, session_factory, orchestrator, world, broken_alpha,
    ):
        summary = orchestrator.create_bulk_runner(session_factory, pacer=FakePacer()).run(
            _options(world, wait_credentials=False),
        )

        assert [u.unit_id for u in summary.units] == [world.alpha.id]
        [error] = summary.errors
        assert error.stage == "submit"
        assert error.request_id == broken_alpha.id
        assert summary.aborted is True
        assert summary.exit_code == 1
        assert _statuses(session_factory, world.beta) == {RequestStatus.DRAFT: 1}

    def test_skip_errors_continues(
        self, session, session_factory, orchestrator, world, broken_alpha,
    ):
        pacer = FakePacer()
        summary = orchestrator.create_bulk_runner(session_factory, pacer=pacer).run(
            _options(world, wait_credentials=False, skip_errors=True, wait_time_seconds=3.0),
        )

        assert len(summary.errors) == 1
        assert _unit(summary, world.beta).approved == 1
        assert pacer.waits == [3.0]
        assert summary.exit_code == 0
        assert _statuses(session_factory, world.alpha) == {RequestStatus.DRAFT: 1}

    def test_operator_abort_between_chunks(
        self, session, session_factory, orchestrator, world, drafts,
    ):
        drafts(world.beta, 2)
        session.commit()

        pacer = FakePacer(abort_on_wait=1)
        summary = orchestrator.create_bulk_runner(session_factory, pacer=pacer).run(
            _options(world, batch_size=1),
        )

        assert _unit(summary, world.beta).approved == 1
        assert summary.aborted is True
        assert summary.exit_code == 1
        assert _statuses(session_factory, world.beta) == {
            RequestStatus.APPROVED: 1,
            RequestStatus.SUBMITTED: 1,
        }

    def test_credential_wait_times_out_as_warning(
        self, session, session_factory, orchestrator, world, drafts, captured_logs,
    ):
        drafts(world.beta, 1)
        session.commit()

        pacer = FakePacer()
        summary = orchestrator.create_bulk_runner(session_factory, pacer=pacer).run(
            _options(world, max_wait_seconds=10.0, poll_interval_seconds=5.0),
        )

        beta = _unit(summary, world.beta)
        assert beta.wait_timed_out is True
        assert beta.credentials_ready == 0
        assert beta.credentials_expected == 1
        assert beta.print_batches == ()
        assert pacer.waits == [5.0, 5.0]
        assert summary.exit_code == 0
        assert any(r["message"] == "bulk_credentials_wait_timeout" for r in captured_logs())

"""
Tests for CredentialService.

Generation success and failure, retry accounting, regenerate with the retry
cap, QR verification outcomes, event expiry, the status report and the
retention cleanup.
"""

import re
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from acredita_kernel.domain.collaborators import RoleGate
from acredita_kernel.domain.lifecycle import CredentialStatus, RequestStatus
from acredita_kernel.exceptions import (
    CredentialNotFoundError,
    InvalidStateError,
    RetryLimitExceededError,
    UnauthorizedActionError,
)
from acredita_kernel.models import Credential, Template
from acredita_kernel.services.credential_service import GENERATE_JOB, CredentialService

from tests.conftest import FakeCredentialRenderer

QR_PATTERN = re.compile(r"^CRD_[A-Z0-9]{12}_[0-9A-F]{8}$")


@pytest.fixture
def employee(world, add_employee):
    return add_employee(world.beta, "Ana", "Brown", function="Guard")


@pytest.fixture
def pending(make_request, employee):
    """Credential of a freshly approved request (not generated yet)."""
    return make_request(employee, until="approved").credential


def _failing_service(session, blob_store, dispatcher, clock, message="renderer exploded", **kwargs):
    return CredentialService(
        session,
        blob_store=blob_store,
        dispatcher=dispatcher,
        renderer=FakeCredentialRenderer(fail_with=RuntimeError(message)),
        clock=clock,
        **kwargs,
    )


class TestSnapshots:
    def test_snapshots_captured_on_approval(self, pending, world):
        assert pending.employee_snapshot["first_name"] == "Ana"
        assert pending.employee_snapshot["provider_name"] == "Beta Security"
        assert pending.employee_snapshot["area_name"] == "North Gate"
        assert pending.event_snapshot["end_date"] == "2026-03-05"
        assert [z["code"] for z in pending.zones_snapshot] == ["A", "B"]

    def test_highest_default_template_version(self, pending):
        assert pending.template_snapshot["version"] == 2
        assert pending.template_snapshot["layout_meta"] == {"header_color": "#123456"}

    def test_expiry_from_event_end(self, pending):
        assert pending.expires_at == datetime(2026, 3, 5, 23, 59, 59, tzinfo=timezone.utc)

    def test_snapshot_is_frozen_until_regenerate(
        self, session, credential_service, pending, employee, test_actor_id,
    ):
        employee.last_name = "Brown-Smith"
        session.flush()
        assert pending.employee_snapshot["last_name"] == "Brown"

        credential_service.regenerate_credential(pending.id, test_actor_id)
        assert pending.employee_snapshot["last_name"] == "Brown-Smith"


class TestGenerate:
    def test_success(self, credential_service, pending, blob_store, renderer, clock):
        dto = credential_service.generate(pending.id)

        assert dto.status == CredentialStatus.READY
        assert dto.image_path == f"credentials/images/{pending.uuid}.png"
        assert dto.pdf_path == f"credentials/pdf/{pending.uuid}.pdf"
        assert blob_store.exists(dto.image_path)
        assert blob_store.exists(dto.pdf_path)
        assert QR_PATTERN.match(dto.qr_code)
        assert dto.qr_code.endswith(str(pending.uuid).split("-")[0].upper())
        assert dto.generated_at == clock.now()
        assert dto.error_message is None
        assert renderer.calls[0]["qr_payload"] == dto.qr_code

    def test_qr_payload_uses_verify_url(
        self, session, blob_store, dispatcher, renderer, clock, pending,
    ):
        service = CredentialService(
            session,
            blob_store=blob_store,
            dispatcher=dispatcher,
            renderer=renderer,
            clock=clock,
            verify_base_url="https://verify.example.org/",
        )
        dto = service.generate(pending.id)
        assert renderer.calls[-1]["qr_payload"] == f"https://verify.example.org/{dto.qr_code}"

    def test_failure_is_recorded_not_raised(
        self, session, blob_store, dispatcher, clock, pending, captured_logs,
    ):
        service = _failing_service(session, blob_store, dispatcher, clock)
        dto = service.generate(pending.id)

        assert dto.status == CredentialStatus.FAILED
        assert dto.retry_count == 1
        assert dto.error_message == "renderer exploded"
        assert dto.image_path is None
        assert not blob_store.exists(f"credentials/images/{pending.uuid}.png")
        failures = [r for r in captured_logs() if r["message"] == "credential_generation_failed"]
        assert failures and failures[0]["level"] == "ERROR"

    def test_failure_never_reschedules(self, session, blob_store, dispatcher, clock, pending):
        before = len(dispatcher.jobs)
        _failing_service(session, blob_store, dispatcher, clock).generate(pending.id)
        assert len(dispatcher.jobs) == before

    def test_error_message_truncated(self, session, blob_store, dispatcher, clock, pending):
        service = _failing_service(
            session, blob_store, dispatcher, clock,
            message="x" * 50, error_message_max_length=10,
        )
        assert service.generate(pending.id).error_message == "x" * 10

    def test_missing_renderer_fails(self, session, blob_store, dispatcher, clock, pending):
        service = CredentialService(session, blob_store=blob_store, dispatcher=dispatcher, clock=clock)
        dto = service.generate(pending.id)
        assert dto.status == CredentialStatus.FAILED
        assert "no credential renderer" in dto.error_message

    def test_ready_is_not_regenerated(self, credential_service, pending, renderer, clock):
        first = credential_service.generate(pending.id)
        clock.advance(60)
        second = credential_service.generate(pending.id)
        assert second.generated_at == first.generated_at
        assert len(renderer.calls) == 1

    def test_interrupted_generation_resumes(
        self, session, credential_service, pending, captured_logs,
    ):
        pending.status = CredentialStatus.GENERATING.value
        session.flush()

        assert credential_service.generate(pending.id).status == CredentialStatus.READY
        assert any(r["message"] == "credential_generation_resumed" for r in captured_logs())

    def test_unknown_credential(self, credential_service):
        with pytest.raises(CredentialNotFoundError):
            credential_service.generate(uuid4())


class TestRegenerate:
    def test_failed_back_to_pending_keeps_retry_count(
        self, session, blob_store, dispatcher, clock, credential_service, pending, test_actor_id,
    ):
        _failing_service(session, blob_store, dispatcher, clock).generate(pending.id)
        scheduled_before = len(dispatcher.of_type(GENERATE_JOB))

        dto = credential_service.regenerate_credential(pending.id, test_actor_id)

        assert dto.status == CredentialStatus.PENDING
        assert dto.retry_count == 1
        assert dto.error_message is None
        assert len(dispatcher.of_type(GENERATE_JOB)) == scheduled_before + 1

    def test_retry_cap(
        self, session, blob_store, dispatcher, clock, credential_service, pending, test_actor_id,
    ):
        failing = _failing_service(session, blob_store, dispatcher, clock)
        for _ in range(3):
            failing.generate(pending.id)
            if pending.retry_count < 3:
                credential_service.regenerate_credential(pending.id, test_actor_id)
        assert pending.retry_count == 3

        with pytest.raises(RetryLimitExceededError) as exc_info:
            credential_service.regenerate_credential(pending.id, test_actor_id)
        assert exc_info.value.code == "RETRY_LIMIT_EXCEEDED"

        forced = credential_service.regenerate_credential(pending.id, test_actor_id, force=True)
        assert forced.status == CredentialStatus.PENDING
        assert forced.retry_count == 3

    def test_ready_credential_artifacts_purged(
        self, credential_service, pending, blob_store, test_actor_id,
    ):
        ready = credential_service.generate(pending.id)
        dto = credential_service.regenerate_credential(pending.id, test_actor_id)

        assert dto.status == CredentialStatus.PENDING
        assert dto.qr_code is None
        assert dto.image_path is None
        assert not blob_store.exists(ready.image_path)
        assert not blob_store.exists(ready.pdf_path)

    def test_requires_approved_request(
        self, workflow, credential_service, pending, test_actor_id,
    ):
        workflow.suspend(pending.request_id, test_actor_id, "lost badge")
        with pytest.raises(InvalidStateError):
            credential_service.regenerate_credential(pending.id, test_actor_id)

    def test_by_request_uuid(self, credential_service, pending, test_actor_id):
        dto = credential_service.regenerate_for_request(pending.request.uuid, test_actor_id)
        assert dto.id == pending.id

    def test_by_unknown_request(self, credential_service, test_actor_id):
        with pytest.raises(CredentialNotFoundError):
            credential_service.regenerate_for_request(uuid4(), test_actor_id)

    def test_creates_missing_credential_for_approved_request(
        self, session, credential_service, pending, dispatcher, test_actor_id,
    ):
        request = pending.request
        request.credential = None
        session.flush()

        dto = credential_service.regenerate_for_request(request.id, test_actor_id)
        assert dto.status == CredentialStatus.PENDING
        assert dto.id != pending.id
        assert dispatcher.of_type(GENERATE_JOB)[-1] == {"credential_id": str(dto.id)}

    def test_retry_failed_skips_capped(
        self, session, blob_store, dispatcher, clock, credential_service,
        make_request, world, add_employee, test_actor_id,
    ):
        failing = _failing_service(session, blob_store, dispatcher, clock)
        capped = make_request(add_employee(world.beta, "Carl", "Brown"), until="approved").credential
        fresh = make_request(add_employee(world.beta, "Dina", "Cole"), until="approved").credential
        failing.generate(capped.id)
        failing.generate(fresh.id)
        fresh.retry_count = 0
        capped.retry_count = 3
        session.flush()

        outcome = credential_service.retry_failed(test_actor_id)

        assert outcome == {"scheduled": 1, "skipped": 1}
        assert fresh.status == CredentialStatus.PENDING.value
        assert capped.status == CredentialStatus.FAILED.value


class TestVerify:
    def test_valid(self, credential_service, pending):
        dto = credential_service.generate(pending.id)
        result = credential_service.verify_credential_by_qr(dto.qr_code)

        assert result.valid is True
        assert result.reason is None
        assert result.message == "Credential valid"
        assert result.employee["name"] == "Ana Brown"
        assert result.employee["provider"] == "Beta Security"
        assert [z["code"] for z in result.zones] == ["A", "B"]
        assert result.issued_at == dto.generated_at
        assert result.request_status == RequestStatus.APPROVED

    @pytest.mark.parametrize("code", ["", "   ", None, "CRD_UNKNOWN_00000000"])
    def test_not_found(self, credential_service, code):
        result = credential_service.verify_credential_by_qr(code)
        assert result.valid is False
        assert result.reason == "not_found"

    def test_suspended(self, workflow, credential_service, pending, test_actor_id):
        dto = credential_service.generate(pending.id)
        workflow.suspend(pending.request_id, test_actor_id, "misconduct")
        assert credential_service.verify_credential_by_qr(dto.qr_code).reason == "suspended"

    def test_expired(self, credential_service, pending, clock):
        dto = credential_service.generate(pending.id)
        clock.set_time(datetime(2026, 3, 6, 8, 0, tzinfo=timezone.utc))
        result = credential_service.verify_credential_by_qr(dto.qr_code)
        assert result.valid is False
        assert result.reason == "expired"

    def test_revoked_for_other_reason_is_inactive(
        self, credential_service, pending, test_actor_id,
    ):
        dto = credential_service.generate(pending.id)
        credential_service.revoke(pending, reason="lost", actor_id=test_actor_id)
        assert credential_service.verify_credential_by_qr(dto.qr_code).reason == "inactive"

    def test_lookup_error_is_a_result(self, credential_service, monkeypatch):
        def _boom(code):
            raise RuntimeError("database gone")

        monkeypatch.setattr(credential_service._selector, "find_by_qr_code", _boom)
        result = credential_service.verify_credential_by_qr("CRD_X")
        assert result.valid is False
        assert result.reason == "error"


class TestOperatorActions:
    def test_expire_event(
        self, credential_service, make_ready_credential, world, add_employee, clock, test_actor_id,
    ):
        first = make_ready_credential(add_employee(world.beta, "Ana", "Brown"))
        second = make_ready_credential(add_employee(world.gamma, "Bob", "Stone"))

        assert credential_service.expire_event_credentials(world.event.id, test_actor_id) == 2
        for credential in (first, second):
            assert credential.is_active is False
            assert credential.expires_at == clock.now()
        assert credential_service.expire_event_credentials(world.event.id, test_actor_id) == 0

    def test_status_report(
        self, session, blob_store, dispatcher, clock, credential_service,
        make_request, make_ready_credential, world, add_employee,
    ):
        make_ready_credential(add_employee(world.beta, "Ana", "Brown"))
        failed = make_request(add_employee(world.beta, "Carl", "Brown"), until="approved").credential
        _failing_service(session, blob_store, dispatcher, clock).generate(failed.id)
        failed.retry_count = 2
        session.flush()

        report = credential_service.get_status_report()

        assert report.count(CredentialStatus.READY) == 1
        assert report.count(CredentialStatus.FAILED) == 1
        assert report.total == 2
        assert [f.credential_id for f in report.repeatedly_failed] == [failed.id]
        assert report.repeatedly_failed[0].request_uuid == failed.request.uuid

    def test_cleanup_orphans_and_stale_failures(
        self, session, blob_store, dispatcher, clock, credential_service,
        make_request, world, add_employee, test_actor_id,
    ):
        failing = _failing_service(session, blob_store, dispatcher, clock)
        stale = make_request(add_employee(world.beta, "Old", "Failure"), until="approved").credential
        failing.generate(stale.id)
        stale_request = stale.request

        orphan = Credential(
            request_id=None,
            status=CredentialStatus.PENDING.value,
            created_by_id=test_actor_id,
        )
        session.add(orphan)
        session.flush()

        clock.advance(31 * 24 * 3600)
        recent = make_request(add_employee(world.beta, "New", "Failure"), until="approved").credential
        failing.generate(recent.id)

        result = credential_service.cleanup(test_actor_id)

        assert result.orphaned_deleted == 1
        assert result.failed_deleted == 1
        remaining = set(session.execute(select(Credential.id)).scalars())
        assert remaining == {recent.id}
        assert stale_request.credential is None

    def test_cleanup_respects_retention_override(
        self, session, blob_store, dispatcher, clock, credential_service, pending, test_actor_id,
    ):
        _failing_service(session, blob_store, dispatcher, clock).generate(pending.id)
        clock.advance(10 * 24 * 3600)

        assert credential_service.cleanup(test_actor_id, retention_days=30).failed_deleted == 0
        assert credential_service.cleanup(test_actor_id, retention_days=7).failed_deleted == 1
        assert session.execute(select(func.count(Credential.id))).scalar_one() == 0


class TestEventRegeneration:
    def test_new_default_template_is_captured(
        self, session, blob_store, dispatcher, clock, credential_service, make_request,
        make_ready_credential, workflow, world, add_employee, test_actor_id,
    ):
        ready = make_ready_credential(add_employee(world.beta, "Ana", "Brown"))
        capped = make_request(add_employee(world.beta, "Carl", "Brown"), until="approved").credential
        _failing_service(session, blob_store, dispatcher, clock).generate(capped.id)
        capped.retry_count = 3
        busy = make_request(add_employee(world.gamma, "Bob", "Stone"), until="approved").credential
        busy.status = CredentialStatus.GENERATING.value
        suspended = make_ready_credential(add_employee(world.gamma, "Sue", "Stone"))
        workflow.suspend(suspended.request_id, test_actor_id, "misconduct")
        qr_code = ready.qr_code

        session.add(Template(
            event_id=world.event.id,
            name="Expo v4",
            version=4,
            is_default=True,
            layout_meta={"header_color": "#abcdef"},
        ))
        session.flush()
        scheduled_before = len(dispatcher.of_type(GENERATE_JOB))

        outcome = credential_service.regenerate_event_credentials(world.event.id, test_actor_id)

        assert outcome == {"scheduled": 2, "skipped": 1}
        assert len(dispatcher.of_type(GENERATE_JOB)) == scheduled_before + 2
        for credential in (ready, capped):
            assert credential.status == CredentialStatus.PENDING.value
            assert credential.template_snapshot["version"] == 4
            assert credential.template_snapshot["layout_meta"] == {"header_color": "#abcdef"}
        assert capped.retry_count == 3
        assert busy.status == CredentialStatus.GENERATING.value
        assert busy.template_snapshot["version"] == 2
        assert suspended.template_snapshot["version"] == 2

        regenerated = credential_service.generate(ready.id)
        assert regenerated.status == CredentialStatus.READY
        assert regenerated.qr_code == qr_code

    def test_other_events_untouched(self, credential_service, pending, world, test_actor_id):
        outcome = credential_service.regenerate_event_credentials(
            world.other_event.id, test_actor_id,
        )
        assert outcome == {"scheduled": 0, "skipped": 0}
        assert pending.template_snapshot["version"] == 2


class TestOperatorGate:
    @pytest.fixture
    def regenerate_only(self, session, blob_store, dispatcher, clock, renderer, test_actor_id):
        return CredentialService(
            session,
            blob_store=blob_store,
            dispatcher=dispatcher,
            renderer=renderer,
            clock=clock,
            gate=RoleGate({test_actor_id: {"credential.regenerate"}}),
        )

    def test_regenerate_allowed(self, regenerate_only, pending, test_actor_id):
        dto = regenerate_only.regenerate_credential(pending.id, test_actor_id)
        assert dto.status == CredentialStatus.PENDING

    @pytest.mark.parametrize(
        "action",
        ["regenerate_credential", "regenerate_for_request", "retry_failed"],
    )
    def test_regenerate_denied_to_other_actor(
        self, regenerate_only, pending, dispatcher, action,
    ):
        outsider = uuid4()
        scheduled_before = len(dispatcher.of_type(GENERATE_JOB))
        calls = {
            "regenerate_credential": lambda: regenerate_only.regenerate_credential(
                pending.id, outsider,
            ),
            "regenerate_for_request": lambda: regenerate_only.regenerate_for_request(
                pending.request_id, outsider,
            ),
            "retry_failed": lambda: regenerate_only.retry_failed(outsider),
        }

        with pytest.raises(UnauthorizedActionError) as exc_info:
            calls[action]()

        assert exc_info.value.action == "credential.regenerate"
        assert exc_info.value.actor_id == str(outsider)
        assert len(dispatcher.of_type(GENERATE_JOB)) == scheduled_before

    def test_expire_event_denied(
        self, regenerate_only, credential_service, pending, world, test_actor_id, captured_logs,
    ):
        credential_service.generate(pending.id)

        with pytest.raises(UnauthorizedActionError) as exc_info:
            regenerate_only.expire_event_credentials(world.event.id, test_actor_id)

        assert exc_info.value.action == "credential.expire_event"
        assert pending.is_active is True
        denied = [r for r in captured_logs() if r["message"] == "action_denied"]
        assert denied[-1]["action"] == "credential.expire_event"

    def test_event_regeneration_denied(self, regenerate_only, pending, world, test_actor_id):
        with pytest.raises(UnauthorizedActionError) as exc_info:
            regenerate_only.regenerate_event_credentials(world.event.id, test_actor_id)
        assert exc_info.value.action == "credential.regenerate_event"

    def test_cleanup_denied(self, session, regenerate_only, test_actor_id):
        orphan = Credential(
            request_id=None,
            status=CredentialStatus.PENDING.value,
            created_by_id=test_actor_id,
        )
        session.add(orphan)
        session.flush()

        with pytest.raises(UnauthorizedActionError):
            regenerate_only.cleanup(test_actor_id)
        assert session.get(Credential, orphan.id) is not None

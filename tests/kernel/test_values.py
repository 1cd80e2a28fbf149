"""Tests for acredita_kernel.domain.values -- builders and DTO helpers."""

from dataclasses import FrozenInstanceError
from uuid import uuid4

import pytest

from acredita_kernel.domain.lifecycle import CredentialStatus, PrintBatchStatus
from acredita_kernel.domain.values import (
    CredentialCleanupResult,
    CredentialStatusReport,
    DraftRequestBuilder,
    PrintBatchDTO,
    PrintFilters,
    VerificationResult,
)


class TestDraftRequestBuilder:
    def test_steps_accumulate(self):
        employee, event, zone = uuid4(), uuid4(), uuid4()
        builder = (
            DraftRequestBuilder()
            .for_employee(employee)
            .for_event(event)
            .with_zones(zone)
            .with_comments("night shift")
        )
        assert builder.employee_id == employee
        assert builder.event_id == event
        assert builder.zone_ids == (zone,)
        assert builder.comments == "night shift"
        assert builder.missing_fields() == ()

    def test_changing_event_drops_zones(self):
        zone = uuid4()
        builder = DraftRequestBuilder().for_event(uuid4()).with_zones(zone)
        assert builder.for_event(uuid4()).zone_ids == ()

    def test_same_event_keeps_zones(self):
        event, zone = uuid4(), uuid4()
        builder = DraftRequestBuilder().for_event(event).with_zones(zone)
        assert builder.for_event(event).zone_ids == (zone,)

    def test_zones_deduplicated_in_order(self):
        a, b = uuid4(), uuid4()
        assert DraftRequestBuilder().with_zones(b, a, b).zone_ids == (b, a)

    def test_missing_fields(self):
        assert DraftRequestBuilder().missing_fields() == ("employee_id", "event_id")

    def test_serializable(self):
        builder = DraftRequestBuilder(
            employee_id=uuid4(), event_id=uuid4(), zone_ids=(uuid4(),), comments="x",
        )
        data = builder.to_dict()
        assert all(isinstance(z, str) for z in data["zone_ids"])
        assert DraftRequestBuilder.from_dict(data) == builder

    def test_from_partial_dict(self):
        builder = DraftRequestBuilder.from_dict({"event_id": None})
        assert builder.missing_fields() == ("employee_id", "event_id")

    def test_immutable(self):
        builder = DraftRequestBuilder()
        with pytest.raises(FrozenInstanceError):
            builder.comments = "mutated"


class TestPrintFilters:
    def test_snapshot_is_json_friendly(self):
        filters = PrintFilters(event_id=uuid4(), area_ids=(uuid4(),), only_unprinted=False)
        snapshot = filters.to_snapshot()
        assert snapshot["provider_ids"] == []
        assert snapshot["only_unprinted"] is False
        assert PrintFilters.from_snapshot(snapshot) == filters

    def test_defaults_to_unprinted(self):
        assert PrintFilters.from_snapshot({"event_id": str(uuid4())}).only_unprinted is True


class TestReports:
    def test_status_report_totals(self):
        report = CredentialStatusReport(
            counts={CredentialStatus.READY: 4, CredentialStatus.FAILED: 1},
        )
        assert report.total == 5
        assert report.count(CredentialStatus.PENDING) == 0

    def test_cleanup_total(self):
        assert CredentialCleanupResult(orphaned_deleted=2, failed_deleted=3).total == 5

    def test_not_found_verification(self):
        result = VerificationResult.not_found()
        assert result.valid is False
        assert result.reason == "not_found"

    def test_batch_progress_empty(self):
        dto = PrintBatchDTO(
            id=uuid4(),
            uuid=uuid4(),
            status=PrintBatchStatus.QUEUED,
            filters=PrintFilters(event_id=uuid4()),
            credential_ids=(),
            file_path=None,
            generated_by=uuid4(),
            created_at=None,
            total_credentials=0,
            processed_credentials=0,
        )
        assert dto.progress_percentage == 0.0

    def test_batch_progress_rounded(self):
        dto = PrintBatchDTO(
            id=uuid4(),
            uuid=uuid4(),
            status=PrintBatchStatus.PROCESSING,
            filters=PrintFilters(event_id=uuid4()),
            credential_ids=(),
            file_path=None,
            generated_by=uuid4(),
            created_at=None,
            total_credentials=3,
            processed_credentials=1,
        )
        assert dto.progress_percentage == 33.33

"""
acredita_kernel.services.print_batch_service -- Print-batch aggregation.

Responsibility:
    Validates print filters, snapshots the matching ready credentials into a
    ``PrintBatch`` while atomically stamping them, renders the combined
    document from a job, and manages retry, download and retention.

Architecture position:
    Kernel > Services.  Selection lives in ``PrintSelector`` so previews,
    exports and batch creation share one query.

Invariants enforced:
    - The batch snapshot (filters + ordered credential ids) is written once
      and reused verbatim by ``retry_batch``.
    - A credential is stamped at most once: the stamp is a conditional
      ``UPDATE ... WHERE print_batch_id IS NULL``.  A short stamp means a
      concurrent batch won; the SAVEPOINT is rolled back and selection is
      retried.
    - Zero matches never create a batch row.

Failure modes:
    - ValidationError          -- bad filters (every offending field listed).
    - EmptyBatchError          -- nothing matches the filters.
    - RaceConditionError       -- stamping kept losing after N attempts.
    - NotReadyError            -- download of a batch that is not ready.
    - BatchNotRetryableError   -- retry of a batch that is not failed.
    - PrintBatchNotFoundError  -- unknown batch id.
    - UnauthorizedActionError  -- the gate denied queue, retry, download or cleanup.

Does NOT call ``session.commit()``.
"""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from acredita_kernel.domain.clock import Clock, SystemClock
from acredita_kernel.domain.collaborators import (
    AllowAllGate,
    AuthorizationGate,
    BlobStore,
    JobDispatcher,
)
from acredita_kernel.domain.lifecycle import (
    IN_FLIGHT_BATCH_STATUSES,
    CredentialStatus,
    PrintBatchStatus,
)
from acredita_kernel.domain.values import (
    BatchCleanupResult,
    BatchEntry,
    BatchProgress,
    PrintBatchDTO,
    PrintCandidate,
    PrintFilters,
)
from acredita_kernel.exceptions import (
    BatchNotRetryableError,
    EmptyBatchError,
    NotReadyError,
    PrintBatchNotFoundError,
    RaceConditionError,
    UnauthorizedActionError,
    ValidationError,
)
from acredita_kernel.logging_config import LogContext, get_logger
from acredita_kernel.models.credential import Credential
from acredita_kernel.models.print_batch import PrintBatch
from acredita_kernel.models.reference import Area, Event, Provider
from acredita_kernel.rendering.batch_renderer import BatchDocumentRenderer
from acredita_kernel.selectors.print_selector import PrintSelector

logger = get_logger("services.print_batch")

RENDER_JOB = "print_batch.render"


def _as_uuid_list(value: Any) -> tuple[list[UUID], list[str]]:
    """Accept a scalar or a list; return (parsed, unparseable)."""
    if value is None or value == "":
        return [], []
    items = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
    parsed: list[UUID] = []
    bad: list[str] = []
    for item in items:
        if isinstance(item, UUID):
            parsed.append(item)
            continue
        try:
            parsed.append(UUID(str(item)))
        except ValueError:
            bad.append(str(item))
    return list(dict.fromkeys(parsed)), bad


class PrintBatchService:
    """Print batch aggregation, rendering and retention."""

    def __init__(
        self,
        session: Session,
        blob_store: BlobStore,
        dispatcher: JobDispatcher,
        batch_renderer: BatchDocumentRenderer | None = None,
        gate: AuthorizationGate | None = None,
        clock: Clock | None = None,
        *,
        stamp_max_attempts: int = 3,
        batches_path: str = "print_batches",
        error_message_max_length: int = 500,
    ) -> None:
        self._session = session
        self._blobs = blob_store
        self._dispatcher = dispatcher
        self._renderer = batch_renderer
        self._gate = gate or AllowAllGate()
        self._clock = clock or SystemClock()
        self._stamp_max_attempts = stamp_max_attempts
        self._batches_path = batches_path.strip("/")
        self._error_max = error_message_max_length
        self._selector = PrintSelector(session)

    # -------------------------------------------------------------------------
    # Filters and selection
    # -------------------------------------------------------------------------

    def validate_filters(self, raw: dict[str, Any]) -> PrintFilters:
        """Normalize raw filters; every offending field is reported at once."""
        errors: dict[str, list[str]] = {}

        event_id: UUID | None = None
        raw_event = raw.get("event_id")
        if raw_event in (None, ""):
            errors.setdefault("event_id", []).append("This field is required.")
        else:
            events, bad = _as_uuid_list(raw_event)
            if bad or len(events) != 1:
                errors.setdefault("event_id", []).append(f"Invalid event id: {raw_event}")
            elif self._session.get(Event, events[0]) is None:
                errors.setdefault("event_id", []).append(f"Event {events[0]} does not exist.")
            else:
                event_id = events[0]

        area_ids, bad_areas = _as_uuid_list(raw.get("area_ids", raw.get("area_id")))
        if bad_areas:
            errors.setdefault("area_ids", []).append(f"Invalid area ids: {', '.join(bad_areas)}")
        missing_areas = self._missing(Area, area_ids)
        if missing_areas:
            errors.setdefault("area_ids", []).append(
                f"Unknown areas: {', '.join(str(a) for a in missing_areas)}"
            )

        provider_ids, bad_providers = _as_uuid_list(
            raw.get("provider_ids", raw.get("provider_id"))
        )
        if bad_providers:
            errors.setdefault("provider_ids", []).append(
                f"Invalid provider ids: {', '.join(bad_providers)}"
            )
        missing_providers = self._missing(Provider, provider_ids)
        if missing_providers:
            errors.setdefault("provider_ids", []).append(
                f"Unknown providers: {', '.join(str(p) for p in missing_providers)}"
            )

        only_unprinted = raw.get("only_unprinted", True)
        if not isinstance(only_unprinted, bool):
            errors.setdefault("only_unprinted", []).append("Must be a boolean.")

        if errors or event_id is None:
            raise ValidationError(errors)

        return PrintFilters(
            event_id=event_id,
            area_ids=tuple(area_ids),
            provider_ids=tuple(provider_ids),
            only_unprinted=only_unprinted,
        )

    def _missing(self, model: type, ids: Iterable[UUID]) -> list[UUID]:
        wanted = list(ids)
        if not wanted:
            return []
        found = set(
            self._session.execute(select(model.id).where(model.id.in_(wanted))).scalars()
        )
        return [i for i in wanted if i not in found]

    def get_credentials_for_printing(self, filters: PrintFilters) -> tuple[PrintCandidate, ...]:
        return self._selector.get_credentials_for_printing(filters)

    def count_credentials_for_printing(self, filters: PrintFilters) -> int:
        return self._selector.count_credentials_for_printing(filters)

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    def queue_batch(self, filters: PrintFilters, actor_id: UUID) -> PrintBatchDTO:
        """Snapshot and stamp matching credentials; schedule rendering."""
        self._authorize(actor_id, "print_batch.queue", filters, str(filters.event_id))

        last_expected = 0
        last_stamped = 0
        for attempt in range(1, self._stamp_max_attempts + 1):
            candidates = self._selector.get_credentials_for_printing(filters)
            if not candidates:
                raise EmptyBatchError(filters.to_snapshot())

            unstamped = [c.credential_id for c in candidates if c.print_batch_id is None]
            savepoint = self._session.begin_nested()
            batch = PrintBatch(
                event_id=filters.event_id,
                status=PrintBatchStatus.QUEUED.value,
                filters_snapshot=filters.to_snapshot(),
                credential_ids=[str(c.credential_id) for c in candidates],
                total_credentials=len(candidates),
                processed_credentials=0,
                retry_count=0,
                created_by_id=actor_id,
            )
            batch.created_at = self._clock.now()
            self._session.add(batch)
            self._session.flush()

            stamped = self._stamp(batch.id, unstamped)
            if stamped == len(unstamped):
                savepoint.commit()
                break

            savepoint.rollback()
            last_expected, last_stamped = len(unstamped), stamped
            logger.warning(
                "print_batch_stamp_conflict",
                extra={
                    "attempt": attempt,
                    "expected": len(unstamped),
                    "stamped": stamped,
                },
            )
        else:
            raise RaceConditionError(last_expected, last_stamped, self._stamp_max_attempts)

        # Stamps were written with a bulk UPDATE; reload any cached credentials.
        self._session.expire_all()
        self._dispatcher.schedule(RENDER_JOB, {"batch_id": str(batch.id)})
        logger.info(
            "print_batch_queued",
            extra={
                "batch_id": str(batch.id),
                "event_id": str(filters.event_id),
                "total_credentials": batch.total_credentials,
                "newly_stamped": len(unstamped),
            },
        )
        return self._load(batch.id).to_dto()

    def _stamp(self, batch_id: UUID, credential_ids: list[UUID]) -> int:
        if not credential_ids:
            return 0
        # Row locks on PostgreSQL; no-op on SQLite where the write lock serializes.
        self._session.execute(
            select(Credential.id)
            .where(Credential.id.in_(credential_ids))
            .with_for_update()
        ).all()
        result = self._session.execute(
            update(Credential)
            .where(
                Credential.id.in_(credential_ids),
                Credential.print_batch_id.is_(None),
            )
            .values(print_batch_id=batch_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # -------------------------------------------------------------------------
    # Render (job side)
    # -------------------------------------------------------------------------

    def render(self, batch_id: UUID) -> PrintBatchDTO:
        """Render the batch document.  Failures are recorded on the batch."""
        batch = self._load(batch_id, for_update=True)
        if batch.current_status not in IN_FLIGHT_BATCH_STATUSES:
            logger.info(
                "print_batch_render_skipped",
                extra={"batch_id": str(batch.id), "status": batch.status},
            )
            return batch.to_dto()

        with LogContext.bind(batch_id=str(batch.id)):
            batch.status = PrintBatchStatus.PROCESSING.value
            batch.started_at = self._clock.now()
            batch.processed_credentials = 0
            batch.error_message = None
            self._session.flush()
            logger.info(
                "print_batch_render_started",
                extra={"total_credentials": batch.total_credentials},
            )

            try:
                pages, printed, skipped = self._collect_pages(batch)
                if not pages:
                    raise ValueError("no renderable credentials in batch")
                if self._renderer is None:
                    raise ValueError("no batch renderer configured")
                document = self._renderer.render(pages)
                path = self._blobs.put(f"{self._batches_path}/{batch.uuid}.pdf", document)
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                batch.status = PrintBatchStatus.FAILED.value
                batch.error_message = message[: self._error_max]
                batch.finished_at = self._clock.now()
                self._session.flush()
                logger.error("print_batch_render_failed", exc_info=exc)
                return batch.to_dto()

            now = self._clock.now()
            for credential in printed:
                if credential.print_batch_id == batch.id and credential.printed_at is None:
                    credential.printed_at = now
            batch.file_path = path
            batch.status = PrintBatchStatus.READY.value
            batch.finished_at = now
            self._session.flush()
            logger.info(
                "print_batch_rendered",
                extra={
                    "file_path": path,
                    "pages": len(pages),
                    "skipped": skipped,
                },
            )
        return batch.to_dto()

    def _collect_pages(self, batch: PrintBatch) -> tuple[list[bytes], list[Credential], int]:
        ids = batch.snapshot_ids()
        credentials = {
            c.id: c
            for c in self._session.execute(
                select(Credential).where(Credential.id.in_(ids))
            ).scalars()
        }
        pages: list[bytes] = []
        printed: list[Credential] = []
        skipped = 0
        for credential_id in ids:
            credential = credentials.get(credential_id)
            if credential is None or not credential.image_path or not self._blobs.exists(
                credential.image_path
            ):
                skipped += 1
                logger.warning(
                    "print_batch_credential_skipped",
                    extra={
                        "credential_id": str(credential_id),
                        "reason": "missing" if credential is None else "no_image",
                    },
                )
            else:
                pages.append(self._blobs.read(credential.image_path))
                printed.append(credential)
            batch.processed_credentials += 1
        self._session.flush()
        return pages, printed, skipped

    # -------------------------------------------------------------------------
    # Retry / download
    # -------------------------------------------------------------------------

    def retry_batch(self, batch_id: UUID, actor_id: UUID) -> PrintBatchDTO:
        batch = self._load(batch_id, for_update=True)
        self._authorize(actor_id, "print_batch.retry", batch, str(batch.id))
        if batch.current_status != PrintBatchStatus.FAILED:
            raise BatchNotRetryableError(str(batch.id), batch.status)

        batch.status = PrintBatchStatus.QUEUED.value
        batch.retry_count += 1
        batch.processed_credentials = 0
        batch.error_message = None
        batch.started_at = None
        batch.finished_at = None
        batch.updated_by_id = actor_id
        self._session.flush()

        self._dispatcher.schedule(RENDER_JOB, {"batch_id": str(batch.id)})
        logger.info(
            "print_batch_retried",
            extra={"batch_id": str(batch.id), "retry_count": batch.retry_count},
        )
        return batch.to_dto()

    def download_batch(self, batch_id: UUID, actor_id: UUID) -> str:
        """Relative path of the rendered document."""
        batch = self._load(batch_id)
        self._authorize(actor_id, "print_batch.download", batch, str(batch.id))
        if batch.current_status != PrintBatchStatus.READY or not batch.file_path:
            raise NotReadyError(str(batch.id), batch.status)
        return batch.file_path

    # -------------------------------------------------------------------------
    # Retention and reporting
    # -------------------------------------------------------------------------

    def cleanup_old_batches(self, actor_id: UUID, days_old: int = 90) -> BatchCleanupResult:
        """Archive ready batches older than ``days_old`` and drop their files.

        Failed batches are never archived; their credentials stay stamped
        to them until the batch is retried.
        """
        self._authorize(actor_id, "print_batch.cleanup", None, "print_batches")
        cutoff = self._clock.now() - timedelta(days=days_old)
        batches = self._session.execute(
            select(PrintBatch).where(
                PrintBatch.status == PrintBatchStatus.READY.value,
                PrintBatch.created_at < cutoff,
            )
        ).scalars().all()

        cleaned_files = 0
        for batch in batches:
            if batch.file_path and self._blobs.delete(batch.file_path):
                cleaned_files += 1
            batch.file_path = None
            batch.status = PrintBatchStatus.ARCHIVED.value
        self._session.flush()

        result = BatchCleanupResult(
            cleaned_files=cleaned_files,
            archived_batches=len(batches),
            total_processed=len(batches),
        )
        logger.info(
            "print_batch_cleanup_completed",
            extra={
                "days_old": days_old,
                "cleaned_files": result.cleaned_files,
                "archived_batches": result.archived_batches,
            },
        )
        return result

    def get_processing_batches(self) -> list[BatchProgress]:
        batches = self._session.execute(
            select(PrintBatch)
            .where(PrintBatch.status.in_([s.value for s in IN_FLIGHT_BATCH_STATUSES]))
            .order_by(PrintBatch.created_at)
        ).scalars().all()
        return [
            BatchProgress(
                batch_id=b.id,
                uuid=b.uuid,
                status=b.current_status,
                total_credentials=b.total_credentials,
                processed_credentials=b.processed_credentials,
                progress_percentage=b.progress_percentage,
                created_at=b.created_at,
                started_at=b.started_at,
            )
            for b in batches
        ]

    def get_batch(self, batch_id: UUID) -> PrintBatchDTO:
        return self._load(batch_id).to_dto()

    def get_batch_contents(self, batch_id: UUID) -> list[BatchEntry]:
        """Snapshot entries in print order; deleted credentials are ``missing``."""
        batch = self._load(batch_id)
        ids = batch.snapshot_ids()
        credentials = {
            c.id: c
            for c in self._session.execute(
                select(Credential).where(Credential.id.in_(ids))
            ).scalars()
        }
        entries = []
        for position, credential_id in enumerate(ids, start=1):
            credential = credentials.get(credential_id)
            if credential is None:
                entries.append(BatchEntry(position=position, credential_id=credential_id, missing=True))
                continue
            employee = credential.employee_snapshot or {}
            entries.append(
                BatchEntry(
                    position=position,
                    credential_id=credential_id,
                    employee_name=(
                        f"{employee.get('first_name', '')} {employee.get('last_name', '')}".strip()
                        or None
                    ),
                    provider_name=employee.get("provider_name"),
                    image_path=credential.image_path,
                )
            )
        return entries

    def get_batch_stats(self) -> dict[str, int]:
        counts = Counter(
            self._session.execute(select(PrintBatch.status)).scalars()
        )
        stats = {status.value: counts.get(status.value, 0) for status in PrintBatchStatus}
        stats["total"] = sum(counts.values())
        stats["printed_credentials"] = self._session.execute(
            select(func.count(Credential.id)).where(
                Credential.print_batch_id.is_not(None),
                Credential.status == CredentialStatus.READY.value,
            )
        ).scalar_one()
        return stats

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _authorize(self, actor_id: UUID, action: str, entity: Any, ref: str) -> None:
        if not self._gate.can_perform(actor_id, action, entity):
            logger.warning(
                "action_denied",
                extra={"actor_id": str(actor_id), "action": action, "entity": ref},
            )
            raise UnauthorizedActionError(str(actor_id), action, ref)

    def _load(self, batch_id: UUID, for_update: bool = False) -> PrintBatch:
        stmt = select(PrintBatch).where(PrintBatch.id == batch_id)
        if for_update:
            stmt = stmt.with_for_update()
        batch = self._session.execute(stmt).scalar_one_or_none()
        if batch is None:
            raise PrintBatchNotFoundError(str(batch_id))
        return batch

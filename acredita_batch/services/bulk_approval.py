"""
BulkApprovalRunner -- Drives an area's pending requests to printed batches.

Contract:
    For every unit (an active provider of the area, or an explicit provider
    list) in name order:

    1. Skip units with no draft/submitted/under_review request, unless the
       unit already has ready, unprinted credentials; then resume at 5.
    2. Submit drafts one by one.
    3. Re-query approvable requests, approve them in ``batch_size`` chunks,
       each chunk in its own transaction, pausing ``wait_time`` between
       chunks.
    4. Poll credential readiness every ``poll_interval`` until all are
       ready or ``max_wait`` elapses (a warning, not an error).
    5. Queue one print batch per event with ready, unprinted credentials.
    6. Pause ``wait_time`` before the next unit.

    Dry runs use the same queries and ``plan_chunks``; they mutate nothing,
    never pause, and report the counts a real run would produce.

Architecture: acredita_batch/services.  Receives session-bound kernel
    services from a context factory; commits per transactional step.

Invariants enforced:
    - Submission precedes approval precedes print batching, per unit.
    - A failed chunk rolls back that chunk only.
    - Without ``skip_errors`` the first unit error stops the run once the
      in-flight chunk has finished; ``RunSummary.exit_code`` is then 1.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Iterator
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from acredita_batch.domain.chunking import plan_chunks, split
from acredita_batch.domain.types import (
    BulkRunOptions,
    QueuedPrintBatch,
    RunSummary,
    UnitError,
    UnitResult,
)
from acredita_batch.services.pacing import PacerProtocol
from acredita_kernel.domain.clock import Clock, SystemClock
from acredita_kernel.domain.lifecycle import (
    APPROVABLE_STATUSES,
    ELIGIBLE_FOR_BULK_APPROVAL,
    RequestStatus,
)
from acredita_kernel.domain.values import PrintFilters
from acredita_kernel.exceptions import AcreditaError, EmptyBatchError
from acredita_kernel.logging_config import LogContext, get_logger
from acredita_kernel.models.reference import Provider

if TYPE_CHECKING:
    from acredita_batch.services.context import ServiceContext

logger = get_logger("batch.bulk_approval")


def _error_code(exc: Exception) -> str:
    return exc.code if isinstance(exc, AcreditaError) else type(exc).__name__


class _UnitAborted(Exception):
    """Internal signal: stop processing the current unit."""


class _UnitState:
    """Mutable accumulator turned into a frozen ``UnitResult`` at the end."""

    def __init__(self, unit_id: UUID, unit_name: str) -> None:
        self.unit_id = unit_id
        self.unit_name = unit_name
        self.total = 0
        self.submitted = 0
        self.approved = 0
        self.skipped = False
        self.resumed = False
        self.chunks: tuple[int, ...] = ()
        self.credentials_ready = 0
        self.credentials_expected = 0
        self.wait_timed_out = False
        self.print_batches: list[QueuedPrintBatch] = []
        self.errors: list[UnitError] = []

    def error(self, stage: str, message: str, request_id: UUID | None = None) -> None:
        self.errors.append(
            UnitError(
                unit_id=self.unit_id,
                unit_name=self.unit_name,
                stage=stage,
                message=message,
                request_id=request_id,
            )
        )

    def freeze(self) -> UnitResult:
        return UnitResult(
            unit_id=self.unit_id,
            unit_name=self.unit_name,
            total=self.total,
            submitted=self.submitted,
            approved=self.approved,
            skipped=self.skipped,
            resumed=self.resumed,
            chunks=self.chunks,
            credentials_ready=self.credentials_ready,
            credentials_expected=self.credentials_expected,
            wait_timed_out=self.wait_timed_out,
            print_batches=tuple(self.print_batches),
            errors=tuple(self.errors),
        )


class BulkApprovalRunner:
    """Control loop for area-wide bulk approval."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        context_factory: Callable[[Session], ServiceContext],
        pacer: PacerProtocol,
        actor_id: UUID,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._context_factory = context_factory
        self._pacer = pacer
        self._actor_id = actor_id
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(self, options: BulkRunOptions) -> RunSummary:
        run_id = uuid4()
        started_at = self._clock.now()
        units: list[UnitResult] = []
        aborted = False

        with LogContext.bind(run_id=str(run_id), actor_id=str(self._actor_id)):
            targets = self._resolve_units(options)
            logger.info(
                "bulk_run_started",
                extra={
                    "area_id": str(options.area_id),
                    "units": len(targets),
                    "dry_run": options.dry_run,
                    "batch_size": options.batch_size,
                },
            )

            for index, (unit_id, unit_name) in enumerate(targets):
                result = self._run_unit(unit_id, unit_name, options)
                units.append(result)

                if result.failed and not options.skip_errors:
                    aborted = True
                    logger.error(
                        "bulk_run_aborted",
                        extra={"unit_id": str(unit_id), "errors": len(result.errors)},
                    )
                    break
                if self._pacer.aborted:
                    aborted = True
                    break

                is_last = index == len(targets) - 1
                if not is_last and not options.dry_run and not result.skipped:
                    if not self._pacer.wait(options.wait_time_seconds):
                        aborted = True
                        break

            summary = RunSummary(
                area_id=options.area_id,
                dry_run=options.dry_run,
                skip_errors=options.skip_errors,
                units=tuple(units),
                aborted=aborted,
                started_at=started_at,
                completed_at=self._clock.now(),
            )
            logger.info(
                "bulk_run_completed",
                extra={
                    "units": len(units),
                    "approved": summary.total_approved,
                    "batches": summary.batches_created,
                    "errors": len(summary.errors),
                    "aborted": aborted,
                    "exit_code": summary.exit_code,
                },
            )
        return summary

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    def _resolve_units(self, options: BulkRunOptions) -> list[tuple[UUID, str]]:
        with self._read() as ctx:
            if not options.provider_ids:
                return ctx.requests.active_providers_in_area(options.area_id)
            units = []
            for provider_id in options.provider_ids:
                provider = ctx.session.get(Provider, provider_id)
                if provider is None:
                    logger.warning(
                        "bulk_unit_not_found", extra={"provider_id": str(provider_id)},
                    )
                    continue
                units.append((provider.id, provider.name))
            return sorted(units, key=lambda u: (u[1], str(u[0])))

    def _run_unit(self, unit_id: UUID, unit_name: str, options: BulkRunOptions) -> UnitResult:
        state = _UnitState(unit_id, unit_name)
        with LogContext.bind(correlation_id=str(unit_id)):
            try:
                with self._read() as ctx:
                    eligible = ctx.requests.request_ids_for_provider(
                        unit_id, ELIGIBLE_FOR_BULK_APPROVAL,
                    )
                    ready_unprinted = ctx.requests.count_ready_unprinted_for_provider(unit_id)
                state.total = len(eligible)

                if not eligible:
                    if ready_unprinted == 0:
                        state.skipped = True
                        logger.info("bulk_unit_skipped", extra={"unit": unit_name})
                        return state.freeze()
                    state.resumed = True
                    logger.info(
                        "bulk_unit_resumed",
                        extra={"unit": unit_name, "ready_unprinted": ready_unprinted},
                    )
                else:
                    self._submit_drafts(state, options)
                    approved_ids = self._approve_in_chunks(state, options)
                    self._wait_for_credentials(state, options, approved_ids)

                self._queue_print_batches(state, options)
            except _UnitAborted:
                pass

        logger.info(
            "bulk_unit_completed",
            extra={
                "unit": unit_name,
                "total": state.total,
                "submitted": state.submitted,
                "approved": state.approved,
                "print_batches": len(state.print_batches),
                "errors": len(state.errors),
            },
        )
        return state.freeze()

    def _submit_drafts(self, state: _UnitState, options: BulkRunOptions) -> None:
        with self._read() as ctx:
            drafts = ctx.requests.request_ids_for_provider(
                state.unit_id, (RequestStatus.DRAFT,),
            )
        if options.dry_run:
            state.submitted = len(drafts)
            return

        for request_id in drafts:
            try:
                with self._transaction() as ctx:
                    ctx.workflow.submit(request_id, self._actor_id)
                state.submitted += 1
            except Exception as exc:
                state.error("submit", str(exc), request_id)
                logger.warning(
                    "bulk_submit_failed",
                    extra={"request_id": str(request_id), "error_code": _error_code(exc)},
                )
                if not options.skip_errors:
                    raise _UnitAborted() from exc

    def _approve_in_chunks(self, state: _UnitState, options: BulkRunOptions) -> list[UUID]:
        # Dry runs cannot submit, so drafts count as approvable there.
        statuses = ELIGIBLE_FOR_BULK_APPROVAL if options.dry_run else APPROVABLE_STATUSES
        with self._read() as ctx:
            approvable = ctx.requests.request_ids_for_provider(state.unit_id, statuses)

        state.chunks = plan_chunks(len(approvable), options.batch_size)
        if options.dry_run:
            state.approved = len(approvable)
            return approvable

        approved: list[UUID] = []
        for index, chunk in enumerate(split(approvable, options.batch_size)):
            if index > 0 and not self._pacer.wait(options.wait_time_seconds):
                raise _UnitAborted()
            try:
                with self._transaction() as ctx:
                    for request_id in chunk:
                        ctx.workflow.approve(request_id, self._actor_id)
            except Exception as exc:
                state.error("approve", f"chunk {index + 1}: {exc}")
                logger.warning(
                    "bulk_chunk_failed",
                    extra={"chunk": index + 1, "size": len(chunk), "error_code": _error_code(exc)},
                )
                if not options.skip_errors:
                    raise _UnitAborted() from exc
                continue
            approved.extend(chunk)
            state.approved += len(chunk)
            logger.info(
                "bulk_chunk_approved",
                extra={"chunk": index + 1, "size": len(chunk)},
            )
        return approved

    def _wait_for_credentials(
        self,
        state: _UnitState,
        options: BulkRunOptions,
        approved_ids: list[UUID],
    ) -> None:
        state.credentials_expected = len(approved_ids)
        if options.dry_run or not approved_ids:
            return

        waited = 0.0
        while True:
            with self._read() as ctx:
                ready = ctx.credential_selector.count_ready_for_requests(approved_ids)
            state.credentials_ready = ready
            if ready >= len(approved_ids) or not options.wait_credentials:
                return
            if waited >= options.max_wait_seconds:
                state.wait_timed_out = True
                logger.warning(
                    "bulk_credentials_wait_timeout",
                    extra={
                        "unit": state.unit_name,
                        "ready": ready,
                        "expected": len(approved_ids),
                        "waited_seconds": waited,
                    },
                )
                return
            if not self._pacer.wait(options.poll_interval_seconds):
                raise _UnitAborted()
            waited += options.poll_interval_seconds

    def _queue_print_batches(self, state: _UnitState, options: BulkRunOptions) -> None:
        statuses = (RequestStatus.APPROVED,)
        if options.dry_run:
            statuses = (RequestStatus.APPROVED, *ELIGIBLE_FOR_BULK_APPROVAL)
        with self._read() as ctx:
            event_ids = ctx.requests.event_ids_for_provider(state.unit_id, statuses)

        for event_id in event_ids:
            filters = PrintFilters(
                event_id=event_id,
                area_ids=(options.area_id,),
                provider_ids=(state.unit_id,),
            )
            with self._read() as ctx:
                count = ctx.print_batches.count_credentials_for_printing(filters)
            if count == 0:
                continue
            if options.dry_run:
                state.print_batches.append(
                    QueuedPrintBatch(batch_id=None, event_id=event_id, credential_count=count)
                )
                continue
            try:
                with self._transaction() as ctx:
                    batch = ctx.print_batches.queue_batch(filters, self._actor_id)
            except EmptyBatchError:
                # Another batch took them between count and queue.
                continue
            except Exception as exc:
                state.error("print", str(exc))
                if not options.skip_errors:
                    raise _UnitAborted() from exc
                continue
            state.print_batches.append(
                QueuedPrintBatch(
                    batch_id=batch.id,
                    event_id=event_id,
                    credential_count=batch.total_credentials,
                )
            )

    # -------------------------------------------------------------------------
    # Session scopes
    # -------------------------------------------------------------------------

    @contextmanager
    def _read(self) -> Iterator[ServiceContext]:
        session = self._session_factory()
        try:
            yield self._context_factory(session)
        finally:
            session.rollback()
            session.close()

    @contextmanager
    def _transaction(self) -> Iterator[ServiceContext]:
        session = self._session_factory()
        try:
            yield self._context_factory(session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

"""
AccreditationOrchestrator -- DI container for the accreditation pipeline.

Contract:
    Composes clock, authorization gate, blob store, renderers, the job queue
    and configuration into the kernel services, builds the default
    ``JobRegistry``, and creates ``JobWorker`` / ``BulkApprovalRunner``
    instances.  Single place where configuration becomes constructor
    arguments.

Architecture: acredita_batch (top-level).  The kernel never imports from
    here and never reads configuration itself.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Nothing here commits; callers (CLIs, worker, runner) own commits.
"""

from __future__ import annotations

from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from acredita_batch.domain.types import BulkRunOptions
from acredita_batch.services.bulk_approval import BulkApprovalRunner
from acredita_batch.services.context import ServiceContext
from acredita_batch.services.job_queue import DatabaseJobQueue
from acredita_batch.services.pacing import Pacer, PacerProtocol
from acredita_batch.services.worker import JobWorker
from acredita_batch.tasks.base import JobRegistry
from acredita_batch.tasks.credential_tasks import (
    ExpireEventCredentialsJob,
    GenerateCredentialJob,
    RegenerateEventCredentialsJob,
)
from acredita_batch.tasks.print_batch_tasks import RenderPrintBatchJob
from acredita_config.schema import AcreditaConfig
from acredita_kernel.domain.clock import Clock, SystemClock
from acredita_kernel.domain.collaborators import AllowAllGate, AuthorizationGate, BlobStore
from acredita_kernel.logging_config import get_logger
from acredita_kernel.rendering.batch_renderer import BatchDocumentRenderer, PillowBatchRenderer
from acredita_kernel.rendering.credential_renderer import (
    CredentialRenderer,
    PillowCredentialRenderer,
)
from acredita_kernel.selectors.credential_selector import CredentialSelector
from acredita_kernel.selectors.request_selector import RequestSelector
from acredita_kernel.services.credential_service import CredentialService
from acredita_kernel.services.print_batch_service import PrintBatchService
from acredita_kernel.services.request_workflow import RequestWorkflowService
from acredita_kernel.storage.blob_store import LocalBlobStore

logger = get_logger("batch.orchestrator")


def _default_job_registry() -> JobRegistry:
    """Create a JobRegistry pre-loaded with every pipeline job handler."""
    registry = JobRegistry()
    registry.register(GenerateCredentialJob())
    registry.register(ExpireEventCredentialsJob())
    registry.register(RegenerateEventCredentialsJob())
    registry.register(RenderPrintBatchJob())
    return registry


def _photo_loader(store: BlobStore) -> Callable[[str], bytes | None]:
    def load(path: str) -> bytes | None:
        if not store.exists(path):
            return None
        return store.read(path)

    return load


class AccreditationOrchestrator:
    """DI container for the accreditation pipeline.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - ``build_context(session)`` returns services bound to that session.
        - ``create_worker()`` / ``create_bulk_runner()`` for background use.

    Non-goals:
        - Does NOT start the worker automatically; caller decides.
        - Does NOT manage session lifecycle; caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        config: AcreditaConfig,
        job_registry: JobRegistry,
        blob_store: BlobStore,
        credential_renderer: CredentialRenderer | None,
        batch_renderer: BatchDocumentRenderer | None,
        gate: AuthorizationGate | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._job_registry = job_registry
        self._blob_store = blob_store
        self._credential_renderer = credential_renderer
        self._batch_renderer = batch_renderer
        self._gate = gate or AllowAllGate()
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()
        self._context = self.build_context(session)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        config: AcreditaConfig | None = None,
        clock: Clock | None = None,
        gate: AuthorizationGate | None = None,
        blob_store: BlobStore | None = None,
        credential_renderer: CredentialRenderer | None = None,
        batch_renderer: BatchDocumentRenderer | None = None,
        actor_id: UUID | None = None,
        job_registry: JobRegistry | None = None,
    ) -> AccreditationOrchestrator:
        """Create a fully wired orchestrator from a session.

        Args:
            session: SQLAlchemy session for persistence.
            config: Runtime configuration.  Defaults to ``AcreditaConfig()``.
            clock: Optional clock for deterministic testing.
            gate: Authorization gate.  Defaults to allow-all.
            blob_store: Defaults to a ``LocalBlobStore`` at ``storage.root``.
            credential_renderer / batch_renderer: Default to the Pillow
                renderers configured from ``credentials`` / ``print_batches``.
            actor_id: Actor used by the worker and bulk runner.
            job_registry: Optional pre-configured registry.
        """
        cfg = config or AcreditaConfig()
        store = blob_store or LocalBlobStore(cfg.storage.root, cfg.storage.base_url)
        if credential_renderer is None:
            credential_renderer = PillowCredentialRenderer(
                width=cfg.credentials.image_width,
                height=cfg.credentials.image_height,
                quality=cfg.credentials.image_quality,
                qr_size=cfg.credentials.qr_size,
                qr_margin=cfg.credentials.qr_margin,
                qr_error_correction=cfg.credentials.qr_error_correction,
                photo_loader=_photo_loader(store),
            )
        if batch_renderer is None:
            batch_renderer = PillowBatchRenderer(cfg.print_batches.render_resolution)

        return cls(
            session=session,
            config=cfg,
            job_registry=job_registry if job_registry is not None else _default_job_registry(),
            blob_store=store,
            credential_renderer=credential_renderer,
            batch_renderer=batch_renderer,
            gate=gate,
            clock=clock,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------

    def build_context(self, session: Session) -> ServiceContext:
        """Kernel services bound to ``session``."""
        cfg = self._config
        dispatcher = DatabaseJobQueue(
            session, clock=self._clock, max_attempts=cfg.worker.max_attempts,
        )
        credentials = CredentialService(
            session,
            blob_store=self._blob_store,
            dispatcher=dispatcher,
            renderer=self._credential_renderer,
            clock=self._clock,
            gate=self._gate,
            max_retries=cfg.credentials.max_retries,
            error_message_max_length=cfg.credentials.error_message_max_length,
            failed_retention_days=cfg.credentials.failed_retention_days,
            qr_code_prefix=cfg.credentials.qr_code_prefix,
            qr_code_attempts=cfg.credentials.qr_code_attempts,
            verify_base_url=cfg.credentials.verify_base_url,
            images_path=cfg.storage.images_path,
            pdf_path=cfg.storage.pdf_path,
        )
        print_batches = PrintBatchService(
            session,
            blob_store=self._blob_store,
            dispatcher=dispatcher,
            batch_renderer=self._batch_renderer,
            gate=self._gate,
            clock=self._clock,
            stamp_max_attempts=cfg.print_batches.stamp_max_attempts,
            batches_path=cfg.storage.batches_path,
            error_message_max_length=cfg.credentials.error_message_max_length,
        )
        workflow = RequestWorkflowService(
            session, credentials, gate=self._gate, clock=self._clock,
        )
        return ServiceContext(
            session=session,
            workflow=workflow,
            credentials=credentials,
            print_batches=print_batches,
            dispatcher=dispatcher,
            requests=RequestSelector(session),
            credential_selector=CredentialSelector(session),
            as_of=self._clock.now(),
        )

    # -------------------------------------------------------------------------
    # Worker / bulk runner
    # -------------------------------------------------------------------------

    def create_worker(
        self,
        session_factory: Callable[[], Session],
        tick_interval_seconds: float | None = None,
        jobs_per_tick: int | None = None,
    ) -> JobWorker:
        """Create a JobWorker that builds fresh services per job session."""
        worker_cfg = self._config.worker
        return JobWorker(
            session_factory=session_factory,
            registry=self._job_registry,
            context_factory=self.build_context,
            clock=self._clock,
            tick_interval_seconds=(
                tick_interval_seconds
                if tick_interval_seconds is not None
                else worker_cfg.tick_interval_seconds
            ),
            jobs_per_tick=jobs_per_tick if jobs_per_tick is not None else worker_cfg.jobs_per_tick,
        )

    def create_bulk_runner(
        self,
        session_factory: Callable[[], Session],
        pacer: PacerProtocol | None = None,
    ) -> BulkApprovalRunner:
        return BulkApprovalRunner(
            session_factory=session_factory,
            context_factory=self.build_context,
            pacer=pacer or Pacer(),
            actor_id=self._actor_id,
            clock=self._clock,
        )

    def bulk_options(self, area_id: UUID, **overrides: Any) -> BulkRunOptions:
        """``BulkRunOptions`` with configured defaults; ``None`` overrides are ignored."""
        cfg = self._config.bulk_approval
        values: dict[str, Any] = {
            "batch_size": cfg.batch_size,
            "wait_time_seconds": cfg.wait_time_seconds,
            "max_wait_seconds": cfg.max_wait_seconds,
            "poll_interval_seconds": cfg.poll_interval_seconds,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return BulkRunOptions(area_id=area_id, **values)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def config(self) -> AcreditaConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def actor_id(self) -> UUID:
        return self._actor_id

    @property
    def job_registry(self) -> JobRegistry:
        return self._job_registry

    @property
    def blob_store(self) -> BlobStore:
        return self._blob_store

    @property
    def workflow(self) -> RequestWorkflowService:
        return self._context.workflow

    @property
    def credentials(self) -> CredentialService:
        return self._context.credentials

    @property
    def print_batches(self) -> PrintBatchService:
        return self._context.print_batches

    @property
    def dispatcher(self) -> DatabaseJobQueue:
        return self._context.dispatcher

    @property
    def requests(self) -> RequestSelector:
        return self._context.requests

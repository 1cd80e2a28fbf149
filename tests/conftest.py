"""
Pytest fixtures for the accreditation test suite.

Provides:
- In-memory SQLite engine (StaticPool, SAVEPOINT hooks) with all tables
- Session factory and a per-test session
- Deterministic clock, temporary blob store and fake collaborators
- Reference data (areas, providers, event, zones, templates) and request
  factories

Every test gets a fresh database; nothing is shared between tests.
"""

import json
import logging
from datetime import date, datetime, timezone
from io import BytesIO, StringIO
from types import SimpleNamespace
from typing import Any, Generator
from uuid import UUID, uuid4

import pytest
from PIL import Image
from sqlalchemy.orm import Session, sessionmaker

from acredita_kernel.db.base import Base
from acredita_kernel.db.engine import build_engine
from acredita_kernel.domain.clock import DeterministicClock
from acredita_kernel.domain.values import DraftRequestBuilder, ProviderType
from acredita_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from acredita_kernel.models import (
    AccreditationRequest,
    Area,
    Credential,
    Employee,
    Event,
    Provider,
    Template,
    Zone,
)
from acredita_kernel.rendering.batch_renderer import PillowBatchRenderer
from acredita_kernel.rendering.credential_renderer import RenderedCredential
from acredita_kernel.services.credential_service import CredentialService
from acredita_kernel.services.print_batch_service import PrintBatchService
from acredita_kernel.services.request_workflow import RequestWorkflowService
from acredita_kernel.storage.blob_store import LocalBlobStore

import acredita_batch.models  # noqa: F401  (registers queued_jobs)


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

TEST_NOW = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture acredita logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, credential_service):
            credential_service.generate(credential_id)
            logs = captured_logs()
            assert any(r["message"] == "credential_generated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("acredita")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database with every table created."""
    eng = build_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """Per-test session.  Tests that hand work to other sessions commit first."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "storage", base_url="https://files.example.org")


# =============================================================================
# Fake collaborators
# =============================================================================


def png_bytes(color: str = "#336699", size: tuple[int, int] = (40, 60)) -> bytes:
    """A small, valid PNG image."""
    out = BytesIO()
    Image.new("RGB", size, color).save(out, format="PNG")
    return out.getvalue()


class RecordingDispatcher:
    """JobDispatcher that records scheduled jobs instead of running them."""

    def __init__(self) -> None:
        self.jobs: list[tuple[str, dict[str, Any]]] = []

    def schedule(self, job_type: str, payload: dict[str, Any]) -> None:
        self.jobs.append((job_type, dict(payload)))

    def of_type(self, job_type: str) -> list[dict[str, Any]]:
        return [payload for kind, payload in self.jobs if kind == job_type]


class FakeCredentialRenderer:
    """Renders a solid PNG and a stub PDF; raises ``fail_with`` when set."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.calls: list[dict[str, Any]] = []

    def render(
        self,
        *,
        qr_payload: str,
        employee: dict[str, Any],
        event: dict[str, Any],
        zones: list[dict[str, Any]],
        template: dict[str, Any] | None,
    ) -> RenderedCredential:
        self.calls.append(
            {
                "qr_payload": qr_payload,
                "employee": employee,
                "event": event,
                "zones": zones,
                "template": template,
            }
        )
        if self.fail_with is not None:
            raise self.fail_with
        return RenderedCredential(png=png_bytes(), pdf=b"%PDF-1.4 test credential")


class FakePacer:
    """Records pauses instead of sleeping.

    ``on_wait`` runs on every pause (e.g. a worker tick); ``abort_on_wait``
    aborts on the given pause number (1-based).
    """

    def __init__(self, on_wait=None, abort_on_wait: int | None = None) -> None:
        self.waits: list[float] = []
        self._on_wait = on_wait
        self._abort_on_wait = abort_on_wait
        self._aborted = False

    def wait(self, seconds: float) -> bool:
        if self._aborted:
            return False
        self.waits.append(seconds)
        if self._abort_on_wait is not None and len(self.waits) >= self._abort_on_wait:
            self._aborted = True
            return False
        if self._on_wait is not None:
            self._on_wait(seconds)
        return True

    def abort(self) -> None:
        self._aborted = True

    @property
    def aborted(self) -> bool:
        return self._aborted


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def renderer() -> FakeCredentialRenderer:
    return FakeCredentialRenderer()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def credential_service(session, blob_store, dispatcher, renderer, clock) -> CredentialService:
    return CredentialService(
        session,
        blob_store=blob_store,
        dispatcher=dispatcher,
        renderer=renderer,
        clock=clock,
    )


@pytest.fixture
def workflow(session, credential_service, clock) -> RequestWorkflowService:
    return RequestWorkflowService(session, credential_service, clock=clock)


@pytest.fixture
def print_batch_service(session, blob_store, dispatcher, clock) -> PrintBatchService:
    return PrintBatchService(
        session,
        blob_store=blob_store,
        dispatcher=dispatcher,
        batch_renderer=PillowBatchRenderer(),
        clock=clock,
    )


# =============================================================================
# Reference data
# =============================================================================


@pytest.fixture
def world(session) -> SimpleNamespace:
    """Two areas, three providers, one event with two zones and templates.

    Provider names sort as Alpha (internal, North) < Beta (external, North)
    < Gamma (external, South).
    """
    north = Area(name="North Gate", code="N")
    south = Area(name="South Gate", code="S")
    session.add_all([north, south])
    session.flush()

    alpha = Provider(
        name="Alpha Catering", area_id=north.id, provider_type=ProviderType.INTERNAL.value,
    )
    beta = Provider(
        name="Beta Security", area_id=north.id, provider_type=ProviderType.EXTERNAL.value,
    )
    gamma = Provider(
        name="Gamma Cleaning", area_id=south.id, provider_type=ProviderType.EXTERNAL.value,
    )
    session.add_all([alpha, beta, gamma])

    backstage = Zone(code="A", name="Backstage", color="#aa0000")
    press = Zone(code="B", name="Press", color="#00aa00")
    paddock = Zone(code="C", name="Paddock", color="#0000aa")
    event = Event(
        name="Expo 2026",
        location="Hall 1",
        start_date=date(2026, 3, 1),
        end_date=date(2026, 3, 5),
    )
    event.zones = [backstage, press]
    other_event = Event(name="Spring Fair", start_date=date(2026, 4, 1), end_date=None)
    other_event.zones = [paddock]
    session.add_all([event, other_event])
    session.flush()

    session.add_all([
        Template(event_id=event.id, name="Expo v1", version=1, is_default=True),
        Template(
            event_id=event.id,
            name="Expo v2",
            version=2,
            is_default=True,
            layout_meta={"header_color": "#123456"},
        ),
        Template(event_id=event.id, name="Expo draft", version=3, is_default=False),
    ])
    session.flush()

    return SimpleNamespace(
        north=north,
        south=south,
        alpha=alpha,
        beta=beta,
        gamma=gamma,
        event=event,
        other_event=other_event,
        zones=(backstage, press),
        paddock=paddock,
    )


@pytest.fixture
def add_employee(session):
    """Factory: ``add_employee(provider, first, last, **fields) -> Employee``."""

    def _add(provider: Provider, first_name: str, last_name: str, **fields: Any) -> Employee:
        employee = Employee(
            provider_id=provider.id,
            first_name=first_name,
            last_name=last_name,
            document_type=fields.pop("document_type", "DNI"),
            document_number=fields.pop("document_number", uuid4().hex[:8].upper()),
            **fields,
        )
        session.add(employee)
        session.flush()
        return employee

    return _add


@pytest.fixture
def make_request(session, workflow, world, test_actor_id):
    """Factory: create a request and drive it to ``until``.

    ``until`` is one of ``"draft"``, ``"submitted"`` or ``"approved"``.
    Returns the ORM ``AccreditationRequest``.
    """

    def _make(
        employee: Employee,
        until: str = "draft",
        event: Event | None = None,
        zone_ids: tuple[UUID, ...] | None = None,
    ) -> AccreditationRequest:
        target_event = event or world.event
        zones = zone_ids if zone_ids is not None else tuple(z.id for z in target_event.zones)
        builder = (
            DraftRequestBuilder()
            .for_employee(employee.id)
            .for_event(target_event.id)
            .with_zones(*zones)
        )
        dto = workflow.create_request(builder, test_actor_id)
        if until in ("submitted", "approved"):
            workflow.submit(dto.id, test_actor_id)
        if until == "approved":
            workflow.approve(dto.id, test_actor_id)
        return session.get(AccreditationRequest, dto.id)

    return _make


@pytest.fixture
def make_ready_credential(make_request, credential_service):
    """Factory: approved request with a generated (``ready``) credential."""

    def _make(employee: Employee, event: Event | None = None) -> Credential:
        request = make_request(employee, until="approved", event=event)
        credential_service.generate(request.credential.id)
        return request.credential

    return _make

"""
Tests for acredita_batch.tasks -- JobHandler protocol, JobRegistry and the
pipeline handlers.
"""

from typing import Any

import pytest

from acredita_batch.orchestrator import _default_job_registry
from acredita_batch.tasks import (
    ExpireEventCredentialsJob,
    GenerateCredentialJob,
    JobHandler,
    JobRegistry,
    RegenerateEventCredentialsJob,
    RenderPrintBatchJob,
    default_job_registry,
)
from acredita_kernel.services.credential_service import (
    EXPIRE_EVENT_JOB,
    GENERATE_JOB,
    REGENERATE_EVENT_JOB,
)
from acredita_kernel.services.print_batch_service import RENDER_JOB


class EchoJob:
    """Minimal JobHandler implementation for testing."""

    @property
    def job_type(self) -> str:
        return "test.echo"

    @property
    def description(self) -> str:
        return "Echo the payload"

    def handle(self, payload: dict[str, Any], context: Any) -> dict[str, Any]:
        return dict(payload)


class TestJobRegistry:
    def test_register_and_get(self):
        registry = JobRegistry()
        handler = EchoJob()
        registry.register(handler)

        assert registry.get("test.echo") is handler
        assert "test.echo" in registry
        assert len(registry) == 1

    def test_duplicate_rejected(self):
        registry = JobRegistry()
        registry.register(EchoJob())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(EchoJob())

    def test_missing_lists_available(self):
        registry = JobRegistry()
        registry.register(EchoJob())
        with pytest.raises(KeyError, match="test.echo"):
            registry.get("test.missing")

    def test_default_registry_is_empty(self):
        assert len(default_job_registry()) == 0

    def test_protocol(self):
        assert isinstance(EchoJob(), JobHandler)


class TestPipelineHandlers:
    def test_pipeline_registry(self):
        registry = _default_job_registry()
        assert registry.list_job_types() == tuple(
            sorted([GENERATE_JOB, EXPIRE_EVENT_JOB, REGENERATE_EVENT_JOB, RENDER_JOB])
        )

    @pytest.mark.parametrize(
        ("handler", "job_type"),
        [
            (GenerateCredentialJob(), GENERATE_JOB),
            (ExpireEventCredentialsJob(), EXPIRE_EVENT_JOB),
            (RegenerateEventCredentialsJob(), REGENERATE_EVENT_JOB),
            (RenderPrintBatchJob(), RENDER_JOB),
        ],
    )
    def test_handlers_satisfy_protocol(self, handler, job_type):
        assert isinstance(handler, JobHandler)
        assert handler.job_type == job_type
        assert handler.description

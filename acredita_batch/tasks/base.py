"""
JobHandler protocol and JobRegistry.

Contract:
    ``JobHandler`` is the interface every background job implements.
    ``JobRegistry`` stores handlers keyed by ``job_type``.
    ``default_job_registry()`` returns a fresh, empty registry.

Invariants enforced:
    - One handler per ``job_type`` string.
    - Handlers never commit; the worker owns the SAVEPOINT around each job.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from acredita_batch.services.context import ServiceContext


@runtime_checkable
class JobHandler(Protocol):
    """Protocol defining the interface for background job handlers.

    Contract:
        - ``job_type``: unique string key registered in JobRegistry.
        - ``description``: human-readable label for logs and the CLI.
        - ``handle()``: processes ONE job inside the worker's SAVEPOINT and
          returns a small JSON-able result for logging.

    Non-goals:
        - Does NOT manage transactions.
        - Does NOT retry; the worker re-queues on exception.
    """

    @property
    def job_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def handle(self, payload: dict[str, Any], context: ServiceContext) -> dict[str, Any]:
        ...


class JobRegistry:
    """Registry mapping job_type strings to JobHandler implementations.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` retrieves by job_type; raises KeyError if missing.
        - ``list_job_types()`` returns all registered job_type strings.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, handler: JobHandler) -> None:
        """Register a job handler.

        Raises:
            ValueError: If a handler with the same job_type is already registered.
        """
        if handler.job_type in self._handlers:
            raise ValueError(
                f"Job type '{handler.job_type}' is already registered"
            )
        self._handlers[handler.job_type] = handler

    def get(self, job_type: str) -> JobHandler:
        """Retrieve a registered handler by job_type.

        Raises:
            KeyError: If no handler is registered for the given job_type.
        """
        try:
            return self._handlers[job_type]
        except KeyError:
            raise KeyError(
                f"No handler registered for type '{job_type}'. "
                f"Available: {sorted(self._handlers.keys())}"
            ) from None

    def list_job_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers.keys()))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers


def default_job_registry() -> JobRegistry:
    """Create and return a fresh, empty JobRegistry."""
    return JobRegistry()

"""
External collaborator protocols.

The kernel consumes authorization, artifact storage and async job dispatch
only through these interfaces.  Concrete adapters live in
``acredita_kernel.storage`` (``LocalBlobStore``) and
``acredita_batch.services.job_queue`` (``DatabaseJobQueue``).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class AuthorizationGate(Protocol):
    """Boolean gate consulted before every transition and operator action.

    ``action`` is a dotted name such as ``"request.approve"`` or
    ``"print_batch.queue"``; ``entity`` is the ORM object or ``None`` for
    collection-level actions.
    """

    def can_perform(self, actor_id: UUID, action: str, entity: Any) -> bool: ...


@runtime_checkable
class BlobStore(Protocol):
    """Path-addressed artifact storage for credential and batch documents."""

    def put(self, path: str, data: bytes) -> str: ...

    def exists(self, path: str) -> bool: ...

    def delete(self, path: str) -> bool: ...

    def url(self, path: str) -> str: ...

    def read(self, path: str) -> bytes: ...


@runtime_checkable
class JobDispatcher(Protocol):
    """Fire-and-forget async job dispatch.  Callers never wait on completion."""

    def schedule(self, job_type: str, payload: dict[str, Any]) -> None: ...


class AllowAllGate:
    """Gate that grants every action (CLI operator and system runs)."""

    def can_perform(self, actor_id: UUID, action: str, entity: Any) -> bool:
        return True


class RoleGate:
    """Gate backed by an action allow-list per actor.

    ``grants`` maps actor id to the set of actions it may perform; ``"*"``
    grants everything.
    """

    def __init__(self, grants: dict[UUID, set[str]]):
        self._grants = {actor: frozenset(actions) for actor, actions in grants.items()}

    def can_perform(self, actor_id: UUID, action: str, entity: Any) -> bool:
        allowed = self._grants.get(actor_id, frozenset())
        return "*" in allowed or action in allowed

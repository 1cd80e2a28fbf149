"""ORM models owned by acredita_batch."""

from acredita_batch.models.job import QueuedJobModel

__all__ = ["QueuedJobModel"]

"""
acredita_kernel -- Accreditation lifecycle, credential generation and print batching.

Layers (inner to outer):
    domain/     pure value objects, status enums, transition table, clock.
    db/         declarative base and engine/session management.
    models/     SQLAlchemy ORM models.
    selectors/  read-only queries returning DTOs.
    storage/    blob store adapter for rendered artifacts.
    rendering/  credential and batch document renderers.
    services/   state machine, credential generator, print-batch aggregator.

The kernel never imports from acredita_batch; job dispatch is reached only
through the ``JobDispatcher`` protocol in ``domain/collaborators.py``.
"""

"""
Shared bootstrap for the operator CLIs.

Loads configuration, configures logging, initializes the engine and makes
sure every table exists.  Imports are local so ``--help`` stays fast.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from acredita_config.schema import AcreditaConfig

ACTOR_ENV_VAR = "ACREDITA_ACTOR_ID"


def bootstrap(config_path: str | None) -> AcreditaConfig:
    from acredita_config import get_active_config
    from acredita_kernel.db.engine import create_tables, init_engine_from_url
    from acredita_kernel.logging_config import configure_logging

    configure_logging()
    config = get_active_config(config_path)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    create_tables()
    return config


def resolve_actor(raw: str | None) -> UUID:
    """``--actor-id`` wins, then ``ACREDITA_ACTOR_ID``, then a fresh UUID."""
    value = raw or os.environ.get(ACTOR_ENV_VAR)
    return UUID(value) if value else uuid4()

"""
acredita_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way services, the job worker and the
    CLIs obtain configuration.  The packaged ``defaults.yaml`` is always
    loaded first; an optional override file (explicit path, or the
    ``ACREDITA_CONFIG`` environment variable) is merged over it.

Architecture position:
    Configuration sits beside the kernel.  The kernel never imports from
    ``acredita_config``; the orchestrator and CLIs pass plain values in.

Failure modes:
    - ``FileNotFoundError`` -- override path does not exist.
    - ``ConfigurationError`` -- unknown key or invalid value.
"""

from __future__ import annotations

import os
from pathlib import Path

from acredita_config.loader import load_yaml_file, merge_config_dicts, parse_config
from acredita_config.schema import (
    AcreditaConfig,
    BulkApprovalConfig,
    CredentialConfig,
    DatabaseConfig,
    PrintBatchConfig,
    StorageConfig,
    WorkerConfig,
)
from acredita_kernel.logging_config import get_logger

__all__ = [
    "AcreditaConfig",
    "BulkApprovalConfig",
    "CredentialConfig",
    "DatabaseConfig",
    "PrintBatchConfig",
    "StorageConfig",
    "WorkerConfig",
    "get_active_config",
]

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "ACREDITA_CONFIG"


def get_active_config(config_path: str | Path | None = None) -> AcreditaConfig:
    """Load defaults, merge the override file if any, and validate.

    ``config_path`` wins over ``ACREDITA_CONFIG``.  A ``DATABASE_URL``
    environment variable, when set, replaces ``database.url``.
    """
    data = load_yaml_file(DEFAULTS_PATH)

    override = config_path or os.environ.get(CONFIG_ENV_VAR)
    source = str(DEFAULTS_PATH)
    if override:
        override_path = Path(override)
        if not override_path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {override_path}")
        data = merge_config_dicts(data, load_yaml_file(override_path))
        source = str(override_path)

    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        data = merge_config_dicts(data, {"database": {"url": database_url}})

    config = parse_config(data, source=source)
    _logger.info(
        "config_loaded",
        extra={
            "source": source,
            "database_dialect": config.database.url.split(":", 1)[0],
            "batch_size": config.bulk_approval.batch_size,
            "max_retries": config.credentials.max_retries,
        },
    )
    return config

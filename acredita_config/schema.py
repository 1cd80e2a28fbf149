"""
Configuration schema (``acredita_config.schema``).

Frozen dataclasses describing every tunable of the pipeline.  Defaults
mirror ``defaults.yaml`` so a dataclass built with no arguments is a valid
configuration on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///acredita.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


@dataclass(frozen=True)
class StorageConfig:
    """Blob store root and the relative folders artifacts are written to."""

    root: str = "storage"
    base_url: str = "/storage"
    images_path: str = "credentials/images"
    pdf_path: str = "credentials/pdf"
    batches_path: str = "print_batches"


@dataclass(frozen=True)
class CredentialConfig:
    image_width: int = 1024
    image_height: int = 1448
    image_quality: int = 90
    qr_size: int = 300
    qr_margin: int = 1
    qr_error_correction: str = "H"
    qr_code_prefix: str = "CRD"
    qr_code_attempts: int = 10
    verify_base_url: str | None = None
    # Regenerating a failed credential is refused once retry_count reaches this.
    max_retries: int = 3
    error_message_max_length: int = 500
    failed_retention_days: int = 30


@dataclass(frozen=True)
class PrintBatchConfig:
    retention_days: int = 90
    stamp_max_attempts: int = 3
    render_resolution: float = 150.0


@dataclass(frozen=True)
class BulkApprovalConfig:
    batch_size: int = 100
    wait_time_seconds: float = 10
    max_wait_seconds: float = 300
    poll_interval_seconds: float = 5


@dataclass(frozen=True)
class WorkerConfig:
    tick_interval_seconds: float = 5
    jobs_per_tick: int = 10
    max_attempts: int = 3


@dataclass(frozen=True)
class AcreditaConfig:
    """Root configuration object returned by ``get_active_config()``."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    credentials: CredentialConfig = field(default_factory=CredentialConfig)
    print_batches: PrintBatchConfig = field(default_factory=PrintBatchConfig)
    bulk_approval: BulkApprovalConfig = field(default_factory=BulkApprovalConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    source: str | None = None

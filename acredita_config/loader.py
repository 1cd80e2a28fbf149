"""
Configuration Loader (``acredita_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the frozen dataclasses of
``acredita_config.schema``.  Runtime callers use
``acredita_config.get_active_config()`` instead of this module.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, wrong type, non-positive size  ->
  ``ConfigurationError`` naming the dotted key.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

import yaml

from acredita_config.schema import (
    AcreditaConfig,
    BulkApprovalConfig,
    CredentialConfig,
    DatabaseConfig,
    PrintBatchConfig,
    StorageConfig,
    WorkerConfig,
)
from acredita_kernel.exceptions import ConfigurationError

_SECTIONS: dict[str, type] = {
    "database": DatabaseConfig,
    "storage": StorageConfig,
    "credentials": CredentialConfig,
    "print_batches": PrintBatchConfig,
    "bulk_approval": BulkApprovalConfig,
    "worker": WorkerConfig,
}

# Keys that must be strictly positive numbers.
_POSITIVE_KEYS = frozenset({
    "credentials.image_width",
    "credentials.image_height",
    "credentials.qr_size",
    "credentials.qr_code_attempts",
    "credentials.max_retries",
    "credentials.error_message_max_length",
    "credentials.failed_retention_days",
    "print_batches.retention_days",
    "print_batches.stamp_max_attempts",
    "bulk_approval.batch_size",
    "bulk_approval.poll_interval_seconds",
    "worker.tick_interval_seconds",
    "worker.jobs_per_tick",
    "worker.max_attempts",
})

_QR_LEVELS = frozenset({"L", "M", "Q", "H"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top-level document must be a mapping")
    return data


def merge_config_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` over ``base`` one section deep."""
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in base.items()}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def _coerce(key: str, value: Any, default: Any, annotation: str) -> Any:
    if value is None:
        if "None" in annotation:
            return None
        raise ConfigurationError(key, "value is required")
    if isinstance(default, bool) or annotation == "bool":
        if not isinstance(value, bool):
            raise ConfigurationError(key, f"expected a boolean, got {value!r}")
        return value
    if annotation == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(key, f"expected an integer, got {value!r}")
        return value
    if annotation == "float":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(key, f"expected a number, got {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ConfigurationError(key, f"expected a string, got {value!r}")
    return value


def parse_section(name: str, data: dict[str, Any]) -> Any:
    cls = _SECTIONS[name]
    fields = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(fields))
    if unknown:
        raise ConfigurationError(f"{name}.{unknown[0]}", "unknown key")

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{name}.{key}"
        field = fields[key]
        value = _coerce(dotted, value, field.default, str(field.type))
        if dotted in _POSITIVE_KEYS and value <= 0:
            raise ConfigurationError(dotted, "must be greater than zero")
        kwargs[key] = value

    section = cls(**kwargs)
    _validate_section(name, section)
    return section


def _validate_section(name: str, section: Any) -> None:
    if name == "credentials" and section.qr_error_correction.upper() not in _QR_LEVELS:
        raise ConfigurationError(
            "credentials.qr_error_correction",
            f"must be one of {sorted(_QR_LEVELS)}",
        )
    if name == "bulk_approval":
        if section.wait_time_seconds < 0:
            raise ConfigurationError("bulk_approval.wait_time_seconds", "must not be negative")
        if section.max_wait_seconds < 0:
            raise ConfigurationError("bulk_approval.max_wait_seconds", "must not be negative")


def parse_config(data: dict[str, Any], source: str | None = None) -> AcreditaConfig:
    """Build an ``AcreditaConfig`` from a merged YAML mapping."""
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ConfigurationError(unknown[0], "unknown configuration section")

    sections: dict[str, Any] = {}
    for name in _SECTIONS:
        raw = data.get(name) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(name, "section must be a mapping")
        sections[name] = parse_section(name, raw)
    return AcreditaConfig(source=source, **sections)

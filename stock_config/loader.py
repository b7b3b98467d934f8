"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Loads the inventory settings YAML into an ``InventoryConfig`` and the
reference-data YAML (products, warehouses, locations) into an
``InMemoryReferenceDirectory``.

Invariants enforced
-------------------
* Unknown settings keys are rejected; no silent typos.
* Environment overrides (``STOCK_DATABASE_URL``, ``STOCK_COST_FLOW``) are
  applied after the file, so deployment can repoint a checked-in config.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective configuration for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid or unknown values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import InventoryConfig
from stock_kernel.exceptions import ConfigurationError
from stock_kernel.logging_config import get_logger
from stock_kernel.services.reference_directory import InMemoryReferenceDirectory

logger = get_logger("config.loader")

ENV_DATABASE_URL = "STOCK_DATABASE_URL"
ENV_COST_FLOW = "STOCK_COST_FLOW"

DEFAULTS_DIR = Path(__file__).parent / "defaults"
DEFAULT_CONFIG_PATH = DEFAULTS_DIR / "inventory.yaml"

_FIELD_NAMES = frozenset(f.name for f in fields(InventoryConfig))


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: Mapping[str, Any]) -> InventoryConfig:
    """
    Build an InventoryConfig from a mapping.

    Accepts either the bare settings mapping or one nested under an
    ``inventory`` key.

    Raises:
        ConfigurationError: On unknown keys or invalid values.
    """
    settings = data.get("inventory", data) if isinstance(data, Mapping) else None
    if not isinstance(settings, Mapping):
        raise ConfigurationError("inventory", "settings must be a mapping")

    unknown = set(settings) - _FIELD_NAMES
    if unknown:
        raise ConfigurationError(
            ", ".join(sorted(unknown)),
            f"unknown setting(s); expected a subset of {sorted(_FIELD_NAMES)}",
        )

    values = dict(settings)
    try:
        if "pool_size" in values:
            values["pool_size"] = int(values["pool_size"])
        if "lock_timeout_seconds" in values:
            values["lock_timeout_seconds"] = float(values["lock_timeout_seconds"])
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("pool_size/lock_timeout_seconds", str(exc)) from exc
    if "cost_flow" in values and isinstance(values["cost_flow"], str):
        values["cost_flow"] = values["cost_flow"].lower()
    if "log_level" in values and isinstance(values["log_level"], str):
        values["log_level"] = values["log_level"].upper()

    return InventoryConfig(**values)


def apply_env_overrides(
    config: InventoryConfig,
    environ: Mapping[str, str] | None = None,
) -> InventoryConfig:
    """Return ``config`` with STOCK_* environment variables applied."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    if environ.get(ENV_DATABASE_URL):
        overrides["database_url"] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_COST_FLOW):
        overrides["cost_flow"] = environ[ENV_COST_FLOW].lower()
    if not overrides:
        return config

    logger.info("config_env_overrides_applied", extra={"keys": sorted(overrides)})
    return InventoryConfig(**{**config.to_dict(), **overrides})


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> InventoryConfig:
    """
    Load the effective InventoryConfig.

    Args:
        path: Settings YAML; defaults to the packaged defaults file.
        environ: Environment mapping for overrides; defaults to os.environ.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = apply_env_overrides(parse_config(load_yaml_file(source)), environ)
    logger.info(
        "config_loaded",
        extra={
            "path": str(source),
            "cost_flow": config.cost_flow,
            "checksum": config_checksum(config),
        },
    )
    return config


def config_checksum(config: InventoryConfig) -> str:
    return compute_checksum(config.to_dict())


def _entry_id(entry: Any, kind: str) -> str:
    if not isinstance(entry, Mapping) or not entry.get("id"):
        raise ConfigurationError(kind, f"every {kind} entry needs an 'id': {entry!r}")
    return str(entry["id"])


def load_reference_directory(path: Path | str) -> InMemoryReferenceDirectory:
    """
    Build an InMemoryReferenceDirectory from a YAML fixture.

    Expected shape::

        products:
          - {id: P1, name: Widget}
          - {id: P9, active: false}
        warehouses:
          - id: W1
            locations:
              - {id: L1, name: General}

    Raises:
        ConfigurationError: If an entry is missing its id.
    """
    data = load_yaml_file(Path(path))
    directory = InMemoryReferenceDirectory()

    for entry in data.get("products") or []:
        directory.register_product(
            _entry_id(entry, "product"),
            name=entry.get("name"),
            active=bool(entry.get("active", True)),
        )

    for entry in data.get("warehouses") or []:
        warehouse_id = _entry_id(entry, "warehouse")
        directory.register_warehouse(
            warehouse_id,
            name=entry.get("name"),
            active=bool(entry.get("active", True)),
        )
        for location in entry.get("locations") or []:
            directory.register_location(
                warehouse_id,
                _entry_id(location, "location"),
                name=location.get("name"),
                active=bool(location.get("active", True)),
            )

    logger.info(
        "reference_directory_loaded",
        extra={
            "path": str(path),
            "products": len(directory.product_ids),
            "warehouses": len(directory.warehouse_ids),
        },
    )
    return directory

"""
Inventory configuration: schema, YAML loader and reference-data fixtures.

Usage:
    from stock_config import load_config, load_reference_directory

    config = load_config("inventory.yaml")
    directory = load_reference_directory("reference.yaml")
"""

from stock_config.loader import (
    apply_env_overrides,
    compute_checksum,
    config_checksum,
    load_config,
    load_reference_directory,
    parse_config,
)
from stock_config.schema import InventoryConfig

__all__ = [
    "InventoryConfig",
    "apply_env_overrides",
    "compute_checksum",
    "config_checksum",
    "load_config",
    "load_reference_directory",
    "parse_config",
]

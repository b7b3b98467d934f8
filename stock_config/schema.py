"""
Inventory Configuration Schema (``stock_config.schema``).

Defines the settings the accounting engine and tooling read at start-up,
with sensible defaults.  Values are loaded from YAML by
``stock_config.loader``; the dataclass validates itself on construction.

    config = InventoryConfig(cost_flow="lifo", lock_timeout_seconds=5.0)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from stock_kernel.exceptions import ConfigurationError
from stock_kernel.logging_config import get_logger

logger = get_logger("config.schema")


VALID_COST_FLOWS = frozenset({"fifo", "lifo"})
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class InventoryConfig:
    """
    Runtime configuration for inventory accounting.

    Fields:
        cost_flow: Order in which outbound movements consume cost layers.
        database_url: SQLAlchemy URL (PostgreSQL in production, SQLite for
            tests and local tooling).
        echo_sql: Log every SQL statement.
        pool_size: Connection pool size (PostgreSQL only).
        lock_timeout_seconds: Max wait for a per-key lock.
        default_location_name: Location name preferred by
            default_location_for_warehouse().
        log_level: Level for the stock_kernel logger hierarchy.
    """

    cost_flow: str = "fifo"
    database_url: str = "sqlite:///stock.db"
    echo_sql: bool = False
    pool_size: int = 20
    lock_timeout_seconds: float = 30.0
    default_location_name: str | None = "General"
    log_level: str = "INFO"

    def __post_init__(self):
        if self.cost_flow not in VALID_COST_FLOWS:
            raise ConfigurationError(
                "cost_flow",
                f"must be one of {sorted(VALID_COST_FLOWS)}, got {self.cost_flow!r}",
            )
        if not self.database_url:
            raise ConfigurationError("database_url", "must not be empty")
        if self.pool_size <= 0:
            raise ConfigurationError("pool_size", f"must be positive, got {self.pool_size}")
        if self.lock_timeout_seconds <= 0:
            raise ConfigurationError(
                "lock_timeout_seconds",
                f"must be positive, got {self.lock_timeout_seconds}",
            )
        if self.log_level not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                "log_level",
                f"must be one of {sorted(VALID_LOG_LEVELS)}, got {self.log_level!r}",
            )

        logger.debug(
            "inventory_config_initialized",
            extra={
                "cost_flow": self.cost_flow,
                "lock_timeout_seconds": self.lock_timeout_seconds,
                "default_location_name": self.default_location_name,
            },
        )

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

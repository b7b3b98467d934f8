"""Database layer - engine, base classes, types, and immutability listeners."""

from stock_kernel.db.base import Base, TrackedBase, UUIDString
from stock_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from stock_kernel.db.types import Quantity, ReferenceId, UnitCost, round_cost, to_decimal

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UUIDString",
    "Quantity",
    "UnitCost",
    "ReferenceId",
    "round_cost",
    "to_decimal",
]

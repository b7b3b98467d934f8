"""
Stock Kernel

Inventory quantity and cost-layer accounting over a relational store:
- Balance, cost-layer and ledger writes applied as one unit of work
- FIFO/LIFO cost-layer consumption
- Append-only transaction ledger and audit trail
- Per-key serialization of concurrent movements
"""

__version__ = "0.1.0"

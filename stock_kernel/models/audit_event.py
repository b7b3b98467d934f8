"""
Module: stock_kernel.models.audit_event
Responsibility: ORM persistence for the inventory audit trail.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    A1 -- Audit records are append-only; no UPDATE or DELETE (db/immutability.py).
    A2 -- One audit event per successful mutation, written in the same unit of
          work as the mutation itself.  Failed operations roll back and leave
          no audit row.
    A3 -- entity_seq orders the events of one entity; unique per entity.

Audit relevance:
    Every successful receipt, issue, adjustment, reservation, transfer leg,
    attribute update and soft delete produces an InventoryAuditEvent carrying
    the balance state before and after the change.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable inventory actions."""

    RECEIPT_RECORDED = "receipt_recorded"
    ISSUE_RECORDED = "issue_recorded"
    ADJUSTED_IN = "adjusted_in"
    ADJUSTED_OUT = "adjusted_out"
    RESERVED = "reserved"
    UNRESERVED = "unreserved"
    TRANSFERRED_OUT = "transferred_out"
    TRANSFERRED_IN = "transferred_in"
    BALANCE_UPDATED = "balance_updated"
    BALANCE_DELETED = "balance_deleted"


class InventoryAuditEvent(Base):
    """
    Audit event for one successful inventory mutation.

    Contract:
        Rows are append-only, never updated or deleted.

    Non-goals:
        - No tamper-evident hash chain.  Integrity rests on the ORM
          immutability listeners and database permissions.
    """

    __tablename__ = "inventory_audit_events"

    __table_args__ = (
        Index("idx_inv_audit_entity", "entity_type", "entity_id"),
        Index("idx_inv_audit_action", "action"),
        Index("idx_inv_audit_occurred", "occurred_at"),
        UniqueConstraint("entity_type", "entity_id", "entity_seq", name="uq_inv_audit_entity_seq"),
    )

    # Type of entity being audited ("InventoryBalance")
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Balance key rendered as "product@warehouse/location"
    entity_id: Mapped[str] = mapped_column(String(310), nullable=False)

    # 1, 2, 3, ... per entity; allocated under the balance key lock
    entity_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    before_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Ledger row produced by the same mutation, if any
    transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<InventoryAuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

"""
AuditorService -- append-only audit trail for inventory mutations.

Responsibility:
    Persists one InventoryAuditEvent per successful mutation (actor, action,
    entity, before-state, after-state, note) and reads the trail back for an
    entity.

Architecture position:
    Kernel > Services -- imperative shell, called by InventoryAccountingEngine
    inside the same UnitOfWork as the mutation being audited.

Invariants enforced:
    - Append-only: audit events are never modified or deleted (ORM listeners
      on the InventoryAuditEvent model).
    - Failures are not audited: the audit row shares the mutation's
      transaction, so a rollback removes both.
    - entity_seq is max + 1 per entity, allocated under the balance key lock.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - No hash chain.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import AuditRecord
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, InventoryAuditEvent

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    transaction_id: UUID | None
    note: str | None


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, oldest first."""

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(entry.action for entry in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and reading inventory audit events.

    Guarantees:
        - Every ``record()`` call flushes exactly one InventoryAuditEvent.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        """
        Args:
            session: SQLAlchemy session of the active unit of work.
            clock: Clock for timestamps. Defaults to SystemClock.
        """
        self._session = session
        self._clock = clock or SystemClock()

    def _next_seq(self, entity_type: str, entity_id: str) -> int:
        current = self._session.execute(
            select(func.max(InventoryAuditEvent.entity_seq)).where(
                InventoryAuditEvent.entity_type == entity_type,
                InventoryAuditEvent.entity_id == entity_id,
            )
        ).scalar()
        return (current or 0) + 1

    def record(
        self,
        record: AuditRecord,
        transaction_id: UUID | None = None,
    ) -> InventoryAuditEvent:
        """
        Persist ``record`` as an audit event.

        Raises:
            ValueError: If ``record.action`` is not an AuditAction value.
        """
        action = AuditAction(record.action)
        event = InventoryAuditEvent(
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            entity_seq=self._next_seq(record.entity_type, record.entity_id),
            action=action.value,
            actor_id=record.actor_id,
            occurred_at=self._clock.now(),
            before_state=record.before,
            after_state=record.after,
            transaction_id=transaction_id,
            note=record.note,
        )
        self._session.add(event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": record.entity_type,
                "entity_id": record.entity_id,
                "action": action.value,
                "seq": event.entity_seq,
            },
        )
        return event

    def get_trace(self, entity_type: str, entity_id: str) -> AuditTrace:
        """All audit events for an entity ordered by entity_seq."""
        events = self._session.execute(
            select(InventoryAuditEvent)
            .where(
                InventoryAuditEvent.entity_type == entity_type,
                InventoryAuditEvent.entity_id == entity_id,
            )
            .order_by(InventoryAuditEvent.entity_seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=event.entity_seq,
                    action=AuditAction(event.action),
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    before=event.before_state,
                    after=event.after_state,
                    transaction_id=event.transaction_id,
                    note=event.note,
                )
                for event in events
            ),
        )

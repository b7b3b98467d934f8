"""
BaseService -- abstract base for the stock kernel's session-bound services.

Responsibility:
    Provides the common constructor and session-handling contract for the
    balance store, cost-layer store, transaction ledger and auditor.  All of
    them receive the SQLAlchemy ``Session`` of the active unit of work and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The UnitOfWork owns
    commit/rollback, which is what makes balance + ledger + cost-layer
    updates atomic.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for session-bound kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT manage transaction lifecycle (see UnitOfWork).
    """

    def __init__(self, session: Session):
        """
        Args:
            session: SQLAlchemy session of the active unit of work.
        """
        self.session = session

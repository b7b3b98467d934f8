"""Services for the stock kernel (write side)."""

from stock_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from stock_kernel.services.balance_store import BalanceStore
from stock_kernel.services.cost_layer_store import CostLayerStore
from stock_kernel.services.locks import KeyLockRegistry
from stock_kernel.services.notifications import (
    NotificationSink,
    NullNotificationSink,
    RecordingNotificationSink,
    SubscriberNotificationSink,
)
from stock_kernel.services.reference_directory import (
    InMemoryReferenceDirectory,
    LocationEntry,
    ReferenceDirectory,
    ReferenceEntry,
)
from stock_kernel.services.transaction_ledger import TransactionLedger
from stock_kernel.services.unit_of_work import UnitOfWork

__all__ = [
    "AuditorService",
    "AuditTrace",
    "AuditTraceEntry",
    "BalanceStore",
    "CostLayerStore",
    "InMemoryReferenceDirectory",
    "KeyLockRegistry",
    "LocationEntry",
    "NotificationSink",
    "NullNotificationSink",
    "RecordingNotificationSink",
    "ReferenceDirectory",
    "ReferenceEntry",
    "SubscriberNotificationSink",
    "TransactionLedger",
    "UnitOfWork",
]

from transaction_capture.domain.transactions import (
    NewTransaction,
    RollingStats,
    TransactionRecord,
)
from transaction_capture.domain.value_objects import (
    AlertKind,
    Amount,
    ServiceType,
    SyncStatus,
)

__all__ = [
    "AlertKind",
    "Amount",
    "NewTransaction",
    "RollingStats",
    "ServiceType",
    "SyncStatus",
    "TransactionRecord",
]

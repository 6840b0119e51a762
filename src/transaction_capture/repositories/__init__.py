from transaction_capture.repositories.interfaces import TransactionQueue
from transaction_capture.repositories.sqlite import (
    SQLiteDatabase,
    SQLiteTransactionQueue,
)

__all__ = [
    "SQLiteDatabase",
    "SQLiteTransactionQueue",
    "TransactionQueue",
]

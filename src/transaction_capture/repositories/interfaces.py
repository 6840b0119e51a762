from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from transaction_capture.domain.transactions import NewTransaction, TransactionRecord
from transaction_capture.domain.value_objects import SyncStatus


class TransactionQueue(ABC):
    """Durable append log of captured transactions, indexed by status."""

    @abstractmethod
    def insert(self, txn: NewTransaction) -> int:
        """Persist a new pending record and return its local id."""

    @abstractmethod
    def get(self, local_id: int) -> TransactionRecord | None:
        pass

    @abstractmethod
    def get_by_external_id(self, external_id: str) -> TransactionRecord | None:
        pass

    @abstractmethod
    def list_by_status(self, *statuses: SyncStatus) -> list[TransactionRecord]:
        """Records in any of the given statuses, in insertion order."""

    @abstractmethod
    def list_all(self) -> Iterable[TransactionRecord]:
        pass

    @abstractmethod
    def count_by_status(self) -> dict[SyncStatus, int]:
        pass

    @abstractmethod
    def update_status(
        self,
        local_id: int,
        new_status: SyncStatus,
        external_id: str | None = None,
        synced_at: datetime | None = None,
    ) -> None:
        """Apply a lifecycle transition.

        Raises RecordNotFound for unknown ids and IllegalTransition for any
        change the record lifecycle does not allow. A synced transition whose
        external_id another record already holds raises DuplicateExternalId.
        """

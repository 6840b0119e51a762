from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from transaction_capture.domain.transactions import RollingStats, TransactionRecord
from transaction_capture.domain.value_objects import AlertKind, ServiceType


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AnomalyCheck:
    is_anomalous: bool
    reason: str
    z_score: Decimal | None = None
    severity: AnomalySeverity | None = None
    stats: RollingStats | None = None

    @classmethod
    def clear(cls, reason: str, stats: RollingStats | None = None) -> AnomalyCheck:
        return cls(is_anomalous=False, reason=reason, stats=stats)


@dataclass
class DrainResult:
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    flagged: int = 0
    skipped: str | None = None

    @property
    def was_skipped(self) -> bool:
        return self.skipped is not None


class RemoteStore(ABC):
    @abstractmethod
    def insert(self, record: TransactionRecord) -> str:
        """Send a record upstream and return the identifier it was assigned.

        Raises RemoteSyncFailure on any network, timeout or validation error.
        """


class StatsAccessor(ABC):
    @abstractmethod
    def get(
        self, organization_id: str, service_type: ServiceType, window: str
    ) -> RollingStats | None:
        """Current snapshot, or None when there is no history.

        Raises StatsLookupFailure when the backing store cannot be read.
        """


class AlertEmitter(ABC):
    @abstractmethod
    def notify(self, kind: AlertKind, payload: Mapping[str, Any]) -> None:
        pass


ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor(ABC):
    @abstractmethod
    def is_online(self) -> bool:
        pass

    @abstractmethod
    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a callback for online/offline transitions.

        Returns a callable that removes the subscription.
        """

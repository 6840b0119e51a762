from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest

from transaction_capture.config import get_settings
from transaction_capture.domain.transactions import RollingStats, TransactionRecord
from transaction_capture.domain.value_objects import AlertKind, ServiceType
from transaction_capture.exceptions import RemoteSyncFailure
from transaction_capture.repositories.sqlite import (
    SQLiteDatabase,
    SQLiteTransactionQueue,
)
from transaction_capture.services.anomaly_detection import AnomalyDetectionService
from transaction_capture.services.connectivity import ManualConnectivity
from transaction_capture.services.interfaces import AlertEmitter, RemoteStore
from transaction_capture.services.remote import StaticStatsAccessor
from transaction_capture.services.sync import SyncManager

FIXED_NOW = datetime(2025, 3, 14, 15, 9, 26, tzinfo=UTC)


class FakeRemoteStore(RemoteStore):
    """Assigns ids r-1, r-2, ... and fails for the configured local ids."""

    def __init__(self, fail_for: set[int] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.calls: list[TransactionRecord] = []
        self._counter = 0

    def insert(self, record: TransactionRecord) -> str:
        self.calls.append(record)
        if record.local_id in self.fail_for:
            raise RemoteSyncFailure("Network timeout")
        self._counter += 1
        return f"r-{self._counter}"

    @property
    def inserted_local_ids(self) -> list[int]:
        return [record.local_id for record in self.calls]


class RecordingAlertEmitter(AlertEmitter):
    def __init__(self) -> None:
        self.alerts: list[tuple[AlertKind, dict[str, Any]]] = []

    def notify(self, kind: AlertKind, payload: Mapping[str, Any]) -> None:
        self.alerts.append((kind, dict(payload)))


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db() -> Iterator[SQLiteDatabase]:
    database = SQLiteDatabase(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def queue(db: SQLiteDatabase) -> SQLiteTransactionQueue:
    return SQLiteTransactionQueue(db)


@pytest.fixture
def remote_store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def alert_emitter() -> RecordingAlertEmitter:
    return RecordingAlertEmitter()


@pytest.fixture
def connectivity() -> ManualConnectivity:
    return ManualConnectivity(online=False)


@pytest.fixture
def pos_stats() -> RollingStats:
    return RollingStats(
        organization_id="org1",
        service_type=ServiceType.POS,
        time_window="30d",
        mean_amount=Decimal("100.0000"),
        std_dev=Decimal("20.0000"),
        sample_size=250,
    )


@pytest.fixture
def stats_accessor(pos_stats: RollingStats) -> StaticStatsAccessor:
    return StaticStatsAccessor([pos_stats])


@pytest.fixture
def detector(stats_accessor: StaticStatsAccessor) -> AnomalyDetectionService:
    return AnomalyDetectionService(stats_accessor=stats_accessor, time_window="30d")


@pytest.fixture
def manager(
    queue: SQLiteTransactionQueue,
    remote_store: FakeRemoteStore,
    connectivity: ManualConnectivity,
    detector: AnomalyDetectionService,
    alert_emitter: RecordingAlertEmitter,
) -> Iterator[SyncManager]:
    sync_manager = SyncManager(
        queue=queue,
        remote_store=remote_store,
        connectivity=connectivity,
        anomaly_detector=detector,
        alert_emitter=alert_emitter,
        timezone="America/New_York",
        drain_interval=3600,
        clock=lambda: FIXED_NOW,
    )
    yield sync_manager
    sync_manager.close()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW

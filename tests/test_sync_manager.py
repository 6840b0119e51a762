"""Tests for the offline-first sync manager."""

import threading
import time
from datetime import UTC, datetime

import pytest

from transaction_capture.domain.transactions import NewTransaction, TransactionRecord
from transaction_capture.domain.value_objects import (
    AlertKind,
    Amount,
    ServiceType,
    SyncStatus,
)
from transaction_capture.exceptions import (
    AlertDeliveryFailure,
    InvalidAmountFormat,
    InvalidServiceType,
    StatsLookupFailure,
)
from transaction_capture.repositories.sqlite import SQLiteTransactionQueue
from transaction_capture.services.anomaly_detection import AnomalyDetectionService
from transaction_capture.services.connectivity import ManualConnectivity
from transaction_capture.services.interfaces import (
    AlertEmitter,
    RemoteStore,
    StatsAccessor,
)
from transaction_capture.services.sync import SyncManager


def queue_directly(queue: SQLiteTransactionQueue, amount: str = "100.0000") -> int:
    return queue.insert(
        NewTransaction(
            organization_id="org1",
            service_type=ServiceType.POS,
            amount=Amount.parse(amount),
            timezone="UTC",
            created_at=datetime(2025, 3, 14, tzinfo=UTC),
        )
    )


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class BlockingRemoteStore(RemoteStore):
    """Holds the first insert until released."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls: list[int] = []

    def insert(self, record: TransactionRecord) -> str:
        self.calls.append(record.local_id)
        if len(self.calls) == 1:
            self.entered.set()
            self.release.wait(timeout=5)
        return f"r-{record.local_id}"


class DisconnectingRemoteStore(RemoteStore):
    """Accepts one record, then drops the connection."""

    def __init__(self, connectivity: ManualConnectivity) -> None:
        self.connectivity = connectivity
        self.calls: list[int] = []

    def insert(self, record: TransactionRecord) -> str:
        self.calls.append(record.local_id)
        self.connectivity.set_online(False)
        return f"r-{record.local_id}"


class FixedIdRemoteStore(RemoteStore):
    """Answers every insert with the same remote id."""

    def __init__(self, remote_id: str) -> None:
        self.remote_id = remote_id
        self.calls: list[int] = []

    def insert(self, record: TransactionRecord) -> str:
        self.calls.append(record.local_id)
        return self.remote_id


class GatedAlertEmitter(AlertEmitter):
    """Holds every alert until the gate opens."""

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.delivered: list[dict] = []

    def notify(self, kind, payload):
        self.gate.wait(timeout=5)
        self.delivered.append(dict(payload))


class FailingAlertEmitter(AlertEmitter):
    def notify(self, kind, payload):
        raise AlertDeliveryFailure("webhook down")


class FailingStatsAccessor(StatsAccessor):
    def get(self, organization_id, service_type, window):
        raise StatsLookupFailure("stats store unreachable")


class TestAddTransaction:
    def test_offline_capture_is_queued(self, manager, queue, remote_store, fixed_now):
        local_id = manager.add_transaction("org1", "pos", "100.0000")

        records = queue.list_by_status(SyncStatus.PENDING)
        assert len(records) == 1
        record = records[0]
        assert str(record.local_id) == local_id
        assert record.status == SyncStatus.PENDING
        assert record.amount.to_fixed4() == "100.0000"
        assert record.timezone == "America/New_York"
        assert record.created_at == fixed_now
        assert remote_store.calls == []

    def test_invalid_amount_leaves_queue_empty(self, manager, queue):
        with pytest.raises(InvalidAmountFormat):
            manager.add_transaction("org1", "pos", "abc")

        assert list(queue.list_all()) == []

    def test_invalid_service_type_leaves_queue_empty(self, manager, queue):
        with pytest.raises(InvalidServiceType):
            manager.add_transaction("org1", "refund", "10.0000")

        assert list(queue.list_all()) == []

    def test_negative_amount_is_rejected(self, manager, queue):
        with pytest.raises(InvalidAmountFormat):
            manager.add_transaction("org1", "pos", "-10.0000")

        assert list(queue.list_all()) == []

    def test_amount_is_normalized(self, manager, queue):
        local_id = manager.add_transaction("org1", "invoice", "12.5")

        record = queue.get(int(local_id))
        assert record is not None
        assert record.amount.to_fixed4() == "12.5000"
        assert record.service_type == ServiceType.INVOICE

    def test_online_capture_drains_in_background(
        self, manager, connectivity, queue, remote_store
    ):
        connectivity.set_online(True)

        local_id = manager.add_transaction("org1", "pos", "100.0000")

        assert manager.wait_for_idle(timeout=5)
        record = queue.get(int(local_id))
        assert record is not None
        assert record.status == SyncStatus.SYNCED
        assert remote_store.inserted_local_ids == [int(local_id)]

    def test_each_capture_gets_a_new_id(self, manager):
        first = manager.add_transaction("org1", "pos", "1")
        second = manager.add_transaction("org1", "pos", "1")

        assert first != second


class TestDrain:
    def test_drain_is_noop_offline(self, manager, remote_store):
        manager.add_transaction("org1", "pos", "100.0000")

        result = manager.drain()

        assert result.skipped == "offline"
        assert remote_store.calls == []
        assert manager.pending_count() == 1

    def test_drain_syncs_pending_record(self, manager, connectivity, queue, fixed_now):
        local_id = manager.add_transaction("org1", "pos", "100.0000")
        connectivity.set_online(True)

        result = manager.drain()

        record = queue.get(int(local_id))
        assert record is not None
        assert record.status == SyncStatus.SYNCED
        assert record.external_id == "r-1"
        assert record.synced_at == fixed_now
        assert result.attempted == 1
        assert result.synced == 1

    def test_failure_is_isolated_per_record(self, manager, connectivity, queue, remote_store):
        ids = [int(manager.add_transaction("org1", "pos", "100")) for _ in range(3)]
        remote_store.fail_for = {ids[1]}
        connectivity.set_online(True)

        result = manager.drain()

        statuses = [queue.get(i).status for i in ids]
        assert statuses == [SyncStatus.SYNCED, SyncStatus.ERROR, SyncStatus.SYNCED]
        assert remote_store.inserted_local_ids == ids
        assert result.synced == 2
        assert result.failed == 1

    def test_records_are_sent_in_capture_order(self, manager, connectivity, remote_store):
        ids = [int(manager.add_transaction("org1", "pos", str(n))) for n in (3, 1, 2)]
        connectivity.set_online(True)

        manager.drain()

        assert remote_store.inserted_local_ids == ids

    def test_synced_record_is_never_resent(self, manager, connectivity, remote_store):
        manager.add_transaction("org1", "pos", "100.0000")
        connectivity.set_online(True)

        manager.drain()
        second = manager.drain()

        assert len(remote_store.calls) == 1
        assert second.attempted == 0

    def test_empty_queue_drain_is_idempotent(self, manager, connectivity, remote_store):
        connectivity.set_online(True)

        first = manager.drain()
        second = manager.drain()

        assert first.attempted == second.attempted == 0
        assert remote_store.calls == []

    def test_error_record_is_retried(self, manager, connectivity, queue, remote_store):
        local_id = int(manager.add_transaction("org1", "pos", "100.0000"))
        remote_store.fail_for = {local_id}
        connectivity.set_online(True)
        manager.drain()
        assert queue.get(local_id).status == SyncStatus.ERROR

        remote_store.fail_for = set()
        result = manager.drain()

        record = queue.get(local_id)
        assert record.status == SyncStatus.SYNCED
        assert record.external_id == "r-1"
        assert result.synced == 1
        assert len(remote_store.calls) == 2

    def test_error_record_retried_every_cycle(self, manager, connectivity, remote_store):
        local_id = int(manager.add_transaction("org1", "pos", "100.0000"))
        remote_store.fail_for = {local_id}
        connectivity.set_online(True)

        for _ in range(3):
            manager.drain()

        assert remote_store.inserted_local_ids == [local_id] * 3
        assert manager.pending_count() == 1

    def test_going_offline_stops_the_batch(self, queue):
        connectivity = ManualConnectivity(online=True)
        remote = DisconnectingRemoteStore(connectivity)
        ids = [queue_directly(queue) for _ in range(3)]
        manager = SyncManager(queue, remote, connectivity, timezone="UTC")

        try:
            result = manager.drain()
        finally:
            manager.close()

        assert remote.calls == [ids[0]]
        assert result.synced == 1
        assert queue.get(ids[0]).status == SyncStatus.SYNCED
        assert queue.get(ids[1]).status == SyncStatus.PENDING
        assert queue.get(ids[2]).status == SyncStatus.PENDING

    def test_overlapping_drain_is_coalesced(self, queue):
        connectivity = ManualConnectivity(online=True)
        remote = BlockingRemoteStore()
        first_id = queue_directly(queue)
        manager = SyncManager(queue, remote, connectivity, timezone="UTC")
        results = []
        worker = threading.Thread(target=lambda: results.append(manager.drain()))

        try:
            worker.start()
            assert remote.entered.wait(timeout=5)

            second_id = queue_directly(queue)
            overlapping = manager.drain()
            remote.release.set()
            worker.join(timeout=5)
        finally:
            remote.release.set()
            manager.close()

        assert overlapping.skipped == "busy"
        assert remote.calls == [first_id, second_id]
        assert results[0].synced == 2
        assert queue.get(second_id).status == SyncStatus.SYNCED

    def test_reused_remote_id_does_not_block_later_records(self, queue):
        connectivity = ManualConnectivity(online=True)
        remote = FixedIdRemoteStore("dup")
        ids = [queue_directly(queue) for _ in range(3)]
        manager = SyncManager(queue, remote, connectivity, timezone="UTC")

        try:
            first = manager.drain()
            second = manager.drain()
        finally:
            manager.close()

        assert remote.calls == [ids[0], ids[1], ids[2], ids[1], ids[2]]
        assert [queue.get(i).status for i in ids] == [
            SyncStatus.SYNCED,
            SyncStatus.ERROR,
            SyncStatus.ERROR,
        ]
        assert queue.get(ids[0]).external_id == "dup"
        assert (first.synced, first.failed) == (1, 2)
        assert (second.synced, second.failed) == (0, 2)


class TestFraudScreening:
    def test_outlier_raises_fraud_alert(self, manager, connectivity, queue, alert_emitter):
        local_id = int(manager.add_transaction("org1", "pos", "5000.0000"))
        connectivity.set_online(True)

        result = manager.drain()
        assert manager.wait_for_idle(timeout=5)

        assert result.flagged == 1
        assert len(alert_emitter.alerts) == 1
        kind, payload = alert_emitter.alerts[0]
        assert kind == AlertKind.FRAUD
        assert payload["organization_id"] == "org1"
        assert payload["local_id"] == local_id
        assert payload["external_id"] == "r-1"
        assert payload["amount"] == "5000.0000"
        assert payload["z_score"] == "245"
        assert "exceeds" in payload["reason"]
        assert queue.get(local_id).status == SyncStatus.SYNCED

    def test_normal_amount_raises_no_alert(self, manager, connectivity, alert_emitter):
        manager.add_transaction("org1", "pos", "105.0000")
        connectivity.set_online(True)

        result = manager.drain()
        assert manager.wait_for_idle(timeout=5)

        assert result.flagged == 0
        assert alert_emitter.alerts == []

    def test_failed_record_is_not_screened(self, manager, connectivity, remote_store, alert_emitter):
        local_id = int(manager.add_transaction("org1", "pos", "5000.0000"))
        remote_store.fail_for = {local_id}
        connectivity.set_online(True)

        manager.drain()
        assert manager.wait_for_idle(timeout=5)

        assert alert_emitter.alerts == []

    def test_slow_alert_channel_does_not_hold_up_drain(self, queue, remote_store, detector):
        connectivity = ManualConnectivity(online=True)
        emitter = GatedAlertEmitter()
        local_id = queue_directly(queue, "5000.0000")
        later_id = queue_directly(queue, "100.0000")
        manager = SyncManager(
            queue,
            remote_store,
            connectivity,
            anomaly_detector=detector,
            alert_emitter=emitter,
            timezone="UTC",
        )

        try:
            result = manager.drain()

            assert result.synced == 2
            assert result.flagged == 1
            assert emitter.delivered == []
            assert queue.get(later_id).status == SyncStatus.SYNCED

            emitter.gate.set()
            assert manager.wait_for_idle(timeout=5)
        finally:
            emitter.gate.set()
            manager.close()

        assert [alert["local_id"] for alert in emitter.delivered] == [local_id]

    def test_alert_failure_does_not_undo_sync(self, queue, remote_store, detector):
        connectivity = ManualConnectivity(online=True)
        local_id = queue_directly(queue, "5000.0000")
        manager = SyncManager(
            queue,
            remote_store,
            connectivity,
            anomaly_detector=detector,
            alert_emitter=FailingAlertEmitter(),
            timezone="UTC",
        )

        try:
            result = manager.drain()
        finally:
            manager.close()

        assert result.synced == 1
        assert result.flagged == 1
        assert queue.get(local_id).status == SyncStatus.SYNCED

    def test_stats_failure_does_not_block_sync(self, queue, remote_store, alert_emitter):
        connectivity = ManualConnectivity(online=True)
        emitter = alert_emitter
        local_id = queue_directly(queue, "5000.0000")
        manager = SyncManager(
            queue,
            remote_store,
            connectivity,
            anomaly_detector=AnomalyDetectionService(FailingStatsAccessor()),
            alert_emitter=emitter,
            timezone="UTC",
        )

        try:
            result = manager.drain()
        finally:
            manager.close()

        assert result.synced == 1
        assert result.flagged == 0
        assert emitter.alerts == []
        assert queue.get(local_id).status == SyncStatus.SYNCED


class TestBackgroundDrains:
    def test_coming_online_triggers_drain(self, manager, connectivity, queue, remote_store):
        local_id = int(manager.add_transaction("org1", "pos", "100.0000"))
        manager.start()

        connectivity.set_online(True)

        assert wait_until(lambda: queue.get(local_id).status == SyncStatus.SYNCED)
        assert manager.wait_for_idle(timeout=5)
        assert remote_store.inserted_local_ids == [local_id]

    def test_start_drains_when_already_online(self, queue, remote_store):
        connectivity = ManualConnectivity(online=True)
        local_id = queue_directly(queue)
        manager = SyncManager(queue, remote_store, connectivity, timezone="UTC")

        try:
            manager.start()
            assert wait_until(lambda: queue.get(local_id).status == SyncStatus.SYNCED)
        finally:
            manager.wait_for_idle(timeout=5)
            manager.close()

    def test_timer_drains_periodically(self, queue, remote_store):
        connectivity = ManualConnectivity(online=True)
        remote = remote_store
        manager = SyncManager(
            queue, remote, connectivity, timezone="UTC", drain_interval=0.05
        )

        try:
            manager.start()
            assert manager.wait_for_idle(timeout=5)

            local_id = queue_directly(queue)

            assert wait_until(lambda: queue.get(local_id).status == SyncStatus.SYNCED)
        finally:
            manager.wait_for_idle(timeout=5)
            manager.close()

    def test_stop_unsubscribes_from_connectivity(self, manager, connectivity, remote_store):
        manager.add_transaction("org1", "pos", "100.0000")
        manager.start()
        manager.stop()

        connectivity.set_online(True)

        assert manager.wait_for_idle(timeout=5)
        assert remote_store.calls == []

    def test_start_is_idempotent(self, manager, connectivity, remote_store):
        manager.add_transaction("org1", "pos", "100.0000")
        manager.start()
        manager.start()

        connectivity.set_online(True)

        assert wait_until(lambda: manager.pending_count() == 0)
        assert manager.wait_for_idle(timeout=5)
        assert len(remote_store.calls) == 1

    def test_context_manager_starts_and_closes(self, queue, remote_store):
        connectivity = ManualConnectivity(online=False)
        with SyncManager(queue, remote_store, connectivity, timezone="UTC") as manager:
            manager.add_transaction("org1", "pos", "1")
            assert manager.pending_count() == 1


class TestConstruction:
    def test_rejects_non_positive_interval(self, queue, remote_store, connectivity):
        with pytest.raises(ValueError, match="drain_interval"):
            SyncManager(queue, remote_store, connectivity, drain_interval=0)

    def test_timezone_defaults_to_local_zone(self, queue, remote_store, connectivity, monkeypatch):
        monkeypatch.setattr(
            "transaction_capture.services.sync.resolve_local_timezone", lambda: "Asia/Tokyo"
        )

        manager = SyncManager(queue, remote_store, connectivity)
        try:
            assert manager.timezone == "Asia/Tokyo"
        finally:
            manager.close()

    def test_pending_count_includes_errors(self, manager, connectivity, remote_store):
        failing = int(manager.add_transaction("org1", "pos", "1"))
        manager.add_transaction("org1", "pos", "2")
        remote_store.fail_for = {failing}
        connectivity.set_online(True)
        manager.drain()

        manager.add_transaction("org1", "pos", "3")
        manager.wait_for_idle(timeout=5)

        assert manager.pending_count() == 1

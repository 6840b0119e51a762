"""Offline-first sync of captured transactions.

Transactions are written to the local queue first and pushed to the remote
store by drains. Drains run on a single background worker, triggered by a
fixed-interval timer, by offline -> online transitions and opportunistically
after each capture. At most one drain is in flight per manager; overlapping
requests are coalesced into a single re-run of the in-flight drain.

Record lifecycle::

    pending --(remote accepted)--> synced      (terminal)
    pending --(remote failed)----> error
    error   --(next drain)-------> pending --> ...

Retries are unbounded: every drain re-attempts every pending and error record.
Fraud alerts are handed to a separate worker so a slow alert channel never
holds up a drain.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from types import TracebackType
from typing import Any
from uuid import uuid4

from transaction_capture.config import resolve_local_timezone
from transaction_capture.domain.transactions import NewTransaction, TransactionRecord
from transaction_capture.domain.value_objects import (
    AlertKind,
    Amount,
    ServiceType,
    SyncStatus,
)
from transaction_capture.exceptions import DuplicateExternalId
from transaction_capture.logging_config import LogContext, get_logger
from transaction_capture.repositories.interfaces import TransactionQueue
from transaction_capture.services.alerts import dispatch_alert
from transaction_capture.services.anomaly_detection import AnomalyDetectionService
from transaction_capture.services.interfaces import (
    AlertEmitter,
    ConnectivityMonitor,
    DrainResult,
    RemoteStore,
)

logger = get_logger(__name__)

DEFAULT_DRAIN_INTERVAL = 30.0


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SyncManager:
    """Accepts transactions offline and reconciles them with the remote store."""

    def __init__(
        self,
        queue: TransactionQueue,
        remote_store: RemoteStore,
        connectivity: ConnectivityMonitor,
        anomaly_detector: AnomalyDetectionService | None = None,
        alert_emitter: AlertEmitter | None = None,
        *,
        timezone: str | None = None,
        drain_interval: float = DEFAULT_DRAIN_INTERVAL,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if drain_interval <= 0:
            raise ValueError("drain_interval must be positive")
        self.queue = queue
        self.remote_store = remote_store
        self.connectivity = connectivity
        self.anomaly_detector = anomaly_detector
        self.alert_emitter = alert_emitter
        self.timezone = timezone or resolve_local_timezone()
        self.drain_interval = drain_interval
        self._clock = clock

        self._drain_lock = threading.Lock()
        self._rerun_requested = False

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="txc-drain")
        self._futures: set[Future[DrainResult | None]] = set()
        self._alert_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="txc-alert"
        )
        self._alert_futures: set[Future[bool]] = set()
        self._futures_lock = threading.Lock()
        self._closed = False
        self._alert_executor_closed = False

        self._stop_event = threading.Event()
        self._timer_thread: threading.Thread | None = None
        self._unsubscribe: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def add_transaction(
        self,
        organization_id: str,
        service_type: ServiceType | str,
        amount: str,
    ) -> str:
        """Validate and durably queue a transaction; returns its local id.

        Raises InvalidAmountFormat / InvalidServiceType before anything is
        written. Never waits on the network: when online a drain is scheduled
        in the background.
        """
        txn = NewTransaction(
            organization_id=organization_id,
            service_type=ServiceType.parse(service_type),
            amount=Amount.parse(amount),
            timezone=self.timezone,
            created_at=self._clock(),
        )
        local_id = self.queue.insert(txn)
        logger.info(
            "transaction_queued",
            local_id=local_id,
            organization_id=txn.organization_id,
            service_type=txn.service_type.value,
            amount=txn.amount.to_fixed4(),
            timezone=txn.timezone,
        )

        if self.connectivity.is_online():
            self._schedule_drain("transaction_added")
        return str(local_id)

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    def drain(self, trigger: str = "manual") -> DrainResult:
        """Push every pending and error record to the remote store.

        No-op while offline. If another drain is in flight this call returns
        immediately (skipped="busy") and the in-flight drain makes one more
        pass once it finishes.
        """
        if not self.connectivity.is_online():
            logger.debug("drain_skipped_offline", trigger=trigger)
            return DrainResult(skipped="offline")

        if not self._drain_lock.acquire(blocking=False):
            self._rerun_requested = True
            logger.debug("drain_coalesced", trigger=trigger)
            return DrainResult(skipped="busy")

        result = DrainResult()
        try:
            with LogContext(drain_id=uuid4().hex[:12], trigger=trigger):
                logger.info("drain_started")
                while True:
                    self._rerun_requested = False
                    self._drain_once(result)
                    if not self._rerun_requested or not self.connectivity.is_online():
                        break
                logger.info(
                    "drain_completed",
                    attempted=result.attempted,
                    synced=result.synced,
                    failed=result.failed,
                    flagged=result.flagged,
                )
        finally:
            self._drain_lock.release()
        return result

    def _drain_once(self, result: DrainResult) -> None:
        records = self.queue.list_by_status(SyncStatus.PENDING, SyncStatus.ERROR)
        for record in records:
            if not self.connectivity.is_online():
                logger.info("drain_interrupted_offline", remaining_from=record.local_id)
                return
            self._sync_record(record, result)

    def _sync_record(self, record: TransactionRecord, result: DrainResult) -> None:
        if record.status == SyncStatus.ERROR:
            self.queue.update_status(record.local_id, SyncStatus.PENDING)
            record.status = SyncStatus.PENDING

        result.attempted += 1
        try:
            external_id = self.remote_store.insert(record)
        except Exception as exc:
            # Each record is independent; a failure never aborts the batch.
            self.queue.update_status(record.local_id, SyncStatus.ERROR)
            record.status = SyncStatus.ERROR
            result.failed += 1
            logger.warning(
                "remote_insert_failed",
                local_id=record.local_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return

        synced_at = self._clock()
        try:
            self.queue.update_status(
                record.local_id,
                SyncStatus.SYNCED,
                external_id=external_id,
                synced_at=synced_at,
            )
        except DuplicateExternalId:
            self.queue.update_status(record.local_id, SyncStatus.ERROR)
            record.status = SyncStatus.ERROR
            result.failed += 1
            logger.error(
                "remote_duplicate_id",
                local_id=record.local_id,
                external_id=external_id,
            )
            return
        record.status = SyncStatus.SYNCED
        record.external_id = external_id
        record.synced_at = synced_at
        result.synced += 1
        logger.info(
            "transaction_synced", local_id=record.local_id, external_id=external_id
        )

        if self._screen(record):
            result.flagged += 1

    def _screen(self, record: TransactionRecord) -> bool:
        if self.anomaly_detector is None:
            return False

        check = self.anomaly_detector.check(record)
        if not check.is_anomalous:
            return False

        logger.warning(
            "fraud_alert_raised",
            local_id=record.local_id,
            external_id=record.external_id,
            reason=check.reason,
        )
        self._submit_alert(
            AlertKind.FRAUD,
            {
                "organization_id": record.organization_id,
                "service_type": record.service_type.value,
                "local_id": record.local_id,
                "external_id": record.external_id,
                "amount": record.amount.to_fixed4(),
                "reason": check.reason,
                "z_score": str(check.z_score) if check.z_score is not None else None,
                "severity": check.severity.value if check.severity else None,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Background scheduling
    # ------------------------------------------------------------------

    def _schedule_drain(self, trigger: str) -> Future[DrainResult | None] | None:
        with self._futures_lock:
            if self._closed:
                return None
            queued = [f for f in self._futures if not f.running() and not f.done()]
            if queued:
                # A drain that has not started yet will see this work too.
                return queued[0]
            future = self._executor.submit(self._run_drain, trigger)
            self._futures.add(future)
        future.add_done_callback(self._forget_future)
        return future

    def _forget_future(self, future: Future[Any]) -> None:
        with self._futures_lock:
            self._futures.discard(future)
            self._alert_futures.discard(future)

    def _submit_alert(self, kind: AlertKind, payload: Mapping[str, Any]) -> None:
        if self.alert_emitter is None:
            return
        with self._futures_lock:
            if self._alert_executor_closed:
                logger.warning("alert_dropped_after_close", kind=kind.value)
                return
            future = self._alert_executor.submit(
                dispatch_alert, self.alert_emitter, kind, payload
            )
            self._alert_futures.add(future)
        future.add_done_callback(self._forget_future)

    def _run_drain(self, trigger: str) -> DrainResult | None:
        try:
            return self.drain(trigger)
        except Exception as exc:
            logger.exception(
                "drain_failed", trigger=trigger, error_type=type(exc).__name__
            )
            return None

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self._schedule_drain("online")

    def _run_timer(self) -> None:
        while not self._stop_event.wait(self.drain_interval):
            self._schedule_drain("timer")

    def wait_for_idle(self, timeout: float | None = None) -> bool:
        """Block until background drains and the alerts they raise finish.

        Returns False when ``timeout`` expires first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._futures_lock:
                pending: set[Future[Any]] = {
                    f for f in self._futures | self._alert_futures if not f.done()
                }
            if not pending:
                return True
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _, not_done = wait(pending, timeout=remaining)
            if not_done:
                return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic drain timer and listen for connectivity changes."""
        if self._timer_thread is not None:
            return
        self._stop_event.clear()
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)
        self._timer_thread = threading.Thread(
            target=self._run_timer, name="txc-drain-timer", daemon=True
        )
        self._timer_thread.start()
        logger.info("sync_manager_started", drain_interval=self.drain_interval)
        if self.connectivity.is_online():
            self._schedule_drain("startup")

    def stop(self) -> None:
        """Cancel the timer and listeners; an in-flight remote call is left to finish."""
        self._stop_event.set()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._timer_thread is not None:
            self._timer_thread.join(timeout=1.0)
            self._timer_thread = None
        logger.info("sync_manager_stopped")

    def close(self) -> None:
        """Stop, drop queued drains and wait for a running one to finish.

        Alerts already handed off are delivered before this returns.
        """
        self.stop()
        with self._futures_lock:
            self._closed = True
        self._executor.shutdown(wait=True, cancel_futures=True)
        with self._futures_lock:
            self._alert_executor_closed = True
        self._alert_executor.shutdown(wait=True)

    def __enter__(self) -> SyncManager:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def pending_count(self) -> int:
        """Records still waiting for remote confirmation (pending or error)."""
        counts = self.queue.count_by_status()
        return counts[SyncStatus.PENDING] + counts[SyncStatus.ERROR]

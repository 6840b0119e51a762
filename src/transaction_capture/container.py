"""Composition root for the transaction capture pipeline.

Builds the queue, collaborators and sync manager from settings. Construct one
Container at process start and pass it (or the objects it exposes) to the
code that needs them; there is no module-level instance.

Usage:
    from transaction_capture.container import Container

    with Container() as container:
        manager = container.sync_manager
        manager.start()
        manager.add_transaction("org1", "pos", "100.0000")
"""

from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING

from transaction_capture.config import Settings, get_settings
from transaction_capture.exceptions import ConfigurationError
from transaction_capture.logging_config import get_logger

if TYPE_CHECKING:
    from transaction_capture.repositories.sqlite import (
        SQLiteDatabase,
        SQLiteTransactionQueue,
    )
    from transaction_capture.services.anomaly_detection import AnomalyDetectionService
    from transaction_capture.services.cashflow import CashflowMonitor
    from transaction_capture.services.interfaces import (
        AlertEmitter,
        ConnectivityMonitor,
        RemoteStore,
        StatsAccessor,
    )
    from transaction_capture.services.sync import SyncManager

logger = get_logger(__name__)


class Container:
    """Lazily wires every component from a single Settings instance.

    Components are created on first access and cached. Tests can pass
    custom settings:

        Container(settings=Settings(queue_path=Path(":memory:")))
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        logger.debug(
            "container_created",
            queue_path=str(self._settings.queue_path),
            environment=self._settings.environment.value,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @cached_property
    def database(self) -> "SQLiteDatabase":
        """The SQLite database behind the local queue, initialized on first access."""
        from transaction_capture.repositories.sqlite import SQLiteDatabase

        path = self._settings.queue_path
        if str(path) != ":memory:":
            try:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ConfigurationError(
                    f"Cannot create queue directory for {path}: {exc}"
                ) from exc

        logger.info("initializing_queue_database", path=str(path))
        db = SQLiteDatabase(path)
        db.initialize()
        return db

    @cached_property
    def queue(self) -> "SQLiteTransactionQueue":
        from transaction_capture.repositories.sqlite import SQLiteTransactionQueue

        return SQLiteTransactionQueue(self.database)

    @cached_property
    def remote_store(self) -> "RemoteStore":
        from transaction_capture.services.remote import HttpRemoteStore

        return HttpRemoteStore(
            base_url=self._settings.remote_base_url,
            api_key=self._settings.remote_api_key,
            timeout=self._settings.remote_timeout_seconds,
        )

    @cached_property
    def stats_accessor(self) -> "StatsAccessor":
        from transaction_capture.services.remote import HttpStatsAccessor

        return HttpStatsAccessor(
            base_url=self._settings.effective_stats_base_url,
            api_key=self._settings.remote_api_key,
            timeout=self._settings.remote_timeout_seconds,
        )

    @cached_property
    def alert_emitter(self) -> "AlertEmitter":
        """Logs every alert, and posts it to the webhook when one is configured."""
        from transaction_capture.services.alerts import (
            CompositeAlertEmitter,
            LoggingAlertEmitter,
            WebhookAlertEmitter,
        )

        emitters: list[AlertEmitter] = [LoggingAlertEmitter()]
        if self._settings.alert_webhook_url:
            emitters.append(
                WebhookAlertEmitter(
                    self._settings.alert_webhook_url,
                    timeout=self._settings.remote_timeout_seconds,
                )
            )
        return CompositeAlertEmitter(emitters)

    @cached_property
    def connectivity(self) -> "ConnectivityMonitor":
        from transaction_capture.services.connectivity import (
            ManualConnectivity,
            ProbeConnectivity,
        )

        if self._settings.connectivity_probe_url:
            return ProbeConnectivity(
                self._settings.connectivity_probe_url,
                interval=self._settings.connectivity_probe_interval_seconds,
                initially_online=self._settings.assume_online,
            )
        return ManualConnectivity(online=self._settings.assume_online)

    @cached_property
    def anomaly_detector(self) -> "AnomalyDetectionService":
        from transaction_capture.services.anomaly_detection import (
            AnomalyDetectionService,
        )

        return AnomalyDetectionService(
            stats_accessor=self.stats_accessor,
            time_window=self._settings.stats_time_window,
        )

    @cached_property
    def cashflow_monitor(self) -> "CashflowMonitor":
        from transaction_capture.services.cashflow import CashflowMonitor

        return CashflowMonitor(
            alert_emitter=self.alert_emitter,
            stats_accessor=self.stats_accessor,
            time_window=self._settings.stats_time_window,
        )

    @cached_property
    def sync_manager(self) -> "SyncManager":
        from transaction_capture.services.sync import SyncManager

        return SyncManager(
            queue=self.queue,
            remote_store=self.remote_store,
            connectivity=self.connectivity,
            anomaly_detector=self.anomaly_detector,
            alert_emitter=self.alert_emitter,
            timezone=self._settings.effective_timezone,
            drain_interval=self._settings.drain_interval_seconds,
        )

    def close(self) -> None:
        """Release every resource that was actually created."""
        created = self.__dict__
        if "sync_manager" in created:
            self.sync_manager.close()
        if "connectivity" in created and hasattr(self.connectivity, "stop"):
            self.connectivity.stop()
        for name in ("remote_store", "stats_accessor"):
            component = created.get(name)
            if component is not None and hasattr(component, "close"):
                component.close()
        if "alert_emitter" in created:
            for emitter in getattr(self.alert_emitter, "emitters", []):
                if hasattr(emitter, "close"):
                    emitter.close()
        if "database" in created:
            logger.info("closing_queue_database")
            self.database.close()

    def __enter__(self) -> "Container":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

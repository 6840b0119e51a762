import pytest

from transaction_capture.config import Settings
from transaction_capture.container import Container
from transaction_capture.domain.value_objects import SyncStatus
from transaction_capture.exceptions import ConfigurationError
from transaction_capture.services.alerts import (
    CompositeAlertEmitter,
    LoggingAlertEmitter,
    WebhookAlertEmitter,
)
from transaction_capture.services.connectivity import (
    ManualConnectivity,
    ProbeConnectivity,
)


class TestContainer:
    def test_wires_an_offline_pipeline(self, tmp_path):
        settings = Settings(queue_path=tmp_path / "data" / "queue.db", assume_online=False)

        with Container(settings) as container:
            local_id = container.sync_manager.add_transaction("org1", "pos", "100")
            record = container.queue.get(int(local_id))

        assert (tmp_path / "data" / "queue.db").exists()
        assert record is not None
        assert record.status == SyncStatus.PENDING

    def test_components_are_cached(self, tmp_path):
        with Container(Settings(queue_path=tmp_path / "queue.db")) as container:
            assert container.queue is container.queue
            assert container.sync_manager.queue is container.queue
            assert container.cashflow_monitor.alert_emitter is container.alert_emitter

    def test_manual_connectivity_without_probe_url(self, tmp_path):
        container = Container(Settings(queue_path=tmp_path / "q.db", assume_online=False))

        assert isinstance(container.connectivity, ManualConnectivity)
        assert not container.connectivity.is_online()
        container.close()

    def test_probe_connectivity_with_url(self, tmp_path):
        container = Container(
            Settings(
                queue_path=tmp_path / "q.db",
                connectivity_probe_url="https://api.example.com/health",
            )
        )

        assert isinstance(container.connectivity, ProbeConnectivity)
        container.close()

    def test_webhook_emitter_when_configured(self, tmp_path):
        container = Container(
            Settings(
                queue_path=tmp_path / "q.db",
                alert_webhook_url="https://hooks.example.com/alerts",
            )
        )

        emitter = container.alert_emitter

        assert isinstance(emitter, CompositeAlertEmitter)
        assert [type(e) for e in emitter.emitters] == [
            LoggingAlertEmitter,
            WebhookAlertEmitter,
        ]
        container.close()

    def test_unusable_queue_directory(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        container = Container(Settings(queue_path=blocker / "queue.db"))

        with pytest.raises(ConfigurationError):
            container.database

    def test_close_without_use(self, tmp_path):
        Container(Settings(queue_path=tmp_path / "q.db")).close()

        assert not (tmp_path / "q.db").exists()

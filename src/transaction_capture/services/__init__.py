from transaction_capture.services.alerts import (
    CompositeAlertEmitter,
    LoggingAlertEmitter,
    WebhookAlertEmitter,
    dispatch_alert,
)
from transaction_capture.services.anomaly_detection import (
    AnomalyDetectionService,
    calculate_rolling_stats,
)
from transaction_capture.services.cashflow import (
    CashflowMonitor,
    CashflowSummary,
    calculate_threshold,
)
from transaction_capture.services.connectivity import (
    ManualConnectivity,
    ProbeConnectivity,
)
from transaction_capture.services.interfaces import (
    AlertEmitter,
    AnomalyCheck,
    AnomalySeverity,
    ConnectivityMonitor,
    DrainResult,
    RemoteStore,
    StatsAccessor,
)
from transaction_capture.services.remote import (
    HttpRemoteStore,
    HttpStatsAccessor,
    StaticStatsAccessor,
)
from transaction_capture.services.sync import SyncManager

__all__ = [
    "AlertEmitter",
    "AnomalyCheck",
    "AnomalyDetectionService",
    "AnomalySeverity",
    "CashflowMonitor",
    "CashflowSummary",
    "CompositeAlertEmitter",
    "ConnectivityMonitor",
    "DrainResult",
    "HttpRemoteStore",
    "HttpStatsAccessor",
    "LoggingAlertEmitter",
    "ManualConnectivity",
    "ProbeConnectivity",
    "RemoteStore",
    "StaticStatsAccessor",
    "StatsAccessor",
    "SyncManager",
    "WebhookAlertEmitter",
    "calculate_rolling_stats",
    "calculate_threshold",
]

"""Connectivity observers: a boolean query plus change notifications."""

from __future__ import annotations

import threading
from collections.abc import Callable

import httpx

from transaction_capture.logging_config import get_logger
from transaction_capture.services.interfaces import (
    ConnectivityListener,
    ConnectivityMonitor,
)

logger = get_logger(__name__)


class _ObservableConnectivity(ConnectivityMonitor):
    def __init__(self, online: bool) -> None:
        self._online = online
        self._listeners: list[ConnectivityListener] = []
        self._lock = threading.Lock()

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, online: bool) -> None:
        with self._lock:
            if online == self._online:
                return
            self._online = online
            listeners = list(self._listeners)

        logger.info("connectivity_changed", online=online)
        for listener in listeners:
            try:
                listener(online)
            except Exception as exc:
                logger.error(
                    "connectivity_listener_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )


class ManualConnectivity(_ObservableConnectivity):
    """State toggled by the host application (or tests)."""

    def __init__(self, online: bool = True) -> None:
        super().__init__(online)

    def set_online(self, online: bool) -> None:
        self._set_state(online)


class ProbeConnectivity(_ObservableConnectivity):
    """Polls a URL on a daemon thread; any response below 500 counts as online."""

    def __init__(
        self,
        url: str,
        interval: float = 15.0,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
        initially_online: bool = False,
    ) -> None:
        super().__init__(initially_online)
        self.url = url
        self.interval = interval
        self._client = client if client is not None else httpx.Client(timeout=timeout)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def probe(self) -> bool:
        """Check reachability once and publish the result."""
        try:
            response = self._client.head(self.url)
            online = response.status_code < 500
        except httpx.HTTPError as exc:
            logger.debug("connectivity_probe_failed", url=self.url, error=str(exc))
            online = False
        self._set_state(online)
        return online

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="txc-connectivity-probe", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            self.probe()
            self._stop.wait(self.interval)

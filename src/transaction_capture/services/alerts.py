"""Best-effort alert delivery.

Alerts are advisory: a delivery failure is logged and never propagates into
the sync path that raised it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import httpx

from transaction_capture.domain.value_objects import AlertKind, Amount
from transaction_capture.exceptions import AlertDeliveryFailure
from transaction_capture.logging_config import get_logger
from transaction_capture.services.interfaces import AlertEmitter

logger = get_logger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Amount):
        return value.to_fixed4()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def dispatch_alert(
    emitter: AlertEmitter | None, kind: AlertKind, payload: Mapping[str, Any]
) -> bool:
    """Send an alert, logging instead of raising on failure.

    Returns True when the emitter accepted the alert.
    """
    if emitter is None:
        return False
    try:
        emitter.notify(kind, payload)
    except Exception as exc:
        logger.error(
            "alert_delivery_failed",
            kind=AlertKind(kind).value,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return False
    return True


class LoggingAlertEmitter(AlertEmitter):
    """Writes alerts to the structured log."""

    def notify(self, kind: AlertKind, payload: Mapping[str, Any]) -> None:
        logger.warning(
            "alert_emitted",
            kind=AlertKind(kind).value,
            **{k: _jsonable(v) for k, v in payload.items() if k != "kind"},
        )


class WebhookAlertEmitter(AlertEmitter):
    """POSTs alerts as JSON to a webhook endpoint."""

    def __init__(
        self,
        url: str,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = url
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def notify(self, kind: AlertKind, payload: Mapping[str, Any]) -> None:
        body = {
            "kind": AlertKind(kind).value,
            "payload": _jsonable(payload),
            "emitted_at": datetime.now(UTC).isoformat(),
        }
        try:
            response = self._client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AlertDeliveryFailure(
                f"Webhook delivery to {self.url} failed: {exc}",
                context={"kind": body["kind"]},
            ) from exc
        logger.info("alert_delivered", kind=body["kind"], url=self.url)

    def close(self) -> None:
        self._client.close()


class CompositeAlertEmitter(AlertEmitter):
    """Fans an alert out to several emitters; one failing does not stop the rest."""

    def __init__(self, emitters: Iterable[AlertEmitter]) -> None:
        self.emitters = list(emitters)

    def notify(self, kind: AlertKind, payload: Mapping[str, Any]) -> None:
        for emitter in self.emitters:
            dispatch_alert(emitter, kind, payload)

"""HTTP clients for the remote transaction store and statistics API."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from transaction_capture.domain.transactions import RollingStats, TransactionRecord
from transaction_capture.domain.value_objects import ServiceType
from transaction_capture.exceptions import RemoteSyncFailure, StatsLookupFailure
from transaction_capture.logging_config import get_logger
from transaction_capture.services.interfaces import RemoteStore, StatsAccessor

logger = get_logger(__name__)


def _client(
    base_url: str, api_key: str | None, timeout: float
) -> httpx.Client:
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return httpx.Client(base_url=base_url, headers=headers, timeout=timeout)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body)
    return str(body)


class HttpRemoteStore(RemoteStore):
    """Inserts records through ``POST /transactions``."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client if client is not None else _client(base_url, api_key, timeout)

    def insert(self, record: TransactionRecord) -> str:
        try:
            response = self._client.post(
                "/transactions",
                json=record.to_remote_payload(),
                headers={"Idempotency-Key": record.idempotency_key()},
            )
        except httpx.TimeoutException as exc:
            raise RemoteSyncFailure(f"Remote insert timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RemoteSyncFailure(f"Remote insert failed: {exc}") from exc

        if response.status_code >= 400:
            raise RemoteSyncFailure(
                f"Remote rejected transaction: {_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            raise RemoteSyncFailure(
                "Remote returned a non-JSON body", status_code=response.status_code
            ) from None

        remote_id = body.get("id") if isinstance(body, dict) else None
        if remote_id is None or str(remote_id) == "":
            raise RemoteSyncFailure(
                "Remote response is missing an id", status_code=response.status_code
            )
        logger.debug(
            "remote_insert_accepted", local_id=record.local_id, external_id=str(remote_id)
        )
        return str(remote_id)

    def close(self) -> None:
        self._client.close()


def stats_from_row(row: Mapping[str, Any]) -> RollingStats:
    """Build a snapshot from a ``transaction_stats`` row."""
    return RollingStats(
        organization_id=str(row["organization_id"]),
        service_type=ServiceType.parse(row["service_type"]),
        time_window=str(row["time_window"]),
        mean_amount=row["mean_amount"],
        std_dev=row["std_dev"],
        sample_size=int(row.get("sample_size") or 0),
    )


class HttpStatsAccessor(StatsAccessor):
    """Reads snapshots from ``GET /transaction_stats``."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client if client is not None else _client(base_url, api_key, timeout)

    def get(
        self, organization_id: str, service_type: ServiceType, window: str
    ) -> RollingStats | None:
        params = {
            "organization_id": organization_id,
            "service_type": ServiceType.parse(service_type).value,
            "time_window": window,
        }
        try:
            response = self._client.get("/transaction_stats", params=params)
        except httpx.HTTPError as exc:
            raise StatsLookupFailure(f"Statistics lookup failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise StatsLookupFailure(
                f"Statistics lookup failed: {_error_detail(response)}",
                context={"status_code": response.status_code},
            )

        try:
            body = response.json()
            if isinstance(body, list):
                if not body:
                    return None
                body = body[0]
            if not body:
                return None
            return stats_from_row(body)
        except (ValueError, KeyError, TypeError, ArithmeticError) as exc:
            raise StatsLookupFailure(f"Malformed statistics response: {exc}") from exc

    def close(self) -> None:
        self._client.close()


class StaticStatsAccessor(StatsAccessor):
    """Serves snapshots from memory, keyed by organization, service type and window."""

    def __init__(self, snapshots: Iterable[RollingStats] = ()) -> None:
        self._snapshots: dict[tuple[str, ServiceType, str], RollingStats] = {}
        for snapshot in snapshots:
            self.put(snapshot)

    def put(self, snapshot: RollingStats) -> None:
        key = (snapshot.organization_id, snapshot.service_type, snapshot.time_window)
        self._snapshots[key] = snapshot

    def get(
        self, organization_id: str, service_type: ServiceType, window: str
    ) -> RollingStats | None:
        return self._snapshots.get(
            (organization_id, ServiceType.parse(service_type), window)
        )

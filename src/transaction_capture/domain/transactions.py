from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from transaction_capture.domain.value_objects import (
    CANONICAL_AMOUNT_PATTERN,
    Amount,
    ServiceType,
    SyncStatus,
)
from transaction_capture.exceptions import InvalidAmountFormat, MissingOrganization


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class NewTransaction:
    """The immutable fields of a captured transaction, before it is queued."""

    organization_id: str
    service_type: ServiceType
    amount: Amount
    timezone: str
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if not self.organization_id or not self.organization_id.strip():
            raise MissingOrganization()
        object.__setattr__(self, "service_type", ServiceType.parse(self.service_type))
        if not isinstance(self.amount, Amount):
            raise TypeError("amount must be an Amount")
        if not CANONICAL_AMOUNT_PATTERN.match(self.amount.to_fixed4()):
            raise InvalidAmountFormat(
                self.amount.to_fixed4(), "transaction amounts must not be negative"
            )
        if not self.timezone:
            raise ValueError("timezone is required")
        if self.created_at.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")


@dataclass
class TransactionRecord:
    """A queued transaction and its sync lifecycle state."""

    local_id: int
    organization_id: str
    service_type: ServiceType
    amount: Amount
    created_at: datetime
    timezone: str
    status: SyncStatus = SyncStatus.PENDING
    external_id: str | None = None
    synced_at: datetime | None = None

    @property
    def is_synced(self) -> bool:
        return self.status == SyncStatus.SYNCED

    @property
    def needs_sync(self) -> bool:
        return self.status in (SyncStatus.PENDING, SyncStatus.ERROR)

    def to_remote_payload(self) -> dict[str, str]:
        """Wire form of the immutable fields sent to the remote store."""
        return {
            "organization_id": self.organization_id,
            "service_type": self.service_type.value,
            "amount": self.amount.to_fixed4(),
            "created_at": self.created_at.isoformat(),
            "timezone": self.timezone,
        }

    def idempotency_key(self) -> str:
        return f"{self.organization_id}:{self.local_id}:{self.created_at.isoformat()}"


@dataclass(frozen=True)
class RollingStats:
    """Read-only statistics snapshot produced by an external aggregation job."""

    organization_id: str
    service_type: ServiceType
    time_window: str
    mean_amount: Decimal
    std_dev: Decimal
    sample_size: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "service_type", ServiceType.parse(self.service_type))
        if not isinstance(self.mean_amount, Decimal):
            object.__setattr__(self, "mean_amount", Decimal(str(self.mean_amount)))
        if not isinstance(self.std_dev, Decimal):
            object.__setattr__(self, "std_dev", Decimal(str(self.std_dev)))
        if self.std_dev < 0:
            raise ValueError("std_dev must not be negative")
        if self.sample_size < 0:
            raise ValueError("sample_size must not be negative")

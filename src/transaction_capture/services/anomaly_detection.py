"""Statistical fraud screening for captured transactions.

A transaction is flagged when its amount lies more than three standard
deviations from the rolling mean of its organization and service type.
Screening never blocks the transaction path: missing history, zero variance
and lookup faults all resolve to "not anomalous".
"""

from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any

from transaction_capture.domain.transactions import RollingStats, TransactionRecord
from transaction_capture.domain.value_objects import (
    ARITHMETIC_CONTEXT,
    Amount,
    ServiceType,
)
from transaction_capture.logging_config import get_logger
from transaction_capture.services.interfaces import (
    AnomalyCheck,
    AnomalySeverity,
    StatsAccessor,
)

logger = get_logger(__name__)

Z_SCORE_THRESHOLD = Decimal("3")
DEFAULT_TIME_WINDOW = "30d"

StatsSource = RollingStats | Callable[[], RollingStats | None] | None


def _amount_of(transaction: Any) -> Decimal:
    amount = transaction.amount
    if isinstance(amount, Amount):
        return amount.value
    return Decimal(str(amount))


def _fixed4(value: Decimal) -> str:
    return Amount(value).to_fixed4()


class AnomalyDetectionService:
    """Z-score anomaly detector over externally produced rolling statistics."""

    def __init__(
        self,
        stats_accessor: StatsAccessor | None = None,
        time_window: str = DEFAULT_TIME_WINDOW,
    ) -> None:
        self.stats_accessor = stats_accessor
        self.time_window = time_window

    def z_score(self, transaction: Any, stats: RollingStats | None) -> Decimal | None:
        """Distance from the mean in standard deviations, or None when undefined."""
        if stats is None or stats.std_dev == 0:
            return None
        deviation = ARITHMETIC_CONTEXT.subtract(_amount_of(transaction), stats.mean_amount)
        return ARITHMETIC_CONTEXT.divide(abs(deviation), stats.std_dev)

    def detect(self, transaction: Any, stats: StatsSource) -> bool:
        """Return True when the transaction is more than 3σ from the mean.

        ``stats`` may be a snapshot, None (no history), or a zero-argument
        callable that looks the snapshot up. Lookup faults are logged and
        treated as not anomalous.
        """
        if callable(stats):
            try:
                stats = stats()
            except Exception as exc:
                logger.warning(
                    "stats_lookup_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return False

        z_score = self.z_score(transaction, stats)
        if z_score is None:
            return False
        return z_score > Z_SCORE_THRESHOLD

    def reason_for(self, transaction: Any, stats: RollingStats | None) -> str:
        """Human-readable explanation of the detection outcome."""
        amount = _fixed4(_amount_of(transaction))
        if stats is None:
            return f"amount {amount} not screened: no rolling statistics available"
        if stats.std_dev == 0:
            return (
                f"amount {amount} not screened: zero variance around mean "
                f"{_fixed4(stats.mean_amount)}"
            )

        band = ARITHMETIC_CONTEXT.multiply(Z_SCORE_THRESHOLD, stats.std_dev)
        verdict = "exceeds" if self.detect(transaction, stats) else "within"
        return (
            f"amount {amount} {verdict} 3σ band of mean "
            f"{_fixed4(stats.mean_amount)} ± {_fixed4(band)}"
        )

    def check(self, record: TransactionRecord) -> AnomalyCheck:
        """Look up current statistics for the record and screen it.

        Never raises.
        """
        if self.stats_accessor is None:
            return AnomalyCheck.clear("no statistics source configured")

        try:
            stats = self.stats_accessor.get(
                record.organization_id, record.service_type, self.time_window
            )
        except Exception as exc:
            logger.warning(
                "stats_lookup_failed",
                local_id=record.local_id,
                organization_id=record.organization_id,
                service_type=record.service_type.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return AnomalyCheck.clear("statistics lookup failed")

        try:
            is_anomalous = self.detect(record, stats)
            reason = self.reason_for(record, stats)
            z_score = self.z_score(record, stats)
        except Exception as exc:
            logger.error(
                "anomaly_check_failed",
                local_id=record.local_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return AnomalyCheck.clear("anomaly check failed", stats)

        severity = self._calculate_severity_by_zscore(z_score) if is_anomalous else None
        logger.debug(
            "transaction_screened",
            local_id=record.local_id,
            anomalous=is_anomalous,
            z_score=str(z_score) if z_score is not None else None,
        )
        return AnomalyCheck(
            is_anomalous=is_anomalous,
            reason=reason,
            z_score=z_score,
            severity=severity,
            stats=stats,
        )

    def _calculate_severity_by_zscore(self, z_score: Decimal | None) -> AnomalySeverity:
        """Calculate severity based on z-score."""
        abs_z = abs(z_score or Decimal("0"))
        if abs_z >= Decimal("5"):
            return AnomalySeverity.CRITICAL
        elif abs_z >= Decimal("4"):
            return AnomalySeverity.HIGH
        elif abs_z >= Decimal("3.5"):
            return AnomalySeverity.MEDIUM
        return AnomalySeverity.LOW


def calculate_rolling_stats(
    organization_id: str,
    service_type: ServiceType | str,
    amounts: Sequence[Amount | Decimal],
    time_window: str = DEFAULT_TIME_WINDOW,
) -> RollingStats | None:
    """Population mean/standard deviation snapshot over a set of amounts.

    Returns None for an empty sample, matching the cold-start case.
    """
    values = [a.value if isinstance(a, Amount) else Decimal(str(a)) for a in amounts]
    if not values:
        return None

    count = Decimal(len(values))
    total = Decimal("0")
    for value in values:
        total = ARITHMETIC_CONTEXT.add(total, value)
    mean = ARITHMETIC_CONTEXT.divide(total, count)

    std_dev = Decimal("0")
    if len(values) > 1:
        squares = Decimal("0")
        for value in values:
            deviation = ARITHMETIC_CONTEXT.subtract(value, mean)
            squares = ARITHMETIC_CONTEXT.add(
                squares, ARITHMETIC_CONTEXT.multiply(deviation, deviation)
            )
        variance = ARITHMETIC_CONTEXT.divide(squares, count)
        std_dev = variance.sqrt(ARITHMETIC_CONTEXT)

    return RollingStats(
        organization_id=organization_id,
        service_type=ServiceType.parse(service_type),
        time_window=time_window,
        mean_amount=mean,
        std_dev=std_dev,
        sample_size=len(values),
    )

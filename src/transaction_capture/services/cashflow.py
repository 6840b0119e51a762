"""Cashflow monitoring over rolling transaction statistics.

Provides:
- Default alert threshold (three days of operational buffer)
- Incoming/outgoing/fee breakdown and a 7-day projected balance
- Threshold breach alerts through the alert emitter
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from transaction_capture.domain.transactions import RollingStats
from transaction_capture.domain.value_objects import (
    ARITHMETIC_CONTEXT,
    AlertKind,
    Amount,
    ServiceType,
)
from transaction_capture.logging_config import get_logger
from transaction_capture.services.alerts import dispatch_alert
from transaction_capture.services.interfaces import AlertEmitter, StatsAccessor

logger = get_logger(__name__)

INCOMING_SERVICE_TYPES = frozenset({ServiceType.POS, ServiceType.INVOICE})
OUTGOING_SERVICE_TYPES = frozenset({ServiceType.PAYROLL, ServiceType.SUBSCRIPTION})

FEE_RATE = Decimal("0.025")
DAYS_PER_MONTH = Decimal("30")
BUFFER_DAYS = Decimal("3")
PROJECTION_DAYS = Decimal("7")
THRESHOLD_BREACH = "THRESHOLD_BREACH"


def _decimal(value: Amount | Decimal | int | str) -> Decimal:
    if isinstance(value, Amount):
        return value.value
    return Decimal(str(value))


@dataclass(frozen=True)
class CashflowSummary:
    organization_id: str
    incoming_payments: Amount
    outgoing_payments: Amount
    fees: Amount
    balance: Amount
    projected_balance: Amount
    threshold: Amount

    @property
    def is_below_threshold(self) -> bool:
        return self.balance < self.threshold


def calculate_threshold(
    monthly_payouts: Amount | Decimal | int | str,
    monthly_fees: Amount | Decimal | int | str,
) -> Amount:
    """Three days of average daily operations: ``(payouts + fees) / 30 * 3``."""
    monthly = ARITHMETIC_CONTEXT.add(_decimal(monthly_payouts), _decimal(monthly_fees))
    daily = ARITHMETIC_CONTEXT.divide(monthly, DAYS_PER_MONTH)
    return Amount(ARITHMETIC_CONTEXT.multiply(daily, BUFFER_DAYS))


class CashflowMonitor:
    """Summarizes organization cashflow and raises threshold breach alerts."""

    def __init__(
        self,
        alert_emitter: AlertEmitter | None = None,
        stats_accessor: StatsAccessor | None = None,
        time_window: str = "30d",
    ) -> None:
        self.alert_emitter = alert_emitter
        self.stats_accessor = stats_accessor
        self.time_window = time_window

    def summarize(
        self,
        organization_id: str,
        stats_rows: Iterable[RollingStats],
        configured_threshold: Amount | None = None,
    ) -> CashflowSummary:
        """Break monthly volume down into incoming, outgoing and fees.

        Volume per service type is ``mean_amount * sample_size``.
        """
        ctx = ARITHMETIC_CONTEXT
        incoming = Decimal("0")
        outgoing = Decimal("0")
        for stats in stats_rows:
            volume = ctx.multiply(stats.mean_amount, Decimal(stats.sample_size))
            if stats.service_type in INCOMING_SERVICE_TYPES:
                incoming = ctx.add(incoming, volume)
            elif stats.service_type in OUTGOING_SERVICE_TYPES:
                outgoing = ctx.add(outgoing, volume)

        fees = Amount(ctx.multiply(incoming, FEE_RATE))
        net = ctx.subtract(ctx.subtract(incoming, outgoing), fees.value)
        balance = Amount(net)
        daily_net = ctx.divide(net, DAYS_PER_MONTH)
        projected = Amount(
            ctx.add(balance.value, ctx.multiply(daily_net, PROJECTION_DAYS))
        )
        threshold = (
            configured_threshold
            if configured_threshold is not None
            else calculate_threshold(outgoing, fees)
        )

        return CashflowSummary(
            organization_id=organization_id,
            incoming_payments=Amount(incoming),
            outgoing_payments=Amount(outgoing),
            fees=fees,
            balance=balance,
            projected_balance=projected,
            threshold=threshold,
        )

    def load_summary(
        self, organization_id: str, configured_threshold: Amount | None = None
    ) -> CashflowSummary:
        """Summarize using snapshots from the stats accessor.

        Raises StatsLookupFailure when the accessor cannot be read.
        """
        rows: list[RollingStats] = []
        if self.stats_accessor is not None:
            for service_type in ServiceType:
                stats = self.stats_accessor.get(
                    organization_id, service_type, self.time_window
                )
                if stats is not None:
                    rows.append(stats)
        return self.summarize(organization_id, rows, configured_threshold)

    def check_threshold(
        self, organization_id: str, current_value: Amount, threshold: Amount
    ) -> bool:
        """Alert when ``current_value`` has fallen below ``threshold``.

        Returns True when a breach was detected. Alert delivery problems are
        logged, never raised.
        """
        if not current_value < threshold:
            return False

        logger.warning(
            "cashflow_threshold_breached",
            organization_id=organization_id,
            threshold=threshold.to_fixed4(),
            current_value=current_value.to_fixed4(),
        )
        dispatch_alert(
            self.alert_emitter,
            AlertKind.CASHFLOW,
            {
                "organization_id": organization_id,
                "alert_type": THRESHOLD_BREACH,
                "threshold": threshold.to_fixed4(),
                "current_value": current_value.to_fixed4(),
            },
        )
        return True

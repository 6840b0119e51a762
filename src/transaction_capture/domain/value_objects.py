import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from enum import Enum

from transaction_capture.exceptions import InvalidAmountFormat, InvalidServiceType

SCALE = 4
# Intermediate results keep at least 20 significant digits before being
# rounded back to SCALE places.
ARITHMETIC_CONTEXT = Context(prec=34, rounding=ROUND_HALF_UP)

_QUANTUM = Decimal(1).scaleb(-SCALE)
_AMOUNT_PATTERN = re.compile(r"^[+-]?[0-9]+(?:\.([0-9]*))?$")
CANONICAL_AMOUNT_PATTERN = re.compile(r"^[0-9]+\.[0-9]{4}$")


class ServiceType(str, Enum):
    POS = "pos"
    PAYROLL = "payroll"
    SUBSCRIPTION = "subscription"
    INVOICE = "invoice"

    @classmethod
    def parse(cls, value: "ServiceType | str") -> "ServiceType":
        if isinstance(value, ServiceType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidServiceType(str(value)) from None


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"

    def can_transition_to(self, new_status: "SyncStatus") -> bool:
        return new_status in _ALLOWED_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset({SyncStatus.SYNCED, SyncStatus.ERROR}),
    SyncStatus.ERROR: frozenset({SyncStatus.PENDING}),
    SyncStatus.SYNCED: frozenset(),
}


class AlertKind(str, Enum):
    FRAUD = "fraud"
    CASHFLOW = "cashflow"


def _quantize(value: Decimal, source: str) -> Decimal:
    try:
        result = value.quantize(_QUANTUM, context=ARITHMETIC_CONTEXT)
    except InvalidOperation:
        raise InvalidAmountFormat(source, "value out of range") from None
    if result.is_zero():
        # "-0.0000" collapses to "0.0000"
        result = result.copy_abs()
    return result


@dataclass(frozen=True, slots=True)
class Amount:
    """Fixed-point monetary value held at exactly four decimal places."""

    value: Decimal

    def __post_init__(self) -> None:
        value = self.value
        if not isinstance(value, Decimal):
            if isinstance(value, bool) or not isinstance(value, (int, float, str)):
                raise InvalidAmountFormat(repr(value), "unsupported type")
            try:
                value = Decimal(str(value))
            except InvalidOperation:
                raise InvalidAmountFormat(str(value), "not a number") from None
        if not value.is_finite():
            raise InvalidAmountFormat(str(value), "amount must be finite")
        object.__setattr__(self, "value", _quantize(value, str(value)))

    @classmethod
    def parse(cls, text: str, *, round_excess: bool = False) -> "Amount":
        """Parse a plain decimal string such as ``"100"``, ``"-3.5"`` or ``"0.1250"``.

        Exponents, NaN/Infinity tokens, thousands separators and anything
        other than an optional sign, digits and up to four fractional digits
        are rejected. With ``round_excess`` extra fractional digits are
        rounded half away from zero instead.
        """
        if not isinstance(text, str):
            raise InvalidAmountFormat(repr(text), "amount must be a string")
        candidate = text.strip()
        match = _AMOUNT_PATTERN.match(candidate)
        if match is None:
            raise InvalidAmountFormat(text, "expected digits with an optional sign and decimal point")
        fraction = match.group(1) or ""
        if len(fraction) > SCALE and not round_excess:
            raise InvalidAmountFormat(text, f"more than {SCALE} fractional digits")
        return cls(Decimal(candidate))

    @classmethod
    def from_decimal(cls, value: Decimal | int | str) -> "Amount":
        return cls(Decimal(str(value)))

    @classmethod
    def zero(cls) -> "Amount":
        return cls(Decimal("0"))

    def to_fixed4(self) -> str:
        return format(self.value, "f")

    def __str__(self) -> str:
        return self.to_fixed4()

    def add(self, other: "Amount") -> "Amount":
        return Amount(ARITHMETIC_CONTEXT.add(self.value, other.value))

    def subtract(self, other: "Amount") -> "Amount":
        return Amount(ARITHMETIC_CONTEXT.subtract(self.value, other.value))

    def multiply(self, factor: Decimal | int | float | str) -> "Amount":
        return Amount(ARITHMETIC_CONTEXT.multiply(self.value, _scalar(factor)))

    def divide(self, divisor: Decimal | int | float | str) -> "Amount":
        scalar = _scalar(divisor)
        if scalar.is_zero():
            raise ZeroDivisionError("Cannot divide an amount by zero")
        return Amount(ARITHMETIC_CONTEXT.divide(self.value, scalar))

    def compare_to(self, other: "Amount") -> int:
        if self.value < other.value:
            return -1
        if self.value > other.value:
            return 1
        return 0

    def __add__(self, other: "Amount") -> "Amount":
        return self.add(other)

    def __sub__(self, other: "Amount") -> "Amount":
        return self.subtract(other)

    def __mul__(self, factor: Decimal | int | float | str) -> "Amount":
        return self.multiply(factor)

    def __truediv__(self, divisor: Decimal | int | float | str) -> "Amount":
        return self.divide(divisor)

    def __neg__(self) -> "Amount":
        return Amount(-self.value)

    def __abs__(self) -> "Amount":
        return Amount(abs(self.value))

    def __lt__(self, other: "Amount") -> bool:
        return self.compare_to(other) < 0

    def __le__(self, other: "Amount") -> bool:
        return self.compare_to(other) <= 0

    def __gt__(self, other: "Amount") -> bool:
        return self.compare_to(other) > 0

    def __ge__(self, other: "Amount") -> bool:
        return self.compare_to(other) >= 0

    @property
    def is_zero(self) -> bool:
        return self.value == Decimal("0")

    @property
    def is_positive(self) -> bool:
        return self.value > Decimal("0")

    @property
    def is_negative(self) -> bool:
        return self.value < Decimal("0")


def _scalar(factor: Decimal | int | float | str) -> Decimal:
    if isinstance(factor, Decimal):
        return factor
    try:
        scalar = Decimal(str(factor))
    except InvalidOperation:
        raise InvalidAmountFormat(str(factor), "scalar is not a number") from None
    if not scalar.is_finite():
        raise InvalidAmountFormat(str(factor), "scalar must be finite")
    return scalar


__all__ = [
    "ARITHMETIC_CONTEXT",
    "CANONICAL_AMOUNT_PATTERN",
    "SCALE",
    "AlertKind",
    "Amount",
    "ServiceType",
    "SyncStatus",
]

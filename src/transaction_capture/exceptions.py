"""Exception hierarchy for the transaction capture pipeline.

Everything raised on purpose derives from TransactionCaptureError, which
carries a machine-readable ``error_code`` and a ``context`` dict for logs.
"""

from typing import Any


class TransactionCaptureError(Exception):
    """Base exception for all transaction capture errors.

    Includes an error_code for machine consumption and extra context.
    """

    error_code: str = "TXC_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for logs and CLI output."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(TransactionCaptureError):
    """Base exception for input validation errors."""

    error_code = "VALIDATION_ERROR"


class InvalidAmountFormat(ValidationError, ValueError):
    """Raised when a monetary amount cannot be parsed."""

    error_code = "INVALID_AMOUNT_FORMAT"

    def __init__(self, amount: str, reason: str) -> None:
        super().__init__(
            f"Invalid amount '{amount}': {reason}",
            context={"amount": amount, "reason": reason},
        )


class InvalidServiceType(ValidationError, ValueError):
    """Raised when a service type is not one of the supported values."""

    error_code = "INVALID_SERVICE_TYPE"

    def __init__(self, service_type: str) -> None:
        super().__init__(
            f"Invalid service type: {service_type}",
            context={"service_type": service_type},
        )


class MissingOrganization(ValidationError, ValueError):
    """Raised when a transaction has no organization id."""

    error_code = "MISSING_ORGANIZATION"

    def __init__(self) -> None:
        super().__init__("organization_id is required")


# =============================================================================
# Queue Errors
# =============================================================================


class QueueError(TransactionCaptureError):
    """Base exception for local queue errors."""

    error_code = "QUEUE_ERROR"


class RecordNotFound(QueueError):
    """Raised when a local record id is unknown."""

    error_code = "RECORD_NOT_FOUND"

    def __init__(self, local_id: int) -> None:
        super().__init__(
            f"Transaction record not found: {local_id}",
            context={"local_id": local_id},
        )


class IllegalTransition(QueueError):
    """Raised when a status change violates the record lifecycle."""

    error_code = "ILLEGAL_TRANSITION"

    def __init__(self, local_id: int, current: str, requested: str, reason: str = "") -> None:
        message = f"Illegal status transition for record {local_id}: {current} -> {requested}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            context={"local_id": local_id, "current": current, "requested": requested},
        )


class DuplicateExternalId(IllegalTransition):
    """Raised when a remote id is already held by another queued record."""

    error_code = "DUPLICATE_EXTERNAL_ID"

    def __init__(self, local_id: int, current: str, external_id: str) -> None:
        super().__init__(
            local_id,
            current,
            "synced",
            f"external_id {external_id} already assigned",
        )
        self.external_id = external_id
        self.context["external_id"] = external_id


# =============================================================================
# Collaborator Errors
# =============================================================================


class RemoteSyncFailure(TransactionCaptureError):
    """Raised when the remote store rejects or cannot receive a record."""

    error_code = "REMOTE_SYNC_FAILURE"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        context: dict[str, Any] = {}
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, context=context)
        self.status_code = status_code


class StatsLookupFailure(TransactionCaptureError):
    """Raised when rolling statistics cannot be fetched."""

    error_code = "STATS_LOOKUP_FAILURE"


class AlertDeliveryFailure(TransactionCaptureError):
    """Raised when an alert cannot be delivered."""

    error_code = "ALERT_DELIVERY_FAILURE"


class ConfigurationError(TransactionCaptureError):
    """Raised when the application cannot be wired from its settings."""

    error_code = "CONFIGURATION_ERROR"

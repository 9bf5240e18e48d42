class BulkDistanceError(Exception):
    """Base exception for bulk distance processing errors."""


class UnsupportedFormatError(BulkDistanceError):
    """Raised when an uploaded file has an unsupported type."""


class FileTooLargeError(UnsupportedFormatError):
    """Raised when an uploaded file exceeds the size limit."""


class ParseError(BulkDistanceError):
    """Raised when an uploaded file cannot be parsed."""


class MissingColumnsError(ParseError):
    """Raised when the header row lacks the From/To columns."""


class ExternalServiceError(BulkDistanceError):
    """Raised when an upstream API call fails."""


class InvalidLocationError(BulkDistanceError):
    """Raised when a location cannot be resolved to coordinates."""


class NoRouteFoundError(BulkDistanceError):
    """Raised when a drivable route cannot be generated."""


class QuotaExceededError(BulkDistanceError):
    """Raised when a batch has more rows than the free and paid allowance."""

    def __init__(self, shortfall: int) -> None:
        super().__init__(f"Batch exceeds the row allowance by {shortfall} rows")
        self.shortfall = shortfall


class PaymentFailedError(BulkDistanceError):
    """Raised when a payment is cancelled, fails or does not match the shortfall."""


class PaymentNotRequiredError(BulkDistanceError):
    """Raised when a payment is requested for a batch within its allowance."""


class InvalidStateError(BulkDistanceError):
    """Raised when an upload session action is not allowed in its current state."""


class UnknownVehicleError(BulkDistanceError):
    """Raised when no emission factor is configured for a vehicle type."""


class BatchCancelledError(BulkDistanceError):
    """Raised when a batch is superseded before it finishes resolving."""

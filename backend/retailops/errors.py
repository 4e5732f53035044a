# backend/retailops/errors.py
"""
Operation error taxonomy.

Every error is recovered at the boundary of the operation that raised it:
routes roll back the session and answer with `status_code` and a message
naming the offending barcode, quantity or field.
"""


class OperationError(Exception):
    """Base error for inventory, sale and ledger operations."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(OperationError):
    """User input missing or invalid."""
    status_code = 400


class NotFoundError(OperationError):
    """Barcode, dispatch or document id does not resolve."""
    status_code = 404


class InsufficientStockError(OperationError):
    """Requested units exceed what is available; nothing was changed."""
    status_code = 409


class InconsistentStateError(OperationError):
    """Dispatch records and inventory units disagree; needs manual reconciliation."""
    status_code = 409


class UpstreamUnavailableError(OperationError):
    """Storage or an external service failed; the caller may retry."""
    status_code = 503


class ConfirmationRequiredError(OperationError):
    """Destructive operation invoked without explicit confirmation."""
    status_code = 428

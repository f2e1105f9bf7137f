# Overview: Domain error taxonomy shared by services, routes, and CLI.

from __future__ import annotations

from decimal import Decimal


class FreshLedgerError(Exception):
    """
    Base class for every error the core raises on purpose.

    kind is stable and safe to branch on; status_code is the HTTP class the
    API layer renders it with; details carries whatever the caller needs to
    reconstruct the condition.
    """
    kind = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": str(self),
            "details": self.details,
        }


class ValidationError(FreshLedgerError, ValueError):
    """400-level input problem."""
    kind = "validation_error"


class ConflictError(FreshLedgerError, ValueError):
    """409-level business rule conflict (e.g., duplicate item name+category)."""
    kind = "conflict"
    status_code = 409


class NotFoundError(FreshLedgerError):
    kind = "not_found"
    status_code = 404


class DayClosedError(FreshLedgerError):
    """Intake attempted on a day that has already been ended."""
    kind = "day_closed"


class AlreadyEndedError(FreshLedgerError):
    kind = "day_already_ended"


class PriorDayNotEndedError(FreshLedgerError):
    kind = "prior_day_not_ended"


class InsufficientStockError(FreshLedgerError):
    """
    Requested quantity cannot be fulfilled.

    required/available describe the single shortfall that triggered the error
    (the first one, for multi-ingredient checks); details["missing_ingredients"]
    lists every shortfall when the error comes from an availability check.
    """
    kind = "insufficient_stock"

    def __init__(
        self,
        message: str,
        *,
        required: Decimal,
        available: Decimal,
        details: dict | None = None,
    ):
        details = dict(details or {})
        details.setdefault("required", str(required))
        details.setdefault("available", str(available))
        super().__init__(message, details)
        self.required = required
        self.available = available

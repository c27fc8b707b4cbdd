"""Domain error hierarchy raised by the ledger services."""
from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base exception for stock ledger errors."""

    default_message = "An error occurred in the stock ledger"
    default_code = "LEDGER_ERROR"

    def __init__(self, message: str | None = None, code: str | None = None, details: Any = None):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        error_dict: dict[str, Any] = {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.details is not None:
            error_dict["details"] = self.details
        return error_dict


class ValidationError(LedgerError):
    """Malformed input, raised before any side effect."""

    default_message = "Validation error"
    default_code = "VALIDATION_ERROR"

    @classmethod
    def from_problems(cls, problems: list[dict[str, Any]], message: str | None = None) -> "ValidationError":
        text = message or "; ".join(p["message"] for p in problems)
        return cls(text, details={"problems": problems})


class InsufficientStock(LedgerError):
    """Authoritative stock check failed; details list every short item."""

    default_message = "Insufficient stock"
    default_code = "INSUFFICIENT_STOCK"

    def __init__(self, location_id: int, items: list[dict[str, Any]], message: str | None = None):
        self.location_id = location_id
        self.items = items
        if message is None:
            text = "; ".join(
                f"{i.get('item_code') or i['item_id']}: requested {i['requested']}, available {i['available']}"
                for i in items
            )
            message = f"Insufficient stock for {len(items)} item(s) at location {location_id}. {text}"
        super().__init__(message, details={"location_id": location_id, "items": items})


class InvalidStateTransition(LedgerError):
    """The entity is not in a state that allows the requested action."""

    default_message = "Invalid state transition"
    default_code = "INVALID_STATE"


class PeriodNotOpen(InvalidStateTransition):
    default_message = "Period is not open for this location"
    default_code = "PERIOD_NOT_OPEN"


class ApprovalRequired(LedgerError):
    """Posting is blocked until a reviewer decides."""

    default_message = "Approval required"
    default_code = "APPROVAL_REQUIRED"


class PermissionDenied(LedgerError):
    default_message = "Permission denied"
    default_code = "PERMISSION_DENIED"


class NotFoundError(LedgerError):
    default_message = "Resource not found"
    default_code = "NOT_FOUND"


class NotificationFailure(LedgerError):
    """Raised by notifiers; logged by the dispatcher and never propagated."""

    default_message = "Notification delivery failed"
    default_code = "NOTIFICATION_FAILED"

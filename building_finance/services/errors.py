"""Custom exception classes for the finance engine.

Every error carries a stable machine-readable code and the HTTP status the API
layer responds with. All of them are recoverable by the caller.
"""

from typing import Any, Dict

from fastapi import status


class FinanceError(Exception):
    """Base exception for finance engine errors."""

    def __init__(self, message: str, code: str, http_status: int = status.HTTP_400_BAD_REQUEST):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class SettingsIncomplete(FinanceError):
    """Service charge rate or payment lead days not configured."""

    def __init__(self, message: str = "Financial settings are incomplete"):
        super().__init__(message, "settings_incomplete", status.HTTP_400_BAD_REQUEST)


class InvalidPayment(FinanceError):
    """Non-positive payment or payment exceeding the outstanding amount."""

    def __init__(self, message: str = "Invalid payment amount"):
        super().__init__(message, "invalid_payment", status.HTTP_400_BAD_REQUEST)


class InvalidQuarterSelection(FinanceError):
    """Quarter value does not parse against the building's fiscal calendar."""

    def __init__(self, message: str = "Invalid quarter selection"):
        super().__init__(message, "invalid_quarter_selection", status.HTTP_400_BAD_REQUEST)


class NothingToRemind(FinanceError):
    """Every demand for the quarter is fully paid."""

    def __init__(self, message: str = "No outstanding demands to remind"):
        super().__init__(message, "nothing_to_remind", status.HTTP_409_CONFLICT)


class ReminderLimitReached(FinanceError):
    """Every unpaid demand of the quarter already had its maximum number of reminders."""

    def __init__(self, message: str = "Maximum reminders already sent"):
        super().__init__(message, "reminder_limit_reached", status.HTTP_409_CONFLICT)


class InvalidDemandState(FinanceError):
    """Action not allowed for the demand's current state (paid, cancelled, ...)."""

    def __init__(self, message: str = "Action not allowed for this demand"):
        super().__init__(message, "invalid_demand_state", status.HTTP_409_CONFLICT)


class ConcurrentUpdate(FinanceError):
    """Demand was modified by another request; re-read and retry."""

    def __init__(self, message: str = "Demand was updated concurrently"):
        super().__init__(message, "concurrent_update", status.HTTP_409_CONFLICT)


class DemandNotFound(FinanceError):
    """Demand id does not exist."""

    def __init__(self, demand_id: int):
        super().__init__(
            f"Service charge demand {demand_id} not found",
            "demand_not_found",
            status.HTTP_404_NOT_FOUND,
        )


class BuildingNotFound(FinanceError):
    """Building id does not exist."""

    def __init__(self, building_id: int):
        super().__init__(
            f"Building {building_id} not found",
            "building_not_found",
            status.HTTP_404_NOT_FOUND,
        )


def error_response(error: FinanceError) -> Dict[str, Any]:
    """Create a standardized error response."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
        }
    }


__all__ = [
    "FinanceError",
    "SettingsIncomplete",
    "InvalidPayment",
    "InvalidQuarterSelection",
    "NothingToRemind",
    "ReminderLimitReached",
    "InvalidDemandState",
    "ConcurrentUpdate",
    "DemandNotFound",
    "BuildingNotFound",
    "error_response",
]

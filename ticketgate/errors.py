"""Error taxonomy shared by every handler.

Each error carries a stable code, an HTTP status and a message that can be
shown on a scanning device as-is. ``to_body`` gives the one response shape
all handlers use: ``{"status": code, "message": text, ...extra}``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Domain error codes."""

    INVALID_PAYLOAD = "invalid"
    MISSING_FIELD = "missing_field"
    NOT_FOUND = "not_found"
    NOT_PAID = "not_paid"
    ALREADY_USED = "already_used"
    UNAUTHORIZED = "unauthorized"
    INVALID_COUPON = "invalid_coupon"
    UPSTREAM_FAILURE = "upstream_failure"
    MISCONFIGURED = "misconfigured"


class DomainError(Exception):
    """Base domain error with code, HTTP status and user-safe message."""

    code: ErrorCode = ErrorCode.INVALID_PAYLOAD
    http_status: int = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = {
            k: v for k, v in extra.items() if v is not None
        }

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_body(self) -> Dict[str, Any]:
        return {"status": self.code.value, "message": self.message,
                **self.extra}


class InvalidPayload(DomainError):
    """Malformed QR payload, URL or request field."""

    code = ErrorCode.INVALID_PAYLOAD
    http_status = 400


class MissingField(DomainError):
    code = ErrorCode.MISSING_FIELD
    http_status = 400

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Missing required field: {field}")
        self.field = field


class NotFound(DomainError):
    code = ErrorCode.NOT_FOUND
    http_status = 404


class TicketNotFound(NotFound):
    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Ticket not found for id: {ticket_id}")
        self.ticket_id = ticket_id


class NotPaid(DomainError):
    code = ErrorCode.NOT_PAID
    http_status = 403

    def __init__(self, participant_name: Optional[str] = None) -> None:
        super().__init__("This ticket has not been paid.",
                         participantName=participant_name)


class AlreadyUsed(DomainError):
    code = ErrorCode.ALREADY_USED
    http_status = 409

    def __init__(self, checked_in_at: Optional[str],
                 participant_name: Optional[str] = None) -> None:
        super().__init__(
            f"TICKET ALREADY USED at {checked_in_at or 'unknown time'}.",
            participantName=participant_name,
            checkedInAt=checked_in_at,
        )
        self.checked_in_at = checked_in_at


class Unauthorized(DomainError):
    code = ErrorCode.UNAUTHORIZED
    http_status = 401


class InvalidCoupon(DomainError):
    """Coupon exists but is not accepted for the requested flow."""

    code = ErrorCode.INVALID_COUPON
    http_status = 403


class UpstreamFailure(DomainError):
    """Payment, email or store provider failed."""

    code = ErrorCode.UPSTREAM_FAILURE
    http_status = 502


class Misconfigured(DomainError):
    code = ErrorCode.MISCONFIGURED
    http_status = 500

    def __init__(self, missing: list[str]) -> None:
        super().__init__("Server misconfigured: missing "
                         + ", ".join(missing), missing=list(missing))
        self.missing = missing

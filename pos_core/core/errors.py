"""
Domain Error Taxonomy

Every failure the core reports is one of four typed errors. Raising any
of them inside ``atomic()`` aborts the enclosing transaction, so no
partial write ever becomes visible.

    NotFound   - missing table/order/item/product/payment method
    BadRequest - invalid state transition, insufficient stock or payment
    Forbidden  - actor lacks ownership or role
    Conflict   - table double-booking, lock contention, duplicate ticket
"""

from typing import Any, Optional


class PosError(Exception):
    """Base class for all core failures."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        payload: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


class BadRequest(PosError):
    status_code = 400
    code = "bad_request"


class Forbidden(PosError):
    status_code = 403
    code = "forbidden"


class NotFound(PosError):
    status_code = 404
    code = "not_found"


class Conflict(PosError):
    status_code = 409
    code = "conflict"

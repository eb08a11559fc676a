"""
Error taxonomy for the returns engine.

Every error carries a human-readable ``message`` plus a ``details`` dict with
the structured facts a caller needs to render a specific message (which line,
how many remain, which transition was attempted, ...). The HTTP layer maps
``code`` to a status.
"""
from typing import Any, Dict, Optional


class ReturnsError(Exception):
    """Base exception for returns engine errors."""
    code = "returns_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(ReturnsError):
    """Order, order line, reason code or Return missing."""
    code = "not_found"


class InvalidInputError(ReturnsError):
    """Malformed request, bad quantity, unknown refund method."""
    code = "invalid_input"


class InvalidAmountError(InvalidInputError):
    """Refund amount is not positive after the restocking fee."""
    code = "invalid_amount"


class InvalidStateError(ReturnsError):
    """Order or Return is not in a status that permits the operation."""
    code = "invalid_state"


class QuantityExceededError(ReturnsError):
    """Over-return attempt on an order line."""
    code = "quantity_exceeded"


class InvalidTransitionError(ReturnsError):
    """Illegal edge in the return lifecycle."""
    code = "invalid_transition"

    def __init__(self, current_status: str, target_status: str, allowed: Optional[list] = None):
        allowed = allowed or []
        if allowed:
            message = (
                f"Cannot change return from '{current_status}' to '{target_status}'. "
                f"Allowed transitions: {', '.join(allowed)}"
            )
        else:
            message = (
                f"Return in '{current_status}' status cannot be modified. "
                f"This is a terminal state."
            )
        super().__init__(message, {
            "current_status": current_status,
            "target_status": target_status,
            "allowed": allowed,
        })
        self.current_status = current_status
        self.target_status = target_status


class ExternalProcessorError(ReturnsError):
    """The card processor refused or failed a refund call."""
    code = "external_processor_error"


class InternalError(ReturnsError):
    """Unexpected internal failure (e.g. store credit code exhaustion)."""
    code = "internal_error"

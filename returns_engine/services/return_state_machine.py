"""
Return State Machine

This module is the SINGLE SOURCE OF TRUTH for all return status transitions.
All status changes must go through this module.
"""

from typing import Optional, List, Dict
from datetime import datetime, timezone
import logging
import uuid

from returns_engine.exceptions import InvalidTransitionError
from returns_engine.models.returns import Return, ReturnStatus, ReturnStatusHistory

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
RETURN_TRANSITIONS: Dict[str, List[str]] = {
    ReturnStatus.INITIATED.value: [
        ReturnStatus.APPROVED.value,    # Approve
        ReturnStatus.REJECTED.value,    # Reject
        ReturnStatus.CANCELLED.value,   # Cancel
    ],
    ReturnStatus.APPROVED.value: [
        ReturnStatus.PROCESSING.value,  # Start settlement
        ReturnStatus.CANCELLED.value,   # Cancel before settlement
    ],
    ReturnStatus.PROCESSING.value: [
        ReturnStatus.COMPLETED.value,   # Settlement done
    ],
    ReturnStatus.REJECTED.value: [],    # Terminal state
    ReturnStatus.COMPLETED.value: [],   # Terminal state
    ReturnStatus.CANCELLED.value: [],   # Terminal state
}

TERMINAL_STATUSES = frozenset(
    status for status, allowed in RETURN_TRANSITIONS.items() if not allowed
)

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[tuple, str] = {
    (ReturnStatus.INITIATED.value, ReturnStatus.APPROVED.value): "Approve",
    (ReturnStatus.INITIATED.value, ReturnStatus.REJECTED.value): "Reject",
    (ReturnStatus.INITIATED.value, ReturnStatus.CANCELLED.value): "Cancel",
    (ReturnStatus.APPROVED.value, ReturnStatus.PROCESSING.value): "Start Processing",
    (ReturnStatus.APPROVED.value, ReturnStatus.CANCELLED.value): "Cancel",
    (ReturnStatus.PROCESSING.value, ReturnStatus.COMPLETED.value): "Complete",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in RETURN_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return list(RETURN_TRANSITIONS.get(current_status, []))


def get_transition_action(current_status: str, new_status: str) -> str:
    """Get human-readable action name for a transition."""
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition.

    Unlike edits elsewhere, a same-status request is not a no-op here: every
    edge is an action with side effects, so it must be in the table.

    Raises:
        InvalidTransitionError: If the edge is not in the transition table
    """
    if not can_transition(current_status, new_status):
        raise InvalidTransitionError(
            current_status, new_status, get_allowed_transitions(current_status)
        )


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return status in TERMINAL_STATUSES


def can_settle(status: str) -> bool:
    """Can a refund be settled for a return in this status?"""
    return status in (ReturnStatus.APPROVED.value, ReturnStatus.PROCESSING.value)


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_return(
    ret: Return,
    new_status: str,
    user_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
) -> ReturnStatusHistory:
    """
    Transition a return to a new status.

    This function:
    1. Validates the transition is allowed
    2. Updates the status
    3. Sets audit fields based on the transition
    4. Builds the status history row (caller adds it to the session)

    Args:
        ret: Return model instance (locked by the caller)
        new_status: Target status
        user_id: ID of user performing the action (for audit)
        reason: Rejection reason or free-text note for the history row

    Raises:
        InvalidTransitionError: If transition is not allowed
    """
    current_status = ret.status
    validate_transition(current_status, new_status)

    ret.status = new_status
    now = datetime.now(timezone.utc)

    if new_status == ReturnStatus.APPROVED.value:
        ret.approved_by = user_id
        ret.approved_at = now

    elif new_status == ReturnStatus.REJECTED.value:
        ret.approved_by = user_id
        ret.approved_at = now
        ret.rejection_reason = reason

    elif new_status == ReturnStatus.PROCESSING.value:
        ret.processed_by = user_id

    elif new_status == ReturnStatus.COMPLETED.value:
        ret.processed_by = user_id
        ret.completed_at = now

    ret.updated_at = now

    logger.info(
        f"Return {ret.return_number}: {get_transition_action(current_status, new_status)} "
        f"({current_status} -> {new_status}) by {user_id}"
    )

    return ReturnStatusHistory(
        return_id=ret.id,
        from_status=current_status,
        to_status=new_status,
        notes=reason,
        changed_by=user_id,
        created_at=now,
    )

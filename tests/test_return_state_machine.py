"""
Tests for the return lifecycle transition table.
"""
import uuid

import pytest

from returns_engine.exceptions import InvalidTransitionError
from returns_engine.models.returns import Return, ReturnStatus
from returns_engine.services.return_state_machine import (
    can_transition, get_allowed_transitions, validate_transition, is_terminal,
    can_settle, transition_return, get_transition_action
)


def make_return(status: str) -> Return:
    return Return(
        id=uuid.uuid4(),
        return_number="RTN-20260101-0001",
        return_type="partial",
        status=status,
        original_order_id=uuid.uuid4(),
        refund_subtotal_cents=2000,
        refund_tax_cents=260,
        refund_total_cents=2260,
        restocking_fee_cents=0,
    )


@pytest.mark.parametrize("current,target", [
    ("initiated", "approved"),
    ("initiated", "rejected"),
    ("initiated", "cancelled"),
    ("approved", "processing"),
    ("approved", "cancelled"),
    ("processing", "completed"),
])
def test_allowed_edges(current, target):
    assert can_transition(current, target)
    validate_transition(current, target)


@pytest.mark.parametrize("current,target", [
    ("approved", "completed"),
    ("initiated", "processing"),
    ("initiated", "completed"),
    ("processing", "cancelled"),
    ("approved", "approved"),
    ("completed", "cancelled"),
])
def test_illegal_edges_raise(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransitionError) as exc:
        validate_transition(current, target)
    assert exc.value.details["current_status"] == current
    assert exc.value.details["target_status"] == target


@pytest.mark.parametrize("status", ["completed", "rejected", "cancelled"])
def test_terminal_states_have_no_exits(status):
    assert is_terminal(status)
    assert get_allowed_transitions(status) == []
    with pytest.raises(InvalidTransitionError) as exc:
        validate_transition(status, "approved")
    assert "terminal" in exc.value.message


def test_can_settle_only_from_approved_or_processing():
    assert can_settle("approved")
    assert can_settle("processing")
    for status in ("initiated", "rejected", "completed", "cancelled"):
        assert not can_settle(status)


def test_transition_action_names():
    assert get_transition_action("initiated", "approved") == "Approve"
    assert get_transition_action("processing", "completed") == "Complete"


def test_approve_sets_audit_fields_and_builds_history():
    ret = make_return(ReturnStatus.INITIATED.value)
    user_id = uuid.uuid4()

    history = transition_return(ret, ReturnStatus.APPROVED.value, user_id)

    assert ret.status == "approved"
    assert ret.approved_by == user_id
    assert ret.approved_at is not None
    assert history.return_id == ret.id
    assert history.from_status == "initiated"
    assert history.to_status == "approved"
    assert history.changed_by == user_id


def test_reject_records_reason():
    ret = make_return(ReturnStatus.INITIATED.value)

    history = transition_return(ret, ReturnStatus.REJECTED.value, uuid.uuid4(), "Outside window")

    assert ret.status == "rejected"
    assert ret.rejection_reason == "Outside window"
    assert history.notes == "Outside window"


def test_complete_sets_completed_at():
    ret = make_return(ReturnStatus.PROCESSING.value)
    transition_return(ret, ReturnStatus.COMPLETED.value)
    assert ret.status == "completed"
    assert ret.completed_at is not None


def test_failed_transition_leaves_return_untouched():
    ret = make_return(ReturnStatus.APPROVED.value)
    with pytest.raises(InvalidTransitionError):
        transition_return(ret, ReturnStatus.COMPLETED.value)
    assert ret.status == "approved"
    assert ret.completed_at is None

"""
Tests for return validation and refund calculation.
"""
import uuid
from decimal import Decimal

import pytest

from returns_engine.exceptions import (
    NotFoundError, InvalidInputError, InvalidStateError, QuantityExceededError
)
from returns_engine.schemas.returns import ReturnCreate, ReturnItemCreate
from returns_engine.services.order_store import SqlOrderStore
from returns_engine.services.ports import OrderSnapshot
from returns_engine.services.return_service import ReturnService
from returns_engine.services.return_store import SqlReturnStore
from returns_engine.services.return_validation import RefundCalculator, ReturnQuantityValidator


def snapshot(rates=(Decimal("0.13"),), tax_exempt=False) -> OrderSnapshot:
    return OrderSnapshot(
        id=uuid.uuid4(),
        order_number="ORD-1",
        status="completed",
        customer_id=None,
        tax_rates=tuple(rates),
        tax_exempt=tax_exempt,
        total_cents=0,
    )


def request(order_id, *items, **kwargs) -> ReturnCreate:
    return ReturnCreate(
        original_order_id=order_id,
        items=[
            ReturnItemCreate(original_order_item_id=line_id, quantity=qty)
            for line_id, qty in items
        ],
        **kwargs,
    )


def validator(db, settings) -> ReturnQuantityValidator:
    return ReturnQuantityValidator(SqlOrderStore(db, settings), SqlReturnStore(db), settings)


# =============================================================================
# REFUND CALCULATION
# =============================================================================

def test_tax_rounds_half_up_on_aggregate():
    calc = RefundCalculator()
    assert calc.tax(50, snapshot()) == 7        # 6.5 -> 7
    assert calc.tax(2000, snapshot()) == 260


def test_tax_uses_combined_rate_once():
    # 1005 * 0.05 = 50.25 and 1005 * 0.08 = 80.40 would round to 130 separately
    calc = RefundCalculator()
    order = snapshot(rates=(Decimal("0.05"), Decimal("0.08")))
    assert calc.tax(1005, order) == 131


def test_tax_exempt_order_has_no_tax():
    totals = RefundCalculator().totals(snapshot(tax_exempt=True), [1000, 2000])
    assert totals.subtotal_cents == 3000
    assert totals.tax_cents == 0
    assert totals.total_cents == 3000


def test_totals_sum_line_refunds():
    calc = RefundCalculator()
    totals = calc.totals(snapshot(), [calc.line_refund(1000, 2), calc.line_refund(2000, 1)])
    assert totals.subtotal_cents == 4000
    assert totals.tax_cents == 520
    assert totals.total_cents == totals.subtotal_cents + totals.tax_cents


# =============================================================================
# QUANTITY VALIDATION
# =============================================================================

async def test_partial_return_is_priced(db, settings, order):
    validated = await validator(db, settings).validate(
        request(order.order_id, (order.widget_line_id, 2))
    )
    assert validated.return_type == "partial"
    assert validated.totals.subtotal_cents == 2000
    assert validated.totals.tax_cents == 260
    assert validated.lines[0].refund_amount_cents == 2000


async def test_every_line_in_full_is_a_full_return(db, settings, order):
    validated = await validator(db, settings).validate(
        request(order.order_id, (order.widget_line_id, 3), (order.gadget_line_id, 1))
    )
    assert validated.return_type == "full"


async def test_explicit_return_type_wins(db, settings, order):
    validated = await validator(db, settings).validate(
        request(order.order_id, (order.widget_line_id, 1), return_type="full")
    )
    assert validated.return_type == "full"


async def test_second_return_cannot_exceed_remaining(db, settings, order):
    service = ReturnService(db, settings=settings)
    await service.create_return(request(order.order_id, (order.widget_line_id, 2)))

    with pytest.raises(QuantityExceededError) as exc:
        await service.create_return(request(order.order_id, (order.widget_line_id, 2)))

    details = exc.value.details
    assert details["remaining"] == 1
    assert details["already_returned"] == 2
    assert details["requested"] == 2
    assert details["product_name"] == "Widget"


async def test_cancelled_return_frees_quantity(db, settings, order):
    service = ReturnService(db, settings=settings)
    first = await service.create_return(request(order.order_id, (order.widget_line_id, 3)))
    await service.cancel(first.id, reason="Customer kept it")

    second = await service.create_return(request(order.order_id, (order.widget_line_id, 3)))
    assert second.items[0].quantity == 3


async def test_unknown_order(db, settings):
    with pytest.raises(NotFoundError):
        await validator(db, settings).validate(request(uuid.uuid4(), (uuid.uuid4(), 1)))


async def test_order_not_in_returnable_status(db, settings, make_order):
    pending = await make_order(status="pending")
    with pytest.raises(InvalidStateError) as exc:
        await validator(db, settings).validate(request(pending.order_id, (pending.widget_line_id, 1)))
    assert exc.value.details["status"] == "pending"


async def test_empty_items(db, settings, order):
    with pytest.raises(InvalidInputError):
        await validator(db, settings).validate(request(order.order_id))


async def test_line_from_another_order(db, settings, order, make_order):
    other = await make_order()
    with pytest.raises(NotFoundError):
        await validator(db, settings).validate(request(order.order_id, (other.widget_line_id, 1)))


@pytest.mark.parametrize("quantity", [0, -1, 4])
async def test_quantity_out_of_range(db, settings, order, quantity):
    with pytest.raises(InvalidInputError) as exc:
        await validator(db, settings).validate(
            request(order.order_id, (order.widget_line_id, quantity))
        )
    assert exc.value.details["max_quantity"] == 3


async def test_duplicate_lines_rejected(db, settings, order):
    with pytest.raises(InvalidInputError) as exc:
        await validator(db, settings).validate(
            request(order.order_id, (order.widget_line_id, 1), (order.widget_line_id, 1))
        )
    assert str(order.widget_line_id) in exc.value.details["duplicate_order_item_ids"]


# =============================================================================
# REASON CODES
# =============================================================================

async def test_inactive_reason_code_is_not_found(db, settings, order, reason_codes):
    data = ReturnCreate(
        original_order_id=order.order_id,
        items=[ReturnItemCreate(
            original_order_item_id=order.widget_line_id,
            quantity=1,
            reason_code_id=reason_codes["retired"].id,
        )],
    )
    with pytest.raises(NotFoundError):
        await validator(db, settings).validate(data)


async def test_reason_requiring_notes(db, settings, order, reason_codes):
    item = dict(
        original_order_item_id=order.widget_line_id,
        quantity=1,
        reason_code_id=reason_codes["other"].id,
    )
    with pytest.raises(InvalidInputError):
        await validator(db, settings).validate(
            ReturnCreate(original_order_id=order.order_id, items=[ReturnItemCreate(**item)])
        )

    validated = await validator(db, settings).validate(ReturnCreate(
        original_order_id=order.order_id,
        items=[ReturnItemCreate(**item, reason_notes="Wrong colour")],
    ))
    assert validated.lines[0].reason_notes == "Wrong colour"

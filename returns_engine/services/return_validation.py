"""
Return validation and refund calculation.

ReturnQuantityValidator checks a requested return against the original order
and every quantity already returned under live returns. RefundCalculator
prices the validated lines using the order's own tax configuration.
"""
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict

from returns_engine.config import Settings, get_settings
from returns_engine.exceptions import (
    NotFoundError, InvalidInputError, InvalidStateError, QuantityExceededError
)
from returns_engine.models.returns import ReturnType, VOIDED_RETURN_STATUSES
from returns_engine.schemas.returns import ReturnCreate, ReturnItemCreate
from returns_engine.services.ports import OrderStore, OrderSnapshot, OrderLine
from returns_engine.services.return_store import SqlReturnStore


@dataclass
class ValidatedReturnLine:
    """A requested line that passed validation, with its refund amount."""
    order_line: OrderLine
    quantity: int
    refund_amount_cents: int
    item_condition: str
    reason_code_id: Optional[uuid.UUID] = None
    reason_notes: Optional[str] = None


@dataclass
class RefundTotals:
    subtotal_cents: int
    tax_cents: int

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents


@dataclass
class ValidatedReturn:
    """Everything needed to insert a Return and its items."""
    order: OrderSnapshot
    return_type: str
    totals: RefundTotals
    lines: List[ValidatedReturnLine] = field(default_factory=list)


class RefundCalculator:
    """Prices returned lines. All amounts are integer minor units."""

    @staticmethod
    def line_refund(unit_price_cents: int, quantity: int) -> int:
        return unit_price_cents * quantity

    @staticmethod
    def tax(subtotal_cents: int, order: OrderSnapshot) -> int:
        """
        Tax on the aggregate subtotal at the combined rate, rounded half-up once.

        Rounding the aggregate (not each line or component) keeps refunds
        consistent with historical amounts.
        """
        if order.tax_exempt:
            return 0
        tax = Decimal(subtotal_cents) * order.combined_tax_rate
        return int(tax.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def totals(self, order: OrderSnapshot, line_refunds: List[int]) -> RefundTotals:
        subtotal = sum(line_refunds)
        return RefundTotals(subtotal_cents=subtotal, tax_cents=self.tax(subtotal, order))


class ReturnQuantityValidator:
    """
    Validates a return request before the return is written.

    Must run inside the transaction that inserts the return. The order is
    write-locked before anything is read, so two concurrent returns on the
    same order are checked one after the other.
    """

    def __init__(
        self,
        order_store: OrderStore,
        return_store: SqlReturnStore,
        settings: Optional[Settings] = None,
        calculator: Optional[RefundCalculator] = None,
    ):
        self.order_store = order_store
        self.return_store = return_store
        self.settings = settings or get_settings()
        self.calculator = calculator or RefundCalculator()

    async def _load_order(self, order_id: uuid.UUID) -> OrderSnapshot:
        order = await self.order_store.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        if order.status not in self.settings.RETURNABLE_ORDER_STATUSES:
            raise InvalidStateError(
                f"Cannot initiate return: order status is '{order.status}'",
                {
                    "order_id": str(order_id),
                    "status": order.status,
                    "allowed_statuses": list(self.settings.RETURNABLE_ORDER_STATUSES),
                },
            )
        return order

    async def _check_reason_codes(self, items: List[ReturnItemCreate]) -> None:
        code_ids = {item.reason_code_id for item in items if item.reason_code_id}
        codes = await self.return_store.get_reason_codes(list(code_ids))

        for item in items:
            if not item.reason_code_id:
                continue
            code = codes.get(item.reason_code_id)
            if code is None or not code.active:
                raise NotFoundError(
                    f"Return reason code {item.reason_code_id} not found",
                    {"reason_code_id": str(item.reason_code_id)},
                )
            if code.requires_notes and not (item.reason_notes or "").strip():
                raise InvalidInputError(
                    f"Reason '{code.code}' requires notes",
                    {
                        "order_item_id": str(item.original_order_item_id),
                        "reason_code": code.code,
                    },
                )

    async def validate(self, data: ReturnCreate) -> ValidatedReturn:
        """
        Validate a return request and price it.

        Raises:
            NotFoundError: Order, order line or reason code missing
            InvalidStateError: Order is not in a post-sale status
            InvalidInputError: No items, duplicate lines, bad quantity
            QuantityExceededError: Over-return on a line
        """
        # Lock first; the reads below see every return committed before ours
        await self.order_store.lock_order(data.original_order_id)
        order = await self._load_order(data.original_order_id)

        if not data.items:
            raise InvalidInputError(
                "At least one return item is required",
                {"order_id": str(order.id)},
            )

        requested_ids = [item.original_order_item_id for item in data.items]
        if len(set(requested_ids)) != len(requested_ids):
            duplicates = sorted({str(i) for i in requested_ids if requested_ids.count(i) > 1})
            raise InvalidInputError(
                "Each order item may appear only once in a return",
                {"duplicate_order_item_ids": duplicates},
            )

        lines = await self.order_store.get_order_lines(order.id, requested_ids, for_update=True)
        lines_by_id: Dict[uuid.UUID, OrderLine] = {line.id: line for line in lines}

        for item in data.items:
            if item.original_order_item_id not in lines_by_id:
                raise NotFoundError(
                    f"Order item {item.original_order_item_id} not found in this order",
                    {
                        "order_id": str(order.id),
                        "order_item_id": str(item.original_order_item_id),
                    },
                )

        for item in data.items:
            line = lines_by_id[item.original_order_item_id]
            if item.quantity < 1 or item.quantity > line.quantity:
                raise InvalidInputError(
                    f"Invalid quantity {item.quantity} for item '{line.product_name}' "
                    f"(max: {line.quantity})",
                    {
                        "order_item_id": str(line.id),
                        "product_name": line.product_name,
                        "quantity": item.quantity,
                        "max_quantity": line.quantity,
                    },
                )

        already = await self.return_store.sum_returned_quantities(
            requested_ids, VOIDED_RETURN_STATUSES
        )
        for item in data.items:
            line = lines_by_id[item.original_order_item_id]
            already_returned = already.get(line.id, 0)
            remaining = line.quantity - already_returned
            if item.quantity > remaining:
                raise QuantityExceededError(
                    f"Cannot return {item.quantity} of '{line.product_name}': "
                    f"only {remaining} remaining ({already_returned} already returned)",
                    {
                        "order_item_id": str(line.id),
                        "product_name": line.product_name,
                        "requested": item.quantity,
                        "remaining": remaining,
                        "already_returned": already_returned,
                        "original_quantity": line.quantity,
                    },
                )

        await self._check_reason_codes(data.items)

        validated = [
            ValidatedReturnLine(
                order_line=lines_by_id[item.original_order_item_id],
                quantity=item.quantity,
                refund_amount_cents=self.calculator.line_refund(
                    lines_by_id[item.original_order_item_id].unit_price_cents, item.quantity
                ),
                item_condition=item.item_condition.value,
                reason_code_id=item.reason_code_id,
                reason_notes=item.reason_notes,
            )
            for item in data.items
        ]
        totals = self.calculator.totals(order, [v.refund_amount_cents for v in validated])

        if data.return_type:
            return_type = data.return_type.value
        else:
            return_type = await self._default_return_type(order, validated)

        return ValidatedReturn(order=order, return_type=return_type, totals=totals, lines=validated)

    async def _default_return_type(
        self, order: OrderSnapshot, validated: List[ValidatedReturnLine]
    ) -> str:
        """``full`` only when this request returns every line of the order in full."""
        requested = {v.order_line.id: v.quantity for v in validated}
        all_lines = await self.order_store.get_order_lines(order.id)
        if all_lines and all(requested.get(line.id) == line.quantity for line in all_lines):
            return ReturnType.FULL.value
        return ReturnType.PARTIAL.value

"""
Order store backed by the sales tables.

Reads orders, lines and payment instruments, appends refund rows to the
payment ledger and recomputes order paid/due totals.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Sequence

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.config import Settings, get_settings
from returns_engine.exceptions import NotFoundError
from returns_engine.models.order import Order, OrderItem, OrderPayment
from returns_engine.services.ports import (
    OrderSnapshot, OrderLine, PaymentInstrument, RefundPaymentEntry
)


class SqlOrderStore:
    """Order store over ``orders``, ``order_items`` and ``order_payments``."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def lock_order(self, order_id: uuid.UUID) -> bool:
        """
        Take the order's write lock for the rest of the transaction.

        Must be the first statement of the transaction. Bumping
        ``returns_version`` is a write, so it also serializes on SQLite,
        which ignores FOR UPDATE. Returns False when the order doesn't exist.
        """
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(returns_version=Order.returns_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def get_order(self, order_id: uuid.UUID) -> Optional[OrderSnapshot]:
        order = await self.db.get(Order, order_id, populate_existing=True)
        if not order:
            return None
        return OrderSnapshot(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            customer_id=order.customer_id,
            tax_rates=tuple(
                Decimal(rate or 0) for rate in (order.hst_rate, order.gst_rate, order.pst_rate)
            ),
            tax_exempt=bool(order.tax_exempt),
            total_cents=order.total_cents,
        )

    async def get_order_lines(
        self,
        order_id: uuid.UUID,
        line_ids: Optional[Sequence[uuid.UUID]] = None,
        for_update: bool = False,
    ) -> List[OrderLine]:
        """
        Get lines of an order, optionally restricted to ``line_ids``.

        With ``for_update`` the rows are locked in id order, which serializes
        concurrent return creations touching the same lines.
        """
        query = select(OrderItem).where(OrderItem.order_id == order_id)
        if line_ids is not None:
            query = query.where(OrderItem.id.in_(list(line_ids)))
        query = query.order_by(OrderItem.id)
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        return [
            OrderLine(
                id=item.id,
                order_id=item.order_id,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
            )
            for item in result.scalars().all()
        ]

    async def list_completed_payment_instruments(
        self, order_id: uuid.UUID
    ) -> List[PaymentInstrument]:
        """
        Completed non-refund payments with what earlier refunds already took
        back from each, ordered by available amount (largest first, ties by
        creation order). Fully refunded instruments are left out.
        """
        await self.db.flush()
        result = await self.db.execute(
            select(OrderPayment).where(
                and_(
                    OrderPayment.order_id == order_id,
                    OrderPayment.status == "completed",
                    OrderPayment.is_refund.is_(False),
                )
            ).order_by(OrderPayment.created_at, OrderPayment.id)
        )
        payments = list(result.scalars().all())

        refunded_result = await self.db.execute(
            select(
                OrderPayment.original_payment_id,
                func.coalesce(func.sum(OrderPayment.amount_cents), 0),
            ).where(
                and_(
                    OrderPayment.order_id == order_id,
                    OrderPayment.status == "completed",
                    OrderPayment.is_refund.is_(True),
                    OrderPayment.original_payment_id.is_not(None),
                )
            ).group_by(OrderPayment.original_payment_id)
        )
        # Refund rows are negative
        refunded = {payment_id: -int(total) for payment_id, total in refunded_result.all()}

        card_methods = set(self.settings.CARD_PAYMENT_METHODS)
        instruments = [
            PaymentInstrument(
                id=payment.id,
                payment_method=payment.payment_method,
                amount_cents=payment.amount_cents,
                processor_reference=payment.processor_reference,
                is_card=payment.payment_method in card_methods,
                refunded_cents=refunded.get(payment.id, 0),
            )
            for payment in payments
        ]
        # sorted() is stable, so equal amounts keep creation order
        return sorted(
            (i for i in instruments if i.available_cents > 0),
            key=lambda i: i.available_cents,
            reverse=True,
        )

    async def append_refund_payment_entry(self, entry: RefundPaymentEntry) -> uuid.UUID:
        """Append a negative-amount refund row. ``entry.amount_cents`` is the positive refund."""
        payment = OrderPayment(
            order_id=entry.order_id,
            payment_method=entry.payment_method,
            amount_cents=-abs(entry.amount_cents),
            status="completed",
            is_refund=True,
            refund_reason=entry.refund_reason,
            original_payment_id=entry.original_payment_id,
            processor_reference=entry.processor_reference,
            processed_by=entry.processed_by,
            processed_at=datetime.now(timezone.utc),
            notes=entry.notes,
        )
        self.db.add(payment)
        await self.db.flush()
        return payment.id

    async def recompute_paid_due(self, order_id: uuid.UUID) -> None:
        """Recompute paid/due from the full payment ledger rather than incrementally."""
        order = await self.db.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})

        await self.db.flush()
        paid = await self.db.scalar(
            select(func.coalesce(func.sum(OrderPayment.amount_cents), 0)).where(
                and_(
                    OrderPayment.order_id == order_id,
                    OrderPayment.status == "completed",
                )
            )
        )
        order.amount_paid_cents = int(paid or 0)
        order.amount_due_cents = order.total_cents - order.amount_paid_cents
        order.updated_at = datetime.now(timezone.utc)

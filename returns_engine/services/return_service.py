"""
Return Service - customer returns against completed orders.

Creates returns (validation + refund calculation run once, at creation),
reads and searches them, and drives the approval side of the lifecycle.
Settlement lives in RefundSettlementOrchestrator.
"""
import logging
import math
import uuid
from datetime import date
from typing import Optional, List

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.config import Settings, get_settings
from returns_engine.exceptions import NotFoundError
from returns_engine.models.returns import (
    Return, ReturnItem, ReturnStatus, ReturnStatusHistory, VOIDED_RETURN_STATUSES
)
from returns_engine.schemas.returns import (
    ReturnCreate, ReturnResponse, ReturnListResponse, ReasonCodeResponse, ReturnableLine
)
from returns_engine.services.order_store import SqlOrderStore
from returns_engine.services.ports import OrderStore
from returns_engine.services.return_state_machine import transition_return
from returns_engine.services.return_store import SqlReturnStore
from returns_engine.services.return_validation import ReturnQuantityValidator

logger = logging.getLogger(__name__)


class ReturnService:
    """Service for return creation, lookup and approval transitions."""

    def __init__(
        self,
        db: AsyncSession,
        order_store: Optional[OrderStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.order_store = order_store or SqlOrderStore(db, self.settings)
        self.store = SqlReturnStore(db)
        self.validator = ReturnQuantityValidator(self.order_store, self.store, self.settings)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_return(
        self,
        data: ReturnCreate,
        user_id: Optional[uuid.UUID] = None
    ) -> ReturnResponse:
        """
        Create a return in ``initiated`` status.

        Validation and insert share one transaction; the order stays
        write-locked until commit.
        """
        try:
            validated = await self.validator.validate(data)
            totals = validated.totals

            ret = Return(
                return_number=await self.store.next_return_number(
                    self.settings.RETURN_NUMBER_PREFIX
                ),
                return_type=validated.return_type,
                status=ReturnStatus.INITIATED.value,
                original_order_id=validated.order.id,
                customer_id=validated.order.customer_id,
                refund_subtotal_cents=totals.subtotal_cents,
                refund_tax_cents=totals.tax_cents,
                refund_total_cents=totals.total_cents,
                restocking_fee_cents=0,
                refund_method=data.refund_method.value if data.refund_method else None,
                initiated_by=user_id,
                notes=data.notes,
            )
            self.db.add(ret)
            await self.db.flush()

            for line in validated.lines:
                self.db.add(ReturnItem(
                    return_id=ret.id,
                    original_order_item_id=line.order_line.id,
                    product_id=line.order_line.product_id,
                    quantity=line.quantity,
                    unit_price_cents=line.order_line.unit_price_cents,
                    refund_amount_cents=line.refund_amount_cents,
                    reason_code_id=line.reason_code_id,
                    reason_notes=line.reason_notes,
                    item_condition=line.item_condition,
                ))

            self.db.add(ReturnStatusHistory(
                return_id=ret.id,
                from_status=None,
                to_status=ReturnStatus.INITIATED.value,
                notes="Return initiated",
                changed_by=user_id,
            ))

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Created return {ret.return_number} for order {validated.order.order_number}: "
            f"{len(validated.lines)} line(s), refund total {totals.total_cents}"
        )
        return await self.get_return(ret.id)

    # =========================================================================
    # READ
    # =========================================================================

    async def get_return(self, return_id: uuid.UUID) -> ReturnResponse:
        """Get return by ID with items and status history."""
        ret = await self.store.get(return_id)
        if not ret:
            raise NotFoundError("Return not found", {"return_id": str(return_id)})
        return ReturnResponse.model_validate(ret)

    async def list_returns(
        self,
        status: Optional[ReturnStatus] = None,
        customer_id: Optional[uuid.UUID] = None,
        original_order_id: Optional[uuid.UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 50
    ) -> ReturnListResponse:
        """List returns with filters."""
        page = max(page, 1)
        limit = min(max(limit, 1), self.settings.MAX_PAGE_SIZE)

        returns, total = await self.store.search(
            status=status.value if status else None,
            customer_id=customer_id,
            original_order_id=original_order_id,
            date_from=date_from,
            date_to=date_to,
            search=search,
            skip=(page - 1) * limit,
            limit=limit,
        )
        return ReturnListResponse(
            items=[ReturnResponse.model_validate(r) for r in returns],
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit) if total else 0,
        )

    async def list_reason_codes(self) -> List[ReasonCodeResponse]:
        """Active reason codes in display order."""
        codes = await self.store.list_active_reason_codes()
        return [ReasonCodeResponse.model_validate(code) for code in codes]

    async def get_returnable_quantities(self, order_id: uuid.UUID) -> List[ReturnableLine]:
        """Per line of an order: original, already returned and remaining quantity."""
        order = await self.order_store.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})

        lines = await self.order_store.get_order_lines(order_id)
        returned = await self.store.sum_returned_quantities(
            [line.id for line in lines], VOIDED_RETURN_STATUSES
        )
        return [
            ReturnableLine(
                order_item_id=line.id,
                product_id=line.product_id,
                product_name=line.product_name,
                original_quantity=line.quantity,
                already_returned=returned.get(line.id, 0),
                remaining=line.quantity - returned.get(line.id, 0),
                unit_price_cents=line.unit_price_cents,
            )
            for line in lines
        ]

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    async def approve(self, return_id: uuid.UUID, user_id: uuid.UUID) -> ReturnResponse:
        return await self._transition(return_id, ReturnStatus.APPROVED.value, user_id)

    async def reject(
        self,
        return_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: str
    ) -> ReturnResponse:
        return await self._transition(return_id, ReturnStatus.REJECTED.value, user_id, reason)

    async def start_processing(self, return_id: uuid.UUID, user_id: uuid.UUID) -> ReturnResponse:
        return await self._transition(return_id, ReturnStatus.PROCESSING.value, user_id)

    async def cancel(
        self,
        return_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None
    ) -> ReturnResponse:
        return await self._transition(return_id, ReturnStatus.CANCELLED.value, user_id, reason)

    async def _transition(
        self,
        return_id: uuid.UUID,
        new_status: str,
        user_id: Optional[uuid.UUID],
        reason: Optional[str] = None,
    ) -> ReturnResponse:
        """Lock the return row and apply one state machine edge."""
        try:
            ret = await self.store.get_for_update(return_id)
            if not ret:
                raise NotFoundError("Return not found", {"return_id": str(return_id)})

            history = transition_return(ret, new_status, user_id, reason)
            self.db.add(history)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self.get_return(return_id)

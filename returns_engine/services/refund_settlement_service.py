"""
Refund Settlement Service

Settles an approved return: moves the money on the chosen rail, routes the
returned stock, and completes the return - all in one unit of work.

Refund methods:
- original_payment: greedy split across the order's payments (largest
  available first). Card allocations are refunded through the card
  processor; other allocations are recorded only. Whatever the payments
  cannot absorb is issued as store credit.
- store_credit: one new store credit for the whole amount.
- cash: one cash refund row, plus a best-effort cash drawer movement.

The return row is write-locked for the whole settlement, including processor
calls, so a return settles at most once.
"""
import logging
import uuid
from typing import Optional, List, Dict, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.config import Settings, get_settings
from returns_engine.exceptions import (
    NotFoundError, InvalidInputError, InvalidAmountError, InvalidStateError,
    ExternalProcessorError
)
from returns_engine.models.returns import (
    Return, ReturnStatus, RefundMethod, Disposition, ItemCondition
)
from returns_engine.models.store_credit import StoreCreditTransactionType
from returns_engine.schemas.returns import ReturnResponse
from returns_engine.schemas.settlement import (
    SettlementRequest, SettlementResult, SettlementDetail,
    RefundAllocation, InventoryAdjustment, RefundQuote
)
from returns_engine.services.cash_drawer_service import CashDrawerService
from returns_engine.services.disposition_router import (
    InventoryDispositionRouter, resolve_disposition
)
from returns_engine.services.inventory_ledger import InventoryLedgerService
from returns_engine.services.order_store import SqlOrderStore
from returns_engine.services.ports import (
    OrderStore, CardProcessor, StoreCreditLedger, InventoryLedger, CashDrawer,
    PaymentInstrument, AllocationPlan, RefundPaymentEntry
)
from returns_engine.services.return_state_machine import transition_return, can_settle
from returns_engine.services.return_store import SqlReturnStore
from returns_engine.services.store_credit_service import StoreCreditService

logger = logging.getLogger(__name__)

PROCESSOR_REFUND_REASON = "requested_by_customer"


def allocate_refund(amount_cents: int, instruments: Sequence[PaymentInstrument]) -> AllocationPlan:
    """
    Split a refund across payment instruments, largest available first.

    Never allocates more than an instrument's available amount; anything
    left over is reported as overflow.
    """
    plan = AllocationPlan()
    remaining = amount_cents
    # sorted() is stable: equal amounts keep the caller's order
    for instrument in sorted(instruments, key=lambda i: i.available_cents, reverse=True):
        if remaining <= 0:
            break
        allocation = min(remaining, instrument.available_cents)
        if allocation <= 0:
            continue
        plan.allocations.append((instrument, allocation))
        remaining -= allocation
    plan.overflow_cents = max(remaining, 0)
    return plan


class RefundSettlementOrchestrator:
    """
    Settlement engine for returns.

    Every collaborator is passed in by the caller and must share ``db`` so
    that ledger writes commit or roll back together with the return.
    """

    def __init__(
        self,
        db: AsyncSession,
        order_store: OrderStore,
        store_credits: StoreCreditLedger,
        inventory: InventoryLedger,
        card_processor: Optional[CardProcessor] = None,
        cash_drawer: Optional[CashDrawer] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.order_store = order_store
        self.store_credits = store_credits
        self.card_processor = card_processor
        self.cash_drawer = cash_drawer
        self.router = InventoryDispositionRouter(inventory)
        self.returns = SqlReturnStore(db)

    @classmethod
    def from_session(
        cls,
        db: AsyncSession,
        card_processor: Optional[CardProcessor] = None,
        settings: Optional[Settings] = None,
    ) -> "RefundSettlementOrchestrator":
        """Wire the SQL-backed collaborators onto one session."""
        settings = settings or get_settings()
        return cls(
            db=db,
            order_store=SqlOrderStore(db, settings),
            store_credits=StoreCreditService(db, settings),
            inventory=InventoryLedgerService(db),
            card_processor=card_processor,
            cash_drawer=CashDrawerService(db),
            settings=settings,
        )

    # =========================================================================
    # QUOTE
    # =========================================================================

    async def quote_refund(
        self,
        return_id: uuid.UUID,
        restocking_fee_cents: Optional[int] = None,
    ) -> RefundQuote:
        """Preview an ``original_payment`` settlement. No writes, no processor calls."""
        ret = await self.returns.get(return_id)
        if not ret:
            raise NotFoundError("Return not found", {"return_id": str(return_id)})
        self._check_settleable(ret)

        fee = self._validated_fee(ret, restocking_fee_cents)
        amount = ret.refund_total_cents - fee
        if amount <= 0:
            raise InvalidAmountError(
                "Refund amount must be greater than zero after restocking fee",
                {"refund_total_cents": ret.refund_total_cents, "restocking_fee_cents": fee},
            )

        instruments = await self.order_store.list_completed_payment_instruments(
            ret.original_order_id
        )
        plan = allocate_refund(amount, instruments)

        return RefundQuote(
            return_id=ret.id,
            return_number=ret.return_number,
            refund_total_cents=ret.refund_total_cents,
            restocking_fee_cents=fee,
            refund_amount_cents=amount,
            allocations=[
                RefundAllocation(
                    payment_id=instrument.id,
                    payment_method=instrument.payment_method,
                    amount_cents=allocated,
                )
                for instrument, allocated in plan.allocations
            ],
            store_credit_overflow_cents=plan.overflow_cents,
            has_resellable_items=any(
                item.item_condition == ItemCondition.RESELLABLE.value for item in ret.items
            ),
        )

    # =========================================================================
    # SETTLE
    # =========================================================================

    async def settle(
        self,
        return_id: uuid.UUID,
        request: SettlementRequest,
        user_id: Optional[uuid.UUID] = None,
    ) -> SettlementResult:
        """
        Settle a return on the requested refund method.

        Raises:
            NotFoundError: Return missing
            InvalidStateError: Return not approved/processing, or card refunds
                needed with no processor configured
            InvalidInputError: Unknown method, negative fee, bad disposition override
            InvalidAmountError: Nothing left to refund after the restocking fee
            ExternalProcessorError: A card refund failed; nothing is recorded
        """
        warnings: List[str] = []

        try:
            ret = await self.returns.get_for_update(return_id)
            if not ret:
                raise NotFoundError("Return not found", {"return_id": str(return_id)})
            self._check_settleable(ret)

            method = self._parse_method(request.refund_method)
            fee = self._validated_fee(ret, request.restocking_fee_cents)
            amount = ret.refund_total_cents - fee
            if amount <= 0:
                raise InvalidAmountError(
                    "Refund amount must be greater than zero after restocking fee",
                    {"refund_total_cents": ret.refund_total_cents, "restocking_fee_cents": fee},
                )
            overrides = self._validated_overrides(ret, request.dispositions)

            plan = None
            if method == RefundMethod.ORIGINAL_PAYMENT:
                plan = await self._plan_original_payment(ret, amount)

            # Every check has passed; mutations start here
            ret.restocking_fee_cents = fee
            if ret.status == ReturnStatus.APPROVED.value:
                self.db.add(transition_return(ret, ReturnStatus.PROCESSING.value, user_id))

            logger.info(
                f"Settling return {ret.return_number}: {amount} cents via {method.value}"
            )
            detail = SettlementDetail(
                method=method.value,
                refund_amount_cents=amount,
                restocking_fee_cents=fee,
            )

            if method == RefundMethod.ORIGINAL_PAYMENT:
                await self._settle_original_payment(ret, plan, user_id, detail)
            elif method == RefundMethod.STORE_CREDIT:
                await self._issue_store_credit(ret, amount, user_id, detail)
            else:
                await self._settle_cash(ret, amount, user_id, request.shift_id, warnings)

            detail.inventory_adjustments = await self._route_inventory(ret, overrides, user_id)

            ret.refund_method = method.value
            ret.processor_refund_id = detail.processor_refund_id
            ret.store_credit_id = detail.store_credit_id
            ret.refund_details = detail.model_dump(mode="json")

            self.db.add(transition_return(
                ret, ReturnStatus.COMPLETED.value, user_id, request.notes
            ))
            await self.order_store.recompute_paid_due(ret.original_order_id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Return {ret.return_number} settled ({method.value}, {amount} cents)")

        completed = await self.returns.get(return_id)
        return SettlementResult(
            return_record=ReturnResponse.model_validate(completed),
            settlement=detail,
            warnings=warnings,
        )

    # =========================================================================
    # VALIDATION HELPERS
    # =========================================================================

    def _check_settleable(self, ret: Return) -> None:
        if not can_settle(ret.status):
            raise InvalidStateError(
                f"Cannot process refund: return status is '{ret.status}'. "
                f"Must be 'approved' or 'processing'.",
                {"return_id": str(ret.id), "status": ret.status},
            )

    @staticmethod
    def _parse_method(value) -> RefundMethod:
        try:
            return RefundMethod(value)
        except ValueError:
            raise InvalidInputError(
                f"Invalid refund method: {value}",
                {
                    "refund_method": str(value),
                    "allowed": [m.value for m in RefundMethod],
                },
            )

    @staticmethod
    def _validated_fee(ret: Return, restocking_fee_cents: Optional[int]) -> int:
        if restocking_fee_cents is None:
            return ret.restocking_fee_cents or 0
        if restocking_fee_cents < 0:
            raise InvalidInputError(
                "Restocking fee cannot be negative",
                {"restocking_fee_cents": restocking_fee_cents},
            )
        return restocking_fee_cents

    @staticmethod
    def _validated_overrides(
        ret: Return, overrides: Dict[uuid.UUID, Disposition]
    ) -> Dict[uuid.UUID, Disposition]:
        item_ids = {item.id for item in ret.items}
        unknown = [str(item_id) for item_id in overrides if item_id not in item_ids]
        if unknown:
            raise InvalidInputError(
                "Disposition overrides reference items not on this return",
                {"return_item_ids": unknown},
            )
        return dict(overrides)

    # =========================================================================
    # REFUND RAILS
    # =========================================================================

    @staticmethod
    def _card_allocations(plan: AllocationPlan) -> List[Tuple[PaymentInstrument, int]]:
        return [
            (instrument, allocated) for instrument, allocated in plan.allocations
            if instrument.is_card and instrument.processor_reference
        ]

    async def _plan_original_payment(self, ret: Return, amount: int) -> AllocationPlan:
        """Allocation plan for ``original_payment``; fails if cards need a missing processor."""
        instruments = await self.order_store.list_completed_payment_instruments(
            ret.original_order_id
        )
        plan = allocate_refund(amount, instruments)

        if self._card_allocations(plan) and not (
            self.card_processor and self.card_processor.is_configured()
        ):
            raise InvalidStateError(
                "Card processor is not configured. Cannot refund card payments. "
                "Use store_credit or cash instead.",
                {"return_id": str(ret.id)},
            )
        return plan

    async def _settle_original_payment(
        self,
        ret: Return,
        plan: AllocationPlan,
        user_id: Optional[uuid.UUID],
        detail: SettlementDetail,
    ) -> None:
        card_allocations = self._card_allocations(plan)

        # Processor calls precede every ledger write
        processor_refunds: Dict[uuid.UUID, str] = {}
        for instrument, allocated in card_allocations:
            try:
                refund = await self.card_processor.refund(
                    instrument.processor_reference, allocated, PROCESSOR_REFUND_REASON
                )
            except Exception as e:
                already_issued = list(processor_refunds.values())
                logger.error(
                    f"Card refund failed for return {ret.return_number} "
                    f"(payment {instrument.id}, {allocated} cents): {e}. "
                    f"Refunds already issued in this attempt: {already_issued or 'none'}"
                )
                details = dict(getattr(e, "details", {}) or {})
                details.update({
                    "return_id": str(ret.id),
                    "payment_id": str(instrument.id),
                    "processor_reference": instrument.processor_reference,
                    "amount_cents": allocated,
                    "issued_refund_ids": already_issued,
                })
                message = e.message if isinstance(e, ExternalProcessorError) else f"Card refund failed: {e}"
                raise ExternalProcessorError(message, details) from e

            processor_refunds[instrument.id] = refund.refund_id
            detail.processor_refund_id = detail.processor_refund_id or refund.refund_id

        for instrument, allocated in plan.allocations:
            processor_refund_id = processor_refunds.get(instrument.id)
            await self.order_store.append_refund_payment_entry(RefundPaymentEntry(
                order_id=ret.original_order_id,
                payment_method=instrument.payment_method,
                amount_cents=allocated,
                refund_reason=f"Return {ret.return_number}",
                original_payment_id=instrument.id,
                processor_reference=processor_refund_id,
                processed_by=user_id,
                notes=f"Refund for return {ret.return_number}",
            ))
            detail.allocations.append(RefundAllocation(
                payment_id=instrument.id,
                payment_method=instrument.payment_method,
                amount_cents=allocated,
                processor_refund_id=processor_refund_id,
            ))

        if plan.overflow_cents > 0:
            logger.info(
                f"Return {ret.return_number}: {plan.overflow_cents} cents exceed original "
                f"payments, issuing store credit"
            )
            await self._issue_store_credit(ret, plan.overflow_cents, user_id, detail)

    async def _issue_store_credit(
        self,
        ret: Return,
        amount: int,
        user_id: Optional[uuid.UUID],
        detail: SettlementDetail,
    ) -> None:
        credit = await self.store_credits.create_credit(
            customer_id=ret.customer_id,
            amount_cents=amount,
            source_return_id=ret.id,
            issued_by=user_id,
            notes=f"Refund for return {ret.return_number}",
        )
        await self.store_credits.append_transaction(
            credit_id=credit.id,
            amount_cents=amount,
            transaction_type=StoreCreditTransactionType.ISSUE.value,
            reference_id=ret.id,
            performed_by=user_id,
            notes=f"Issued from return {ret.return_number}",
        )
        detail.store_credit_id = credit.id
        detail.store_credit_code = credit.code
        detail.store_credit_amount_cents = credit.amount_cents

    async def _settle_cash(
        self,
        ret: Return,
        amount: int,
        user_id: Optional[uuid.UUID],
        shift_id: Optional[uuid.UUID],
        warnings: List[str],
    ) -> None:
        await self.order_store.append_refund_payment_entry(RefundPaymentEntry(
            order_id=ret.original_order_id,
            payment_method="cash",
            amount_cents=amount,
            refund_reason=f"Return {ret.return_number}",
            processed_by=user_id,
            notes=f"Cash refund for return {ret.return_number}",
        ))

        if not shift_id:
            return
        if self.cash_drawer is None:
            logger.warning(
                f"Cash drawer movement not recorded for return {ret.return_number} "
                f"(shift {shift_id}): no cash drawer configured"
            )
            warnings.append("Cash drawer movement not recorded: no cash drawer configured")
            return

        # A drawer failure rolls back only its own SAVEPOINT
        try:
            async with self.db.begin_nested():
                await self.cash_drawer.record_refund(
                    shift_id=shift_id,
                    amount_cents=amount,
                    reference_number=ret.return_number,
                    user_id=user_id,
                    notes=f"Order {ret.original_order_id}",
                )
        except Exception as e:
            logger.warning(
                f"Cash drawer movement not recorded for return {ret.return_number} "
                f"(shift {shift_id}): {e}"
            )
            warnings.append(f"Cash drawer movement not recorded: {e}")

    # =========================================================================
    # INVENTORY
    # =========================================================================

    async def _route_inventory(
        self,
        ret: Return,
        overrides: Dict[uuid.UUID, Disposition],
        user_id: Optional[uuid.UUID],
    ) -> List[InventoryAdjustment]:
        adjustments: List[InventoryAdjustment] = []

        for item in ret.items:
            disposition = resolve_disposition(
                item.item_condition, overrides.get(item.id) or item.disposition
            )

            # Persisted before the ledger call
            item.disposition = disposition.value
            await self.db.flush()

            if not item.product_id:
                continue

            result = await self.router.apply(
                disposition=disposition,
                product_id=item.product_id,
                quantity=item.quantity,
                return_id=ret.id,
                return_number=ret.return_number,
                actor_id=user_id,
            )
            adjustments.append(InventoryAdjustment(
                return_item_id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                disposition=disposition.value,
                success=result.success,
                message=result.message,
                transaction_id=result.transaction_id,
            ))

        return adjustments

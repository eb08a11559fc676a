"""
Collaborator contracts for the returns engine.

The engine owns returns; orders, payments, store credit, inventory and the
card processor belong to other parts of the back office. These are the
shapes it reads and the calls it makes. SQLAlchemy-backed implementations
live next to this module and share the caller's session so every ledger
write joins the same unit of work.
"""
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List, Sequence, Tuple, Protocol


# =============================================================================
# READ SHAPES
# =============================================================================

@dataclass(frozen=True)
class OrderSnapshot:
    """Original order as the engine sees it."""
    id: uuid.UUID
    order_number: str
    status: str
    customer_id: Optional[uuid.UUID]
    tax_rates: Tuple[Decimal, ...]
    tax_exempt: bool
    total_cents: int

    @property
    def combined_tax_rate(self) -> Decimal:
        return sum(self.tax_rates, Decimal("0"))


@dataclass(frozen=True)
class OrderLine:
    """Original order line."""
    id: uuid.UUID
    order_id: uuid.UUID
    product_id: Optional[uuid.UUID]
    product_name: str
    quantity: int
    unit_price_cents: int


@dataclass(frozen=True)
class PaymentInstrument:
    """Completed, non-refund payment on the original order."""
    id: uuid.UUID
    payment_method: str
    amount_cents: int
    processor_reference: Optional[str]
    is_card: bool
    refunded_cents: int = 0

    @property
    def available_cents(self) -> int:
        """What can still be refunded to this instrument."""
        return max(self.amount_cents - self.refunded_cents, 0)


@dataclass(frozen=True)
class ProcessorRefund:
    """Refund accepted by the card processor."""
    refund_id: str
    amount_cents: int
    status: str = "processed"


@dataclass(frozen=True)
class IssuedStoreCredit:
    """Newly created store credit."""
    id: uuid.UUID
    code: str
    amount_cents: int


@dataclass(frozen=True)
class InventoryLedgerResult:
    """Outcome of one inventory ledger call."""
    success: bool
    message: str
    transaction_id: Optional[uuid.UUID] = None


@dataclass
class RefundPaymentEntry:
    """Negative-amount payment ledger row to append for a refund."""
    order_id: uuid.UUID
    payment_method: str
    amount_cents: int
    refund_reason: str
    original_payment_id: Optional[uuid.UUID] = None
    processor_reference: Optional[str] = None
    processed_by: Optional[uuid.UUID] = None
    notes: Optional[str] = None


@dataclass
class AllocationPlan:
    """Greedy split of a refund across payment instruments."""
    allocations: List[Tuple[PaymentInstrument, int]] = field(default_factory=list)
    overflow_cents: int = 0

    @property
    def allocated_cents(self) -> int:
        return sum(amount for _, amount in self.allocations)


# =============================================================================
# CONTRACTS
# =============================================================================

class OrderStore(Protocol):
    async def lock_order(self, order_id: uuid.UUID) -> bool: ...

    async def get_order(self, order_id: uuid.UUID) -> Optional[OrderSnapshot]: ...

    async def get_order_lines(
        self,
        order_id: uuid.UUID,
        line_ids: Optional[Sequence[uuid.UUID]] = None,
        for_update: bool = False,
    ) -> List[OrderLine]: ...

    async def list_completed_payment_instruments(
        self, order_id: uuid.UUID
    ) -> List[PaymentInstrument]: ...

    async def append_refund_payment_entry(self, entry: RefundPaymentEntry) -> uuid.UUID: ...

    async def recompute_paid_due(self, order_id: uuid.UUID) -> None: ...


class CardProcessor(Protocol):
    def is_configured(self) -> bool: ...

    async def refund(
        self, processor_reference: str, amount_cents: int, reason: str
    ) -> ProcessorRefund: ...


class StoreCreditLedger(Protocol):
    async def create_credit(
        self,
        customer_id: Optional[uuid.UUID],
        amount_cents: int,
        source_return_id: uuid.UUID,
        issued_by: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> IssuedStoreCredit: ...

    async def append_transaction(
        self,
        credit_id: uuid.UUID,
        amount_cents: int,
        transaction_type: str,
        reference_id: Optional[uuid.UUID] = None,
        performed_by: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> uuid.UUID: ...


class InventoryLedger(Protocol):
    async def restore(
        self,
        product_id: uuid.UUID,
        quantity: int,
        reason: str,
        reference_type: str,
        reference_id: uuid.UUID,
        reference_number: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> InventoryLedgerResult: ...

    async def audit_only(
        self,
        product_id: uuid.UUID,
        reason: str,
        reference_id: uuid.UUID,
        reference_number: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> InventoryLedgerResult: ...


class CashDrawer(Protocol):
    async def record_refund(
        self,
        shift_id: uuid.UUID,
        amount_cents: int,
        reference_number: str,
        user_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> uuid.UUID: ...

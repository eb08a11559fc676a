"""
Settlement Schemas.

Request and result shapes for refund settlement and refund quotes.
"""
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import BaseModel, Field

from returns_engine.models.returns import Disposition
from returns_engine.schemas.base import BaseCreateSchema
from returns_engine.schemas.returns import ReturnResponse


class SettlementRequest(BaseCreateSchema):
    """Schema for settling an approved return."""
    # Free string so an unknown method surfaces as InvalidInputError
    refund_method: str
    restocking_fee_cents: Optional[int] = None
    shift_id: Optional[UUID] = None
    # Return item id -> disposition override
    dispositions: Dict[UUID, Disposition] = Field(default_factory=dict)
    notes: Optional[str] = None


class RefundAllocation(BaseModel):
    """Portion of a refund charged back to one payment instrument."""
    payment_id: UUID
    payment_method: str
    amount_cents: int
    processor_refund_id: Optional[str] = None


class InventoryAdjustment(BaseModel):
    """Inventory ledger effect of one returned item."""
    return_item_id: UUID
    product_id: UUID
    quantity: int
    disposition: str
    success: bool
    message: str
    transaction_id: Optional[UUID] = None


class SettlementDetail(BaseModel):
    """Where the money and the stock went."""
    method: str
    refund_amount_cents: int
    restocking_fee_cents: int = 0
    processor_refund_id: Optional[str] = None
    store_credit_id: Optional[UUID] = None
    store_credit_code: Optional[str] = None
    store_credit_amount_cents: int = 0
    allocations: List[RefundAllocation] = Field(default_factory=list)
    inventory_adjustments: List[InventoryAdjustment] = Field(default_factory=list)


class SettlementResult(BaseModel):
    """Completed return plus settlement detail and non-fatal warnings."""
    return_record: ReturnResponse
    settlement: SettlementDetail
    warnings: List[str] = Field(default_factory=list)


class RefundQuote(BaseModel):
    """Read-only preview of how a refund would be settled on the original payments."""
    return_id: UUID
    return_number: str
    refund_total_cents: int
    restocking_fee_cents: int
    refund_amount_cents: int
    allocations: List[RefundAllocation] = Field(default_factory=list)
    store_credit_overflow_cents: int = 0
    has_resellable_items: bool = False

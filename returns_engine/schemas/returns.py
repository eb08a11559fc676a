"""
Return Schemas.

Pydantic schemas for creating, reading and listing returns.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field

from returns_engine.models.returns import ItemCondition, ReturnType, RefundMethod
from returns_engine.schemas.base import BaseResponseSchema, BaseCreateSchema


# ============================================================================
# CREATE
# ============================================================================

class ReturnItemCreate(BaseCreateSchema):
    """One requested line of a return."""
    original_order_item_id: UUID
    # Range is checked by the validator so the error can name the line
    quantity: int
    reason_code_id: Optional[UUID] = None
    reason_notes: Optional[str] = None
    item_condition: ItemCondition = ItemCondition.RESELLABLE


class ReturnCreate(BaseCreateSchema):
    """Schema for creating a return."""
    original_order_id: UUID
    items: List[ReturnItemCreate] = Field(default_factory=list)
    return_type: Optional[ReturnType] = None
    refund_method: Optional[RefundMethod] = None
    notes: Optional[str] = None


# ============================================================================
# RESPONSES
# ============================================================================

class ReturnItemResponse(BaseResponseSchema):
    """Schema for return item response."""
    id: UUID
    original_order_item_id: UUID
    product_id: Optional[UUID] = None
    quantity: int
    unit_price_cents: int
    refund_amount_cents: int
    reason_code_id: Optional[UUID] = None
    reason_notes: Optional[str] = None
    item_condition: str
    disposition: Optional[str] = None


class ReturnStatusHistoryResponse(BaseResponseSchema):
    """Schema for a status history entry."""
    from_status: Optional[str] = None
    to_status: str
    notes: Optional[str] = None
    changed_by: Optional[UUID] = None
    created_at: datetime


class ReturnResponse(BaseResponseSchema):
    """Schema for return response."""
    id: UUID
    return_number: str
    original_order_id: UUID
    customer_id: Optional[UUID] = None
    return_type: str
    status: str

    refund_subtotal_cents: int
    refund_tax_cents: int
    refund_total_cents: int
    restocking_fee_cents: int
    refund_method: Optional[str] = None
    processor_refund_id: Optional[str] = None
    store_credit_id: Optional[UUID] = None
    refund_details: Optional[Dict[str, Any]] = None

    initiated_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    processed_by: Optional[UUID] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None

    initiated_at: datetime
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    items: List[ReturnItemResponse] = Field(default_factory=list)
    status_history: List[ReturnStatusHistoryResponse] = Field(default_factory=list)


class ReturnListResponse(BaseModel):
    """Paginated list of returns."""
    items: List[ReturnResponse]
    total: int
    page: int
    limit: int
    pages: int


class ReasonCodeResponse(BaseResponseSchema):
    """Schema for a return reason code."""
    id: UUID
    code: str
    description: str
    requires_notes: bool
    sort_order: int


class ReturnableLine(BaseModel):
    """Remaining returnable quantity on one order line."""
    order_item_id: UUID
    product_id: Optional[UUID] = None
    product_name: str
    original_quantity: int
    already_returned: int
    remaining: int
    unit_price_cents: int

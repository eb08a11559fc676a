"""
Return Models - customer returns against completed orders.

This module implements the return case records:
- Return: one return case against exactly one original order
- ReturnItem: returned quantity of one original order line
- ReturnStatusHistory: audit trail of every lifecycle change
- ReturnReasonCode: configurable reasons offered when returning an item
- ReturnNumberSequence: per-day counter for return numbers
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Integer, BigInteger, Text,
    Index, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from returns_engine.database import Base
from returns_engine.db_types import UUIDType, JSONType


# ============================================================================
# ENUMS
# ============================================================================

class ReturnStatus(str, Enum):
    """Return lifecycle status."""
    INITIATED = "initiated"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Returns in these statuses no longer hold returnable quantity
VOIDED_RETURN_STATUSES = (ReturnStatus.CANCELLED.value, ReturnStatus.REJECTED.value)


class ReturnType(str, Enum):
    """Whole order or some of it."""
    FULL = "full"
    PARTIAL = "partial"


class ItemCondition(str, Enum):
    """Physical condition of a returned unit."""
    RESELLABLE = "resellable"
    DAMAGED = "damaged"
    DEFECTIVE = "defective"
    DISPOSED = "disposed"


class Disposition(str, Enum):
    """Inventory handling for a returned unit."""
    RETURN_TO_STOCK = "return_to_stock"   # Back to sellable stock
    CLEARANCE = "clearance"               # Sellable, discounted
    RMA_VENDOR = "rma_vendor"             # Sent back to the vendor
    DISPOSE = "dispose"                   # Written off


class RefundMethod(str, Enum):
    """Rails a refund can be settled on."""
    ORIGINAL_PAYMENT = "original_payment"
    STORE_CREDIT = "store_credit"
    CASH = "cash"


# ============================================================================
# MODELS
# ============================================================================

class Return(Base):
    """
    Customer return case.

    Status is only ever changed through the return state machine.
    """
    __tablename__ = "returns"
    __table_args__ = (
        Index("ix_returns_status", "status"),
        Index("ix_returns_initiated_at", "initiated_at"),
        CheckConstraint("refund_total_cents = refund_subtotal_cents + refund_tax_cents",
                        name="ck_returns_total_matches"),
        CheckConstraint("restocking_fee_cents >= 0", name="ck_returns_fee_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identity
    return_number: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        index=True
    )
    return_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ReturnStatus.INITIATED.value,
        nullable=False
    )

    # Source Reference
    original_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id"),
        nullable=False,
        index=True
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        index=True
    )

    # Amounts (minor currency units)
    refund_subtotal_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    refund_tax_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    refund_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    restocking_fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Settlement
    refund_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    processor_refund_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    store_credit_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("store_credits.id"),
        nullable=True
    )
    refund_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Allocation breakdown recorded at settlement"
    )

    # Actors
    initiated_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Bumped before every status change; the write takes the row lock on any backend
    lock_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    # Timestamps
    initiated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    items: Mapped[List["ReturnItem"]] = relationship(
        "ReturnItem",
        back_populates="parent_return",
        order_by="ReturnItem.created_at",
    )
    status_history: Mapped[List["ReturnStatusHistory"]] = relationship(
        "ReturnStatusHistory",
        back_populates="parent_return",
        order_by="ReturnStatusHistory.created_at",
    )


class ReturnItem(Base):
    """
    Returned quantity of one original order line.

    Never deleted or re-quantified; only ``disposition`` is filled in at settlement.
    """
    __tablename__ = "return_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_return_items_quantity_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    return_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("returns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    original_order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("order_items.id"),
        nullable=False,
        index=True
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Copied from the order line at the time of sale"
    )
    refund_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reason_code_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("return_reason_codes.id"),
        nullable=True
    )
    reason_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_condition: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ItemCondition.RESELLABLE.value
    )
    disposition: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    parent_return: Mapped["Return"] = relationship("Return", back_populates="items")
    reason_code: Mapped[Optional["ReturnReasonCode"]] = relationship("ReturnReasonCode")


class ReturnStatusHistory(Base):
    """
    Tracks all status changes for a return.
    """
    __tablename__ = "return_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    return_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("returns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        comment="User who made the change"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    parent_return: Mapped["Return"] = relationship("Return", back_populates="status_history")


class ReturnReasonCode(Base):
    """Reason offered when returning an item."""
    __tablename__ = "return_reason_codes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    requires_notes: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ReturnNumberSequence(Base):
    """
    Daily counter behind return numbers.

    One row per prefix and day. ``current_number`` is the last number handed
    out and only ever moves through an atomic ``UPDATE ... + 1``.
    """
    __tablename__ = "return_number_sequences"

    prefix: Mapped[str] = mapped_column(String(10), primary_key=True)
    sequence_date: Mapped[str] = mapped_column(
        String(8),
        primary_key=True,
        comment="YYYYMMDD (UTC)"
    )
    current_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

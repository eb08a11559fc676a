"""
Order Models - the sales side a return is raised against.

The returns engine reads orders and lines, appends refund rows to the
payment ledger and bumps the order's returns_version when creating a return.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Integer, BigInteger, Numeric, Text, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from returns_engine.database import Base
from returns_engine.db_types import UUIDType


class Order(Base):
    """Completed sale."""
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)

    # Tax configuration (rate components, e.g. 0.1300)
    hst_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), default=Decimal("0"))
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), default=Decimal("0"))
    pst_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), default=Decimal("0"))
    tax_exempt: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Totals (minor currency units)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    amount_paid_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    amount_due_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Bumped by every return creation; the write serializes them per order
    returns_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    items: Mapped[List["OrderItem"]] = relationship("OrderItem", back_populates="order")
    payments: Mapped[List["OrderPayment"]] = relationship("OrderPayment", back_populates="order")


class OrderItem(Base):
    """Line on an order."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class OrderPayment(Base):
    """
    Payment ledger row.

    Append-only. Refunds are negative-amount rows with ``is_refund`` set and
    ``original_payment_id`` pointing at the instrument they reverse.
    """
    __tablename__ = "order_payments"
    __table_args__ = (
        Index("ix_order_payments_order_status", "order_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    payment_method: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="credit_card, debit_card, cash, ..."
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")

    is_refund: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    refund_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    original_payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("order_payments.id"),
        nullable=True
    )
    processor_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    order: Mapped["Order"] = relationship("Order", back_populates="payments")

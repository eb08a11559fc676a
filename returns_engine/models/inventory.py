"""
Inventory Models - on-hand stock and its transaction ledger.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from returns_engine.database import Base
from returns_engine.db_types import UUIDType


class InventoryTransactionType(str, Enum):
    """Kinds of inventory ledger rows written by returns."""
    RETURN = "return"     # Quantity restored to sellable stock
    DAMAGE = "damage"     # Audit-only write-off / vendor RMA


class ProductStock(Base):
    """Sellable on-hand and reserved quantity for a product."""
    __tablename__ = "product_stock"

    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True)
    qty_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    qty_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


class InventoryTransaction(Base):
    """
    Append-only inventory ledger row.

    Before/after snapshots make every movement traceable back to its source
    document through the reference columns.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        Index("ix_inventory_transactions_reference", "reference_type", "reference_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    qty_before: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_before: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_after: Mapped[int] = mapped_column(Integer, nullable=False)

    reference_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    reference_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

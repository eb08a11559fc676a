"""
Store Credit Models - non-cash balances issued to customers.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, ForeignKey, BigInteger, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from returns_engine.database import Base
from returns_engine.db_types import UUIDType


class StoreCreditTransactionType(str, Enum):
    """Movements on a store credit balance."""
    ISSUE = "issue"
    REDEEM = "redeem"
    ADJUST = "adjust"
    EXPIRE = "expire"


class StoreCredit(Base):
    """Store credit balance identified by a short code."""
    __tablename__ = "store_credits"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    original_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Source linkage
    source_type: Mapped[str] = mapped_column(String(30), nullable=False, default="return")
    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    issued_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    transactions: Mapped[List["StoreCreditTransaction"]] = relationship(
        "StoreCreditTransaction",
        back_populates="store_credit",
    )


class StoreCreditTransaction(Base):
    """Append-only movement on a store credit."""
    __tablename__ = "store_credit_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    store_credit_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("store_credits.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    balance_after_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reference_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    store_credit: Mapped["StoreCredit"] = relationship("StoreCredit", back_populates="transactions")

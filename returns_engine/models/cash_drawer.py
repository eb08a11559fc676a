"""
Cash Drawer Models - till movements recorded against a register shift.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, BigInteger, Text
from sqlalchemy.orm import Mapped, mapped_column

from returns_engine.database import Base
from returns_engine.db_types import UUIDType


class CashMovement(Base):
    """Cash in or out of a drawer outside of a sale."""
    __tablename__ = "cash_movements"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    shift_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    movement_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="refund, paid_out, drop, ..."
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    reference_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

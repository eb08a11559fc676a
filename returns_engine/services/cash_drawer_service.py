"""
Cash drawer movements for refunds paid out of the till.
"""
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.models.cash_drawer import CashMovement


class CashDrawerService:
    """Records till movements against a register shift."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_refund(
        self,
        shift_id: uuid.UUID,
        amount_cents: int,
        reference_number: str,
        user_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> uuid.UUID:
        """Record cash leaving the drawer for a refund (stored as a negative amount)."""
        movement = CashMovement(
            shift_id=shift_id,
            user_id=user_id,
            movement_type="refund",
            amount_cents=-abs(amount_cents),
            reason=f"Cash refund for return {reference_number}",
            reference_number=reference_number,
            notes=notes,
        )
        self.db.add(movement)
        await self.db.flush()
        return movement.id

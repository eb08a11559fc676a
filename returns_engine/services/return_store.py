"""
Return store: persistence helpers for returns, items, history and reason codes.
"""
import uuid
from datetime import datetime, timezone, date, timedelta
from typing import Optional, List, Dict, Sequence, Tuple

from sqlalchemy import select, update, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from returns_engine.models.returns import (
    Return, ReturnItem, ReturnReasonCode, ReturnNumberSequence, VOIDED_RETURN_STATUSES
)


class SqlReturnStore:
    """Return store over ``returns``, ``return_items`` and friends."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def sum_returned_quantity(
        self,
        original_order_item_id: uuid.UUID,
        excluding_statuses: Sequence[str] = VOIDED_RETURN_STATUSES,
    ) -> int:
        """Quantity of a line already returned under returns not in ``excluding_statuses``."""
        totals = await self.sum_returned_quantities([original_order_item_id], excluding_statuses)
        return totals.get(original_order_item_id, 0)

    async def sum_returned_quantities(
        self,
        original_order_item_ids: Sequence[uuid.UUID],
        excluding_statuses: Sequence[str] = VOIDED_RETURN_STATUSES,
    ) -> Dict[uuid.UUID, int]:
        """Bulk form of :meth:`sum_returned_quantity`, keyed by order line id."""
        if not original_order_item_ids:
            return {}
        result = await self.db.execute(
            select(
                ReturnItem.original_order_item_id,
                func.coalesce(func.sum(ReturnItem.quantity), 0),
            )
            .join(Return, Return.id == ReturnItem.return_id)
            .where(
                and_(
                    ReturnItem.original_order_item_id.in_(list(original_order_item_ids)),
                    Return.status.not_in(list(excluding_statuses)),
                )
            )
            .group_by(ReturnItem.original_order_item_id)
        )
        return {line_id: int(qty) for line_id, qty in result.all()}

    async def next_return_number(self, prefix: str) -> str:
        """
        Generate the next return number for today: ``{prefix}-YYYYMMDD-NNNN``.

        The day's sequence row stays locked until the caller's transaction
        ends, so concurrent creations never share a number.
        """
        today = datetime.now(timezone.utc).strftime("%Y%m%d")

        sequence = await self._increment_sequence(prefix, today)
        if sequence is None:
            try:
                async with self.db.begin_nested():
                    self.db.add(ReturnNumberSequence(
                        prefix=prefix, sequence_date=today, current_number=1
                    ))
                    await self.db.flush()
                sequence = 1
            except IntegrityError:
                # Another transaction created today's row first
                sequence = await self._increment_sequence(prefix, today)

        return f"{prefix}-{today}-{sequence:04d}"

    async def _increment_sequence(self, prefix: str, sequence_date: str) -> Optional[int]:
        matches = and_(
            ReturnNumberSequence.prefix == prefix,
            ReturnNumberSequence.sequence_date == sequence_date,
        )
        result = await self.db.execute(
            update(ReturnNumberSequence)
            .where(matches)
            .values(current_number=ReturnNumberSequence.current_number + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.db.scalar(select(ReturnNumberSequence.current_number).where(matches))

    async def get(self, return_id: uuid.UUID, include_details: bool = True) -> Optional[Return]:
        query = select(Return).where(Return.id == return_id)
        if include_details:
            query = query.options(
                selectinload(Return.items),
                selectinload(Return.status_history),
            )
        # Always reload so callers see state committed by other sessions
        query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_for_update(self, return_id: uuid.UUID) -> Optional[Return]:
        """
        Lock and load the return row for the rest of the transaction.

        Must be the first statement of the transaction. The version bump is a
        write, so it also serializes on SQLite, which ignores FOR UPDATE.
        """
        await self.db.execute(
            update(Return)
            .where(Return.id == return_id)
            .values(lock_version=Return.lock_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(
            select(Return)
            .where(Return.id == return_id)
            .options(selectinload(Return.items))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def search(
        self,
        status: Optional[str] = None,
        customer_id: Optional[uuid.UUID] = None,
        original_order_id: Optional[uuid.UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Return], int]:
        """List returns with filters, newest first."""
        query = select(Return)

        if status:
            query = query.where(Return.status == status)
        if customer_id:
            query = query.where(Return.customer_id == customer_id)
        if original_order_id:
            query = query.where(Return.original_order_id == original_order_id)
        if date_from:
            query = query.where(Return.initiated_at >= datetime.combine(date_from, datetime.min.time()))
        if date_to:
            # Inclusive of the whole end day
            end = datetime.combine(date_to, datetime.min.time()) + timedelta(days=1)
            query = query.where(Return.initiated_at < end)
        if search:
            query = query.where(Return.return_number.ilike(f"%{search}%"))

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query) or 0

        query = query.options(
            selectinload(Return.items),
            selectinload(Return.status_history),
        )
        query = query.order_by(Return.initiated_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_reason_codes(
        self, reason_code_ids: Sequence[uuid.UUID]
    ) -> Dict[uuid.UUID, ReturnReasonCode]:
        if not reason_code_ids:
            return {}
        result = await self.db.execute(
            select(ReturnReasonCode).where(ReturnReasonCode.id.in_(list(reason_code_ids)))
        )
        return {code.id: code for code in result.scalars().all()}

    async def list_active_reason_codes(self) -> List[ReturnReasonCode]:
        result = await self.db.execute(
            select(ReturnReasonCode)
            .where(ReturnReasonCode.active.is_(True))
            .order_by(ReturnReasonCode.sort_order, ReturnReasonCode.code)
        )
        return list(result.scalars().all())

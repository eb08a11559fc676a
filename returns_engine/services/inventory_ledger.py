"""
Inventory ledger for returned goods.

Two kinds of entries are written:
- restore: quantity goes back to sellable on-hand stock
- audit-only: zero-quantity entry (before == after) so write-offs and vendor
  RMAs are traceable without changing availability
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.exceptions import InvalidInputError
from returns_engine.models.inventory import (
    ProductStock, InventoryTransaction, InventoryTransactionType
)
from returns_engine.services.ports import InventoryLedgerResult

logger = logging.getLogger(__name__)


class InventoryLedgerService:
    """Inventory ledger over ``product_stock`` and ``inventory_transactions``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_stock_for_update(self, product_id: uuid.UUID) -> ProductStock:
        """Lock the product's stock row, creating an empty one on first touch."""
        result = await self.db.execute(
            select(ProductStock)
            .where(ProductStock.product_id == product_id)
            .with_for_update()
        )
        stock = result.scalar_one_or_none()
        if stock is None:
            stock = ProductStock(product_id=product_id, qty_on_hand=0, qty_reserved=0)
            self.db.add(stock)
            await self.db.flush()
        return stock

    async def get_on_hand(self, product_id: uuid.UUID) -> int:
        stock = await self.db.get(ProductStock, product_id)
        return stock.qty_on_hand if stock else 0

    async def restore(
        self,
        product_id: uuid.UUID,
        quantity: int,
        reason: str,
        reference_type: str,
        reference_id: uuid.UUID,
        reference_number: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> InventoryLedgerResult:
        """Add ``quantity`` back to sellable on-hand stock."""
        if quantity <= 0:
            raise InvalidInputError(
                "Restore quantity must be greater than zero",
                {"product_id": str(product_id), "quantity": quantity},
            )

        stock = await self._get_stock_for_update(product_id)
        qty_before = stock.qty_on_hand
        stock.qty_on_hand = qty_before + quantity

        txn = InventoryTransaction(
            product_id=product_id,
            transaction_type=InventoryTransactionType.RETURN.value,
            quantity=quantity,
            qty_before=qty_before,
            qty_after=stock.qty_on_hand,
            reserved_before=stock.qty_reserved,
            reserved_after=stock.qty_reserved,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_number=reference_number,
            reason=reason,
            created_by=actor_id,
        )
        self.db.add(txn)
        await self.db.flush()

        logger.info(f"Restored {quantity} unit(s) of {product_id}: {reason}")
        return InventoryLedgerResult(
            success=True,
            message=f"{quantity} unit(s) restored to stock",
            transaction_id=txn.id,
        )

    async def audit_only(
        self,
        product_id: uuid.UUID,
        reason: str,
        reference_id: uuid.UUID,
        reference_number: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> InventoryLedgerResult:
        """Record a zero-quantity entry for traceability; availability is unchanged."""
        stock = await self.db.get(ProductStock, product_id)
        on_hand = stock.qty_on_hand if stock else 0
        reserved = stock.qty_reserved if stock else 0

        txn = InventoryTransaction(
            product_id=product_id,
            transaction_type=InventoryTransactionType.DAMAGE.value,
            quantity=0,
            qty_before=on_hand,
            qty_after=on_hand,
            reserved_before=reserved,
            reserved_after=reserved,
            reference_type="return",
            reference_id=reference_id,
            reference_number=reference_number,
            reason=reason,
            created_by=actor_id,
        )
        self.db.add(txn)
        await self.db.flush()

        return InventoryLedgerResult(success=True, message=reason, transaction_id=txn.id)

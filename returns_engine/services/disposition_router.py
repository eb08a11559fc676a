"""
Inventory disposition routing for returned items.

Maps an item's condition (or an explicit override) to a disposition and
applies the matching inventory ledger effect:

    resellable -> return_to_stock   restore to sellable stock
    damaged    -> clearance         restore to sellable stock, clearance reason
    defective  -> rma_vendor        audit-only entry, availability unchanged
    other      -> dispose           audit-only entry, availability unchanged
"""
import uuid
from typing import Optional, Union

from returns_engine.exceptions import InvalidInputError
from returns_engine.models.returns import Disposition, ItemCondition
from returns_engine.services.ports import InventoryLedger, InventoryLedgerResult


CONDITION_DISPOSITIONS = {
    ItemCondition.RESELLABLE.value: Disposition.RETURN_TO_STOCK,
    ItemCondition.DAMAGED.value: Disposition.CLEARANCE,
    ItemCondition.DEFECTIVE.value: Disposition.RMA_VENDOR,
}

RESTORING_DISPOSITIONS = frozenset({Disposition.RETURN_TO_STOCK, Disposition.CLEARANCE})


def resolve_disposition(
    condition: Optional[str],
    override: Optional[Union[Disposition, str]] = None,
) -> Disposition:
    """Effective disposition: the override if given, else derived from condition."""
    if override:
        try:
            return Disposition(override)
        except ValueError:
            raise InvalidInputError(
                f"Unknown disposition: {override}",
                {"disposition": str(override)},
            )
    return CONDITION_DISPOSITIONS.get(condition, Disposition.DISPOSE)


def restores_stock(disposition: Disposition) -> bool:
    return disposition in RESTORING_DISPOSITIONS


def disposition_reason(disposition: Disposition, return_number: str) -> str:
    """Human-readable ledger reason; reporting separates restocks from clearance by it."""
    return {
        Disposition.RETURN_TO_STOCK: f"Return to stock: {return_number}",
        Disposition.CLEARANCE: f"Return clearance: {return_number}",
        Disposition.RMA_VENDOR: f"RMA to vendor: {return_number}",
        Disposition.DISPOSE: f"Disposed: {return_number}",
    }[disposition]


class InventoryDispositionRouter:
    """Chooses the ledger call (restore vs audit-only) for each disposition."""

    def __init__(self, ledger: InventoryLedger):
        self.ledger = ledger

    async def apply(
        self,
        disposition: Disposition,
        product_id: uuid.UUID,
        quantity: int,
        return_id: uuid.UUID,
        return_number: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> InventoryLedgerResult:
        reason = disposition_reason(disposition, return_number)

        if restores_stock(disposition):
            return await self.ledger.restore(
                product_id=product_id,
                quantity=quantity,
                reason=reason,
                reference_type="return",
                reference_id=return_id,
                reference_number=return_number,
                actor_id=actor_id,
            )

        result = await self.ledger.audit_only(
            product_id=product_id,
            reason=reason,
            reference_id=return_id,
            reference_number=return_number,
            actor_id=actor_id,
        )
        action = "sent to vendor RMA" if disposition == Disposition.RMA_VENDOR else "disposed/written off"
        return InventoryLedgerResult(
            success=result.success,
            message=f"{quantity} unit(s) {action}",
            transaction_id=result.transaction_id,
        )

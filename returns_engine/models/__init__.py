# Models module
from returns_engine.models.order import Order, OrderItem, OrderPayment
from returns_engine.models.store_credit import (
    StoreCredit, StoreCreditTransaction, StoreCreditTransactionType
)
from returns_engine.models.inventory import (
    ProductStock, InventoryTransaction, InventoryTransactionType
)
from returns_engine.models.cash_drawer import CashMovement
from returns_engine.models.returns import (
    Return, ReturnItem, ReturnStatusHistory, ReturnReasonCode, ReturnNumberSequence,
    ReturnStatus, ReturnType, ItemCondition, Disposition, RefundMethod,
    VOIDED_RETURN_STATUSES,
)

__all__ = [
    "Order",
    "OrderItem",
    "OrderPayment",
    "StoreCredit",
    "StoreCreditTransaction",
    "StoreCreditTransactionType",
    "ProductStock",
    "InventoryTransaction",
    "InventoryTransactionType",
    "CashMovement",
    # Returns
    "Return",
    "ReturnItem",
    "ReturnStatusHistory",
    "ReturnReasonCode",
    "ReturnNumberSequence",
    "ReturnStatus",
    "ReturnType",
    "ItemCondition",
    "Disposition",
    "RefundMethod",
    "VOIDED_RETURN_STATUSES",
]

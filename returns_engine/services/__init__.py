# Services module
from returns_engine.services.return_service import ReturnService
from returns_engine.services.refund_settlement_service import (
    RefundSettlementOrchestrator, allocate_refund
)
from returns_engine.services.return_validation import ReturnQuantityValidator, RefundCalculator
from returns_engine.services.disposition_router import InventoryDispositionRouter

# Default collaborators (SQL-backed, share the caller's session)
from returns_engine.services.order_store import SqlOrderStore
from returns_engine.services.return_store import SqlReturnStore
from returns_engine.services.store_credit_service import StoreCreditService
from returns_engine.services.inventory_ledger import InventoryLedgerService
from returns_engine.services.cash_drawer_service import CashDrawerService
from returns_engine.services.card_processor import RazorpayCardProcessor

__all__ = [
    "ReturnService",
    "RefundSettlementOrchestrator",
    "allocate_refund",
    "ReturnQuantityValidator",
    "RefundCalculator",
    "InventoryDispositionRouter",
    # Collaborators
    "SqlOrderStore",
    "SqlReturnStore",
    "StoreCreditService",
    "InventoryLedgerService",
    "CashDrawerService",
    "RazorpayCardProcessor",
]

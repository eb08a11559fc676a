"""
Tests for disposition routing and the inventory ledger.
"""
import uuid

import pytest
from sqlalchemy import select

from returns_engine.exceptions import InvalidInputError
from returns_engine.models import InventoryTransaction, Disposition
from returns_engine.services.disposition_router import (
    InventoryDispositionRouter, resolve_disposition, restores_stock, disposition_reason
)
from returns_engine.services.inventory_ledger import InventoryLedgerService


@pytest.mark.parametrize("condition,expected", [
    ("resellable", Disposition.RETURN_TO_STOCK),
    ("damaged", Disposition.CLEARANCE),
    ("defective", Disposition.RMA_VENDOR),
    ("disposed", Disposition.DISPOSE),
    (None, Disposition.DISPOSE),
])
def test_condition_defaults(condition, expected):
    assert resolve_disposition(condition) == expected


def test_override_beats_condition():
    assert resolve_disposition("resellable", "dispose") == Disposition.DISPOSE
    assert resolve_disposition("defective", Disposition.RETURN_TO_STOCK) == Disposition.RETURN_TO_STOCK


def test_unknown_override():
    with pytest.raises(InvalidInputError):
        resolve_disposition("resellable", "donate")


def test_only_stock_and_clearance_restore():
    assert restores_stock(Disposition.RETURN_TO_STOCK)
    assert restores_stock(Disposition.CLEARANCE)
    assert not restores_stock(Disposition.RMA_VENDOR)
    assert not restores_stock(Disposition.DISPOSE)


def test_clearance_reason_is_distinct():
    assert disposition_reason(Disposition.CLEARANCE, "RTN-1") == "Return clearance: RTN-1"
    assert disposition_reason(Disposition.RETURN_TO_STOCK, "RTN-1") == "Return to stock: RTN-1"


async def test_return_to_stock_restores_on_hand(db, order):
    ledger = InventoryLedgerService(db)
    router = InventoryDispositionRouter(ledger)

    result = await router.apply(
        Disposition.RETURN_TO_STOCK, order.widget_product_id, 2, uuid.uuid4(), "RTN-1"
    )

    assert result.success
    assert result.message == "2 unit(s) restored to stock"
    assert await ledger.get_on_hand(order.widget_product_id) == 12


async def test_defective_goes_to_vendor_without_touching_stock(db, order):
    ledger = InventoryLedgerService(db)
    router = InventoryDispositionRouter(ledger)
    return_id = uuid.uuid4()

    result = await router.apply(
        resolve_disposition("defective"), order.widget_product_id, 1, return_id, "RTN-2"
    )

    assert result.message == "1 unit(s) sent to vendor RMA"
    assert await ledger.get_on_hand(order.widget_product_id) == 10

    txn = (await db.execute(
        select(InventoryTransaction).where(InventoryTransaction.id == result.transaction_id)
    )).scalar_one()
    assert txn.quantity == 0
    assert txn.qty_before == txn.qty_after == 10
    assert txn.reference_id == return_id
    assert txn.reason == "RMA to vendor: RTN-2"


async def test_dispose_is_audit_only(db, order):
    router = InventoryDispositionRouter(InventoryLedgerService(db))
    result = await router.apply(Disposition.DISPOSE, order.gadget_product_id, 1, uuid.uuid4(), "RTN-3")
    assert result.message == "1 unit(s) disposed/written off"


async def test_restore_creates_stock_row_for_unknown_product(db):
    ledger = InventoryLedgerService(db)
    product_id = uuid.uuid4()

    await ledger.restore(product_id, 4, "Return to stock: RTN-4", "return", uuid.uuid4(), "RTN-4")

    assert await ledger.get_on_hand(product_id) == 4


async def test_restore_rejects_non_positive_quantity(db, order):
    with pytest.raises(InvalidInputError):
        await InventoryLedgerService(db).restore(
            order.widget_product_id, 0, "x", "return", uuid.uuid4(), "RTN-5"
        )

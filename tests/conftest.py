"""
Pytest configuration for returns engine tests

Every test gets a fresh in-memory SQLite database (aiosqlite) with the full
schema, one seeded order and a fake card processor.
"""
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from returns_engine.config import Settings
from returns_engine.database import Base, create_session_factory
from returns_engine.exceptions import ExternalProcessorError
from returns_engine.models import (
    Order, OrderItem, OrderPayment, ProductStock, ReturnReasonCode
)
from returns_engine.services.ports import ProcessorRefund


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeCardProcessor:
    """Records refund calls; ``fail_on`` makes the n-th call (1-based) fail."""

    def __init__(self, configured: bool = True, fail_on: Optional[int] = None):
        self.configured = configured
        self.fail_on = fail_on
        self.calls: List[tuple] = []

    def is_configured(self) -> bool:
        return self.configured

    async def refund(self, processor_reference: str, amount_cents: int, reason: str) -> ProcessorRefund:
        self.calls.append((processor_reference, amount_cents, reason))
        if self.fail_on and len(self.calls) == self.fail_on:
            raise ExternalProcessorError(
                "Card refund failed: card_declined",
                {"processor_reference": processor_reference, "processor_message": "card_declined"},
            )
        return ProcessorRefund(refund_id=f"rfnd_{len(self.calls)}", amount_cents=amount_cents)


class FailingCashDrawer:
    async def record_refund(self, shift_id, amount_cents, reference_number, user_id=None, notes=None):
        raise RuntimeError("shift is closed")


@dataclass
class SeededOrder:
    """IDs of the seeded sale: widget x3 @ $10.00, gadget x1 @ $20.00, 13% HST."""
    order_id: uuid.UUID
    customer_id: uuid.UUID
    widget_line_id: uuid.UUID
    gadget_line_id: uuid.UUID
    widget_product_id: uuid.UUID
    gadget_product_id: uuid.UUID
    payment_ids: List[uuid.UUID] = field(default_factory=list)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings():
    """Engine settings with no processor credentials and in-memory SQLite."""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        RAZORPAY_KEY_ID="",
        RAZORPAY_KEY_SECRET="",
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite transaction handling, so SAVEPOINT behaves like on PostgreSQL
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def processor():
    return FakeCardProcessor()


@pytest.fixture
def failing_drawer():
    return FailingCashDrawer()


async def seed_order(
    db,
    payments: Optional[List[tuple]] = None,
    status: str = "completed",
    hst_rate: Decimal = Decimal("0.1300"),
    tax_exempt: bool = False,
) -> SeededOrder:
    """
    Seed one order. ``payments`` is a list of
    ``(payment_method, amount_cents, processor_reference)``.
    """
    customer_id = uuid.uuid4()
    widget_product_id = uuid.uuid4()
    gadget_product_id = uuid.uuid4()

    order = Order(
        order_number=f"ORD-{uuid.uuid4().hex[:8].upper()}",
        customer_id=customer_id,
        status=status,
        hst_rate=hst_rate,
        tax_exempt=tax_exempt,
        total_cents=5650,
        amount_paid_cents=5650,
        amount_due_cents=0,
    )
    db.add(order)
    await db.flush()

    widget = OrderItem(
        order_id=order.id, product_id=widget_product_id, product_name="Widget",
        quantity=3, unit_price_cents=1000,
    )
    gadget = OrderItem(
        order_id=order.id, product_id=gadget_product_id, product_name="Gadget",
        quantity=1, unit_price_cents=2000,
    )
    db.add_all([widget, gadget])

    db.add_all([
        ProductStock(product_id=widget_product_id, qty_on_hand=10, qty_reserved=0),
        ProductStock(product_id=gadget_product_id, qty_on_hand=5, qty_reserved=0),
    ])

    seeded = SeededOrder(
        order_id=order.id,
        customer_id=customer_id,
        widget_line_id=None,
        gadget_line_id=None,
        widget_product_id=widget_product_id,
        gadget_product_id=gadget_product_id,
    )

    for method, amount, reference in (payments or [("credit_card", 5650, "pay_main")]):
        payment = OrderPayment(
            order_id=order.id,
            payment_method=method,
            amount_cents=amount,
            status="completed",
            processor_reference=reference,
        )
        db.add(payment)
        await db.flush()
        seeded.payment_ids.append(payment.id)

    await db.flush()
    seeded.widget_line_id = widget.id
    seeded.gadget_line_id = gadget.id
    await db.commit()
    return seeded


@pytest.fixture
def make_order(db):
    """Seed extra orders: ``await make_order(payments=..., status=...)``."""
    async def _make(**kwargs) -> SeededOrder:
        return await seed_order(db, **kwargs)
    return _make


@pytest.fixture
def order_seeder():
    """Seed on any session: ``await order_seeder(session, payments=...)``."""
    return seed_order


@pytest_asyncio.fixture
async def order(db):
    return await seed_order(db)


@pytest_asyncio.fixture
async def reason_codes(db):
    """Active 'changed_mind', active 'other' (needs notes) and an inactive code."""
    codes = {
        "changed_mind": ReturnReasonCode(
            code="changed_mind", description="Changed mind", sort_order=1
        ),
        "other": ReturnReasonCode(
            code="other", description="Other", requires_notes=True, sort_order=9
        ),
        "retired": ReturnReasonCode(
            code="retired", description="No longer offered", active=False, sort_order=5
        ),
    }
    db.add_all(codes.values())
    await db.commit()
    return codes

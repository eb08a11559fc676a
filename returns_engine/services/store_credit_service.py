"""
Store Credit Service

Issues store credit for refunds. Codes are short, drawn from an alphabet
without look-alike characters (no 0/O, 1/I/L), and checked for collisions
against existing credits before use.
"""
import logging
import secrets
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.config import Settings, get_settings
from returns_engine.exceptions import InternalError, InvalidInputError, NotFoundError
from returns_engine.models.store_credit import (
    StoreCredit, StoreCreditTransaction, StoreCreditTransactionType
)
from returns_engine.services.ports import IssuedStoreCredit

logger = logging.getLogger(__name__)


class StoreCreditService:
    """Store credit ledger over ``store_credits`` and ``store_credit_transactions``."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def _random_code(self) -> str:
        alphabet = self.settings.STORE_CREDIT_CODE_ALPHABET
        body = "".join(
            secrets.choice(alphabet) for _ in range(self.settings.STORE_CREDIT_CODE_LENGTH)
        )
        return f"{self.settings.STORE_CREDIT_CODE_PREFIX}{body}"

    async def _code_exists(self, code: str) -> bool:
        result = await self.db.execute(
            select(StoreCredit.id).where(StoreCredit.code == code)
        )
        return result.first() is not None

    async def generate_code(self) -> str:
        """
        Generate an unused store credit code.

        Raises:
            InternalError: If every attempt collided
        """
        attempts = self.settings.STORE_CREDIT_CODE_MAX_ATTEMPTS
        for _ in range(attempts):
            code = self._random_code()
            if not await self._code_exists(code):
                return code

        logger.error(f"Store credit code generation exhausted after {attempts} attempts")
        raise InternalError(
            "Failed to generate unique store credit code",
            {"attempts": attempts},
        )

    async def create_credit(
        self,
        customer_id: Optional[uuid.UUID],
        amount_cents: int,
        source_return_id: uuid.UUID,
        issued_by: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> IssuedStoreCredit:
        """
        Create a store credit with ``balance = amount``.

        Args:
            customer_id: Customer the credit belongs to (may be anonymous)
            amount_cents: Amount to issue, must be positive
            source_return_id: Return the credit is issued for
            issued_by: Staff member issuing the credit
            notes: Free text kept on the credit
        """
        if amount_cents <= 0:
            raise InvalidInputError(
                "Store credit amount must be greater than zero",
                {"amount_cents": amount_cents},
            )

        code = await self.generate_code()

        credit = StoreCredit(
            code=code,
            customer_id=customer_id,
            original_amount_cents=amount_cents,
            current_balance_cents=amount_cents,
            source_type="return",
            source_id=source_return_id,
            issued_by=issued_by,
            notes=notes,
        )
        self.db.add(credit)
        await self.db.flush()

        logger.info(f"Issued store credit {code} for {amount_cents} cents")
        return IssuedStoreCredit(id=credit.id, code=code, amount_cents=amount_cents)

    async def append_transaction(
        self,
        credit_id: uuid.UUID,
        amount_cents: int,
        transaction_type: str,
        reference_id: Optional[uuid.UUID] = None,
        performed_by: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> uuid.UUID:
        """Append a ledger row snapshotting the credit's balance after the movement."""
        credit = await self.db.get(StoreCredit, credit_id)
        if not credit:
            raise NotFoundError("Store credit not found", {"store_credit_id": str(credit_id)})

        txn = StoreCreditTransaction(
            store_credit_id=credit.id,
            amount_cents=amount_cents,
            transaction_type=StoreCreditTransactionType(transaction_type).value,
            balance_after_cents=credit.current_balance_cents,
            reference_type="return" if reference_id else None,
            reference_id=reference_id,
            notes=notes,
            performed_by=performed_by,
        )
        self.db.add(txn)
        await self.db.flush()
        return txn.id

"""Ledger Service - Balance accounts and transaction records.

None of the mutating methods commit. Callers compose them with their own
status transitions and commit once, so the balance change, the ledger record
and the business record land in the same database transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smsgate.core.exceptions import ValidationError
from smsgate.models.account import BalanceAccount
from smsgate.models.ledger import TransactionRecord, TransactionStatus, TransactionType


@dataclass(frozen=True)
class BalanceMovement:
    """Outcome of one balance mutation."""

    user_id: int
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal


class LedgerService:
    """Service for balance-ledger business logic."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Accounts
    # =========================================================================

    async def get_account(self, user_id: int) -> BalanceAccount | None:
        result = await self.db.execute(
            select(BalanceAccount).where(BalanceAccount.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_account(self, user_id: int) -> BalanceAccount:
        """Get the user's account, creating an empty one on first access.

        Concurrent first accesses are collapsed by an insert-or-ignore on the
        unique ``user_id``.
        """
        account = await self.get_account(user_id)
        if account is not None:
            return account

        now = datetime.utcnow()
        await self.db.execute(
            insert(BalanceAccount)
            .values(
                user_id=user_id,
                balance=Decimal("0"),
                total_deposited=Decimal("0"),
                total_spent=Decimal("0"),
                deposit_count=0,
                created_at=now,
                updated_at=now,
            )
            .prefix_with("IGNORE", dialect="mysql")
            .prefix_with("OR IGNORE", dialect="sqlite")
        )
        return await self.get_account(user_id)

    async def get_balance(self, user_id: int) -> Decimal:
        """Current balance (0 for users without an account)."""
        result = await self.db.execute(
            select(BalanceAccount.balance).where(BalanceAccount.user_id == user_id)
        )
        balance = result.scalar_one_or_none()
        return Decimal(balance) if balance is not None else Decimal("0")

    # =========================================================================
    # Balance mutations
    # =========================================================================

    async def debit_if_sufficient(self, user_id: int, amount: Decimal) -> BalanceMovement | None:
        """Debit ``amount`` only if the balance covers it.

        The check and the mutation are one conditional UPDATE, so two
        concurrent debits can never drive the balance negative.

        Args:
            user_id: Account owner
            amount: Positive amount to debit

        Returns:
            BalanceMovement, or None when the balance is insufficient
        """
        if amount <= 0:
            raise ValidationError("Debit amount must be positive", {"amount": str(amount)})

        now = datetime.utcnow()
        result = await self.db.execute(
            update(BalanceAccount)
            .where(BalanceAccount.user_id == user_id, BalanceAccount.balance >= amount)
            .values(
                balance=BalanceAccount.balance - amount,
                total_spent=BalanceAccount.total_spent + amount,
                last_transaction_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        balance_after = await self.get_balance(user_id)
        return BalanceMovement(
            user_id=user_id,
            amount=amount,
            balance_before=balance_after + amount,
            balance_after=balance_after,
        )

    async def credit(self, user_id: int, amount: Decimal, deposit: bool = False) -> BalanceMovement:
        """Credit ``amount``, creating the account if needed.

        Args:
            user_id: Account owner
            amount: Positive amount to credit
            deposit: Also bump ``total_deposited`` and ``deposit_count``

        Returns:
            BalanceMovement
        """
        if amount <= 0:
            raise ValidationError("Credit amount must be positive", {"amount": str(amount)})

        await self.get_or_create_account(user_id)

        now = datetime.utcnow()
        values: dict[str, Any] = {
            "balance": BalanceAccount.balance + amount,
            "last_transaction_at": now,
            "updated_at": now,
        }
        if deposit:
            values["total_deposited"] = BalanceAccount.total_deposited + amount
            values["deposit_count"] = BalanceAccount.deposit_count + 1

        await self.db.execute(
            update(BalanceAccount)
            .where(BalanceAccount.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        balance_after = await self.get_balance(user_id)
        return BalanceMovement(
            user_id=user_id,
            amount=amount,
            balance_before=balance_after - amount,
            balance_after=balance_after,
        )

    async def record_transaction(
        self,
        transaction_type: TransactionType,
        movement: BalanceMovement,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> TransactionRecord:
        """Append the ledger record for a balance movement."""
        record = TransactionRecord(
            user_id=movement.user_id,
            transaction_type=transaction_type,
            amount=movement.amount,
            balance_before=movement.balance_before,
            balance_after=movement.balance_after,
            reference_id=reference_id,
            description=description,
            status=TransactionStatus.COMPLETED,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_transactions(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        transaction_type: TransactionType | None = None,
    ) -> tuple[list[TransactionRecord], int]:
        """List a user's ledger records, newest first.

        Returns:
            Tuple of (records, total_count)
        """
        query = select(TransactionRecord).where(TransactionRecord.user_id == user_id)
        if transaction_type:
            query = query.where(TransactionRecord.transaction_type == transaction_type)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(TransactionRecord.created_at.desc(), TransactionRecord.id.desc())
        query = query.offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def list_for_reference(self, reference_id: str) -> list[TransactionRecord]:
        """Ledger records attached to an activation id or tx_ref."""
        result = await self.db.execute(
            select(TransactionRecord)
            .where(TransactionRecord.reference_id == reference_id)
            .order_by(TransactionRecord.id)
        )
        return list(result.scalars().all())

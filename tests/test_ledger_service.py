"""Tests for the balance ledger."""

import asyncio
from decimal import Decimal

import pytest

from smsgate.core.exceptions import ValidationError
from smsgate.models.ledger import TransactionType
from smsgate.services.ledger_service import LedgerService


class TestLedgerService:
    @pytest.mark.asyncio
    async def test_unknown_user_has_zero_balance(self, db_session):
        service = LedgerService(db_session)

        assert await service.get_balance(42) == Decimal("0")
        assert await service.get_account(42) is None

    @pytest.mark.asyncio
    async def test_credit_creates_account(self, db_session):
        service = LedgerService(db_session)

        movement = await service.credit(7, Decimal("10"), deposit=True)
        await db_session.commit()

        assert movement.balance_before == Decimal("0")
        assert movement.balance_after == Decimal("10")
        account = await service.get_account(7)
        assert account.total_deposited == Decimal("10")
        assert account.deposit_count == 1

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, db_session):
        service = LedgerService(db_session)

        first = await service.get_or_create_account(3)
        second = await service.get_or_create_account(3)
        await db_session.commit()

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_debit_if_sufficient(self, db_session):
        service = LedgerService(db_session)
        await service.credit(1, Decimal("1.00"))

        movement = await service.debit_if_sufficient(1, Decimal("1.00"))
        await db_session.commit()

        assert movement is not None
        assert movement.balance_before == Decimal("1.00")
        assert movement.balance_after == Decimal("0")
        assert await service.get_balance(1) == Decimal("0")

    @pytest.mark.asyncio
    async def test_debit_refuses_overdraft(self, db_session):
        service = LedgerService(db_session)
        await service.credit(1, Decimal("0.99"))

        assert await service.debit_if_sufficient(1, Decimal("1.00")) is None
        assert await service.debit_if_sufficient(2, Decimal("1.00")) is None
        assert await service.get_balance(1) == Decimal("0.99")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1"])
    async def test_non_positive_amounts_rejected(self, db_session, amount):
        service = LedgerService(db_session)

        with pytest.raises(ValidationError):
            await service.debit_if_sufficient(1, Decimal(amount))
        with pytest.raises(ValidationError):
            await service.credit(1, Decimal(amount))

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_overdraw(self, session_factory):
        async with session_factory() as session:
            await LedgerService(session).credit(5, Decimal("3"))
            await session.commit()

        async def debit() -> bool:
            async with session_factory() as session:
                movement = await LedgerService(session).debit_if_sufficient(5, Decimal("1"))
                await session.commit()
                return movement is not None

        results = await asyncio.gather(*[debit() for _ in range(5)])

        assert results.count(True) == 3
        async with session_factory() as session:
            assert await LedgerService(session).get_balance(5) == Decimal("0")

    @pytest.mark.asyncio
    async def test_records_and_listing(self, db_session):
        service = LedgerService(db_session)
        deposit = await service.credit(9, Decimal("5"), deposit=True)
        await service.record_transaction(TransactionType.DEPOSIT, deposit, reference_id="SMS_9_1")
        purchase = await service.debit_if_sufficient(9, Decimal("2"))
        await service.record_transaction(TransactionType.PURCHASE, purchase, reference_id="1001")
        await db_session.commit()

        items, total = await service.list_transactions(9)
        purchases, purchase_total = await service.list_transactions(
            9, transaction_type=TransactionType.PURCHASE
        )

        assert total == 2
        assert items[0].transaction_type == TransactionType.PURCHASE
        assert purchase_total == 1
        assert purchases[0].balance_before == Decimal("5")
        assert purchases[0].balance_after == Decimal("3")
        assert [r.reference_id for r in await service.list_for_reference("1001")] == ["1001"]

"""
Tests for the balance accrual engine: fee arithmetic, credits, debits,
idempotency and status derivation.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from errands.core.exceptions import InsufficientBalanceError, ValidationException
from errands.db.models.balance_ledger import BalanceLedgerEntry, LedgerEntryType
from errands.db.models.balance_transaction import TransactionStatus, TransactionType
from errands.db.models.runner_balance import RunnerBalance, RunnerBalanceStatus
from errands.domain.services.balance_service import (
    BalanceService,
    calculate_platform_commission,
    calculate_service_fee,
    derive_status,
    payment_status,
)

NOW = datetime(2025, 3, 10, 12, 0, 0)


def _balance(current: str, days_ago: int | None) -> RunnerBalance:
    amount = Decimal(current)
    return RunnerBalance(
        runner_id=1,
        current_balance=amount,
        total_earned=amount,
        total_paid=Decimal("0.00"),
        balance_started_at=NOW - timedelta(days=days_ago) if days_ago is not None else None,
        status=RunnerBalanceStatus.ACTIVE,
        reminder_sent=False,
        warning_sent=False,
    )


class TestFeeArithmetic:
    """Service fee and platform commission"""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "amount, expected",
        [
            ("1.00", "20.00"),
            ("100.00", "20.00"),
            ("150.00", "20.00"),
            ("150.01", "30.00"),
            ("200.00", "40.00"),
            ("333.33", "66.67"),
        ],
    )
    def test_service_fee(self, amount, expected):
        assert calculate_service_fee(Decimal(amount)) == Decimal(expected)

    @pytest.mark.unit
    def test_service_fee_of_nothing(self):
        assert calculate_service_fee(Decimal("0")) == Decimal("0.00")

    @pytest.mark.unit
    @pytest.mark.parametrize("fee, expected", [("20.00", "3.00"), ("40.00", "6.00"), ("66.67", "10.00")])
    def test_platform_commission(self, fee, expected):
        assert calculate_platform_commission(Decimal(fee)) == Decimal(expected)


class TestStatusDerivation:
    """derive_status and payment_status are pure projections of the balance"""

    @pytest.mark.unit
    def test_pending_payment_wins(self):
        assert derive_status(_balance("50.00", 10), True, NOW) == RunnerBalanceStatus.PAYMENT_PENDING

    @pytest.mark.unit
    def test_overdue_after_payment_window(self):
        assert derive_status(_balance("50.00", 6), False, NOW) == RunnerBalanceStatus.PAYMENT_OVERDUE
        assert derive_status(_balance("50.00", 5), False, NOW) == RunnerBalanceStatus.ACTIVE

    @pytest.mark.unit
    def test_zero_balance_is_active(self):
        assert derive_status(_balance("0.00", 30), False, NOW) == RunnerBalanceStatus.ACTIVE

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "days, expected_status, urgency",
        [
            (0, "active", "low"),
            (3, "active", "low"),
            (4, "reminder", "medium"),
            (5, "due", "high"),
            (6, "overdue", "critical"),
        ],
    )
    def test_payment_status_by_age(self, days, expected_status, urgency):
        status = payment_status(_balance("17.00", days), NOW)
        assert status.status == expected_status
        assert status.urgency == urgency
        assert status.days_elapsed == days

    @pytest.mark.unit
    def test_payment_status_without_balance(self):
        assert payment_status(None).status == "clear"
        assert payment_status(_balance("0.00", None)).to_dict()["urgency"] == "none"


class TestCreditAndDebit:
    """Applying approved transactions to RunnerBalance"""

    @pytest.mark.asyncio
    async def test_credit_adds_net_fee(self, db_session, people, transaction_factory):
        transaction = await transaction_factory(
            people["runner"].id,
            status=TransactionStatus.APPROVED,
            service_fee=Decimal("20.00"),
            platform_commission=Decimal("3.00"),
        )
        service = BalanceService(db_session)
        balance = await service.get_or_create_balance(people["runner"].id, for_update=True)

        entry = await service.credit(balance, transaction, now=NOW)
        await db_session.commit()

        assert entry.entry_type == LedgerEntryType.CREDIT
        assert entry.amount == Decimal("17.00")
        assert balance.current_balance == Decimal("17.00")
        assert balance.total_earned == Decimal("17.00")
        assert balance.total_paid == Decimal("0.00")
        assert balance.balance_started_at == NOW

    @pytest.mark.asyncio
    async def test_credit_is_idempotent(self, db_session, people, transaction_factory):
        transaction = await transaction_factory(
            people["runner"].id,
            status=TransactionStatus.APPROVED,
            service_fee=Decimal("20.00"),
            platform_commission=Decimal("3.00"),
        )
        service = BalanceService(db_session)
        balance = await service.get_or_create_balance(people["runner"].id)

        await service.credit(balance, transaction, now=NOW)
        second = await service.credit(balance, transaction, now=NOW)
        await db_session.commit()

        assert second is None
        assert balance.total_earned == Decimal("17.00")
        entries = (await db_session.execute(select(BalanceLedgerEntry))).scalars().all()
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_second_credit_keeps_start_date(self, db_session, people, transaction_factory):
        first = await transaction_factory(
            people["runner"].id, status=TransactionStatus.APPROVED, service_fee=Decimal("20.00")
        )
        second = await transaction_factory(
            people["runner"].id, status=TransactionStatus.APPROVED, service_fee=Decimal("20.00")
        )
        service = BalanceService(db_session)
        balance = await service.get_or_create_balance(people["runner"].id)

        await service.credit(balance, first, now=NOW)
        await service.credit(balance, second, now=NOW + timedelta(days=2))

        assert balance.balance_started_at == NOW
        assert balance.current_balance == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_credit_refuses_unapproved(self, db_session, people, transaction_factory):
        transaction = await transaction_factory(people["runner"].id, service_fee=Decimal("20.00"))
        service = BalanceService(db_session)
        balance = await service.get_or_create_balance(people["runner"].id)

        with pytest.raises(ValidationException):
            await service.credit(balance, transaction)

    @pytest.mark.asyncio
    async def test_credit_refuses_balance_payment(self, db_session, people, transaction_factory):
        transaction = await transaction_factory(
            people["runner"].id, type=TransactionType.BALANCE_PAYMENT, status=TransactionStatus.APPROVED
        )
        service = BalanceService(db_session)
        balance = await service.get_or_create_balance(people["runner"].id)

        with pytest.raises(ValidationException):
            await service.credit(balance, transaction)

    @pytest.mark.asyncio
    async def test_full_debit_resets_cycle(self, db_session, people, balance_factory, transaction_factory):
        balance = await balance_factory(
            people["runner"].id,
            total_earned=Decimal("17.00"),
            balance_started_at=NOW - timedelta(days=4),
            reminder_sent=True,
        )
        payment = await transaction_factory(
            people["runner"].id,
            type=TransactionType.BALANCE_PAYMENT,
            status=TransactionStatus.APPROVED,
            original_amount=Decimal("17.00"),
        )
        service = BalanceService(db_session)

        entry = await service.debit(balance, payment, now=NOW)
        await db_session.commit()

        assert entry.amount == Decimal("-17.00")
        assert entry.balance_after == Decimal("0.00")
        assert balance.current_balance == Decimal("0.00")
        assert balance.total_paid == Decimal("17.00")
        assert balance.last_payment_date == NOW
        assert balance.balance_started_at is None
        assert balance.reminder_sent is False

    @pytest.mark.asyncio
    async def test_partial_debit_keeps_cycle(self, db_session, people, balance_factory, transaction_factory):
        started = NOW - timedelta(days=2)
        balance = await balance_factory(
            people["runner"].id, total_earned=Decimal("40.00"), balance_started_at=started
        )
        payment = await transaction_factory(
            people["runner"].id,
            type=TransactionType.BALANCE_PAYMENT,
            status=TransactionStatus.APPROVED,
            original_amount=Decimal("15.00"),
        )

        await BalanceService(db_session).debit(balance, payment, now=NOW)

        assert balance.current_balance == Decimal("25.00")
        assert balance.current_balance == balance.total_earned - balance.total_paid
        assert balance.balance_started_at == started

    @pytest.mark.asyncio
    async def test_debit_beyond_balance_rejected(self, db_session, people, balance_factory, transaction_factory):
        balance = await balance_factory(people["runner"].id, total_earned=Decimal("10.00"))
        payment = await transaction_factory(
            people["runner"].id,
            type=TransactionType.BALANCE_PAYMENT,
            status=TransactionStatus.APPROVED,
            original_amount=Decimal("10.01"),
        )

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await BalanceService(db_session).debit(balance, payment)
        assert exc_info.value.status_code == 400
        assert balance.current_balance == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_refresh_status_tracks_pending_payment(
        self, db_session, people, balance_factory, transaction_factory
    ):
        balance = await balance_factory(
            people["runner"].id, total_earned=Decimal("17.00"), balance_started_at=NOW
        )
        service = BalanceService(db_session)
        assert await service.refresh_status(balance, now=NOW) == RunnerBalanceStatus.ACTIVE

        await transaction_factory(
            people["runner"].id, type=TransactionType.BALANCE_PAYMENT, original_amount=Decimal("17.00")
        )
        assert await service.refresh_status(balance, now=NOW) == RunnerBalanceStatus.PAYMENT_PENDING
        assert balance.status == RunnerBalanceStatus.PAYMENT_PENDING

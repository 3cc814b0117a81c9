"""
Money columns must be Numeric(10,2), never Float.
"""
from decimal import Decimal

import pytest
from sqlalchemy import Numeric, inspect

from errands.db.models.balance_ledger import BalanceLedgerEntry
from errands.db.models.balance_transaction import BalanceTransaction, TransactionType
from errands.db.models.runner_balance import RunnerBalance


_EXPECTED_NUMERIC_COLUMNS = [
    (BalanceTransaction, "original_amount"),
    (BalanceTransaction, "service_fee"),
    (BalanceTransaction, "platform_commission"),
    (BalanceTransaction, "total_amount"),
    (RunnerBalance, "current_balance"),
    (RunnerBalance, "total_earned"),
    (RunnerBalance, "total_paid"),
    (BalanceLedgerEntry, "amount"),
    (BalanceLedgerEntry, "balance_after"),
]


@pytest.mark.unit
@pytest.mark.parametrize("model_class, column_name", _EXPECTED_NUMERIC_COLUMNS)
def test_financial_column_is_numeric(model_class, column_name):
    col_type = inspect(model_class).columns[column_name].type

    assert isinstance(col_type, Numeric), f"{model_class.__name__}.{column_name} is {type(col_type).__name__}"
    assert col_type.precision == 10
    assert col_type.scale == 2


@pytest.mark.unit
async def test_transaction_amounts_round_trip_exactly(db_session, people, transaction_factory):
    transaction = await transaction_factory(
        people["runner"].id,
        original_amount=Decimal("149.99"),
        service_fee=Decimal("20.00"),
        platform_commission=Decimal("3.00"),
    )

    assert transaction.total_amount == Decimal("169.99")
    assert transaction.runner_earnings == Decimal("17.00")


@pytest.mark.unit
def test_float_input_does_not_drift():
    # 0.1 + 0.2 as floats is 0.30000000000000004
    transaction = BalanceTransaction(
        type=TransactionType.BALANCE_PAYMENT,
        runner_id=1,
        original_amount=0.1 + 0.2,
    )

    assert transaction.original_amount == Decimal("0.30")
    assert transaction.total_amount == Decimal("0.30")


@pytest.mark.unit
async def test_balance_precision(db_session, people, balance_factory):
    balance = await balance_factory(
        people["runner"].id, total_earned=Decimal("100.10"), total_paid=Decimal("33.37")
    )

    assert balance.current_balance == Decimal("66.73")

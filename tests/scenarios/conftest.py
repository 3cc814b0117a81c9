"""
Fixtures and helpers for end-to-end scenario tests.

Provides:
- short HTTP helpers for each actor
- a file-backed database with independent sessions for concurrency scenarios
- DB assertions on balances and transactions
"""
from decimal import Decimal
from typing import Optional

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from errands.db.database import Base
from errands.db.models.balance_transaction import BalanceTransaction
from errands.db.models.runner_balance import RunnerBalance
from errands.domain.actors import ActorRole
from tests.helpers import auth_headers


# ============================================================================
# HTTP helpers
# ============================================================================

async def act(
    client: AsyncClient,
    method: str,
    url: str,
    user,
    role: ActorRole,
    json: Optional[dict] = None,
    expected_status: Optional[int] = None,
) -> dict:
    """Send one request as the given actor and return the JSON body"""
    response = await client.request(method, f"/api{url}", json=json, headers=auth_headers(user, role))
    if expected_status is not None:
        assert response.status_code == expected_status, response.text
    return response.json()


# ============================================================================
# DB assertions
# ============================================================================

async def balance_row(session: AsyncSession, runner_id: int) -> Optional[RunnerBalance]:
    result = await session.execute(
        select(RunnerBalance)
        .where(RunnerBalance.runner_id == runner_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def assert_balance(session: AsyncSession, runner_id: int, current: str, earned: str, paid: str) -> None:
    balance = await balance_row(session, runner_id)
    assert balance is not None, f"runner {runner_id} has no balance"
    assert balance.current_balance == Decimal(current)
    assert balance.total_earned == Decimal(earned)
    assert balance.total_paid == Decimal(paid)
    assert balance.current_balance == balance.total_earned - balance.total_paid


async def count_transactions(session: AsyncSession, runner_id: int) -> int:
    result = await session.execute(
        select(func.count(BalanceTransaction.id)).where(BalanceTransaction.runner_id == runner_id)
    )
    return result.scalar_one()


# ============================================================================
# Independent sessions
# ============================================================================

@pytest.fixture
async def session_maker(tmp_path):
    """A file-backed SQLite database where every session gets its own connection"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'scenario.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()

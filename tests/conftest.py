"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- In-memory Redis for the runner lock
- Test data factories and auth headers
"""
# JWT_SECRET_KEY must exist before the app is imported, the settings validator requires it
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")

import pytest
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator, Optional
from unittest.mock import patch

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from redis.asyncio.lock import Lock

from errands.db.database import Base, get_db
from errands.db.models.balance_transaction import (
    BalanceTransaction,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)
from errands.db.models.post import Post, PostStatus
from errands.db.models.runner_balance import RunnerBalance, RunnerBalanceStatus
from errands.db.models.user import User
from errands.main import app
from tests.helpers import PROOF_URL


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Redis
# ============================================================================


class _FakeScript:
    """Server-side behaviour of the Lua scripts redis-py's Lock registers"""

    def __init__(self, source: str):
        self.source = source

    async def __call__(self, keys=(), args=(), client=None):
        key, token = keys[0], args[0]
        if client.store.get(key) != token:
            return 0
        if self.source == Lock.LUA_RELEASE_SCRIPT:
            del client.store[key]
        return 1


class FakeRedis:
    """The subset of redis.asyncio.Redis used by the runner lock"""

    def __init__(self):
        self.store: dict[str, object] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, nx: bool = False, ex: Optional[int] = None, px: Optional[int] = None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def register_script(self, source: str) -> _FakeScript:
        return _FakeScript(source)

    def lock(self, name, timeout=None, sleep=0.1, blocking=True, blocking_timeout=None, thread_local=True):
        return Lock(
            self,
            name,
            timeout=timeout,
            sleep=sleep,
            blocking=blocking,
            blocking_timeout=blocking_timeout,
            thread_local=thread_local,
        )

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self):
        return True

    async def aclose(self):
        return None


@pytest.fixture(autouse=True)
def fake_redis():
    """Every test gets a fresh in-memory Redis"""
    redis = FakeRedis()

    async def _get_redis():
        return redis

    with patch("errands.core.redis_client.get_redis", _get_redis), \
            patch("errands.core.locks.get_redis", _get_redis):
        yield redis


# ============================================================================
# Test Data Factories
# ============================================================================

_user_counter = 0


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        firstname: str = "Test",
        lastname: str = "User",
        email: str | None = None,
        is_admin: bool = False,
        is_banned: bool = False,
    ) -> User:
        global _user_counter
        _user_counter += 1
        user = User(
            firstname=firstname,
            lastname=lastname,
            email=email or f"user{_user_counter}@campus.example.com",
            is_admin=is_admin,
            is_banned=is_banned,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def post_factory(db_session: AsyncSession):
    """Factory for creating test errands"""
    async def _create_post(
        customer_id: int,
        runner_id: int | None = None,
        status: PostStatus | None = None,
        content: str = "Buy a notebook and two pens",
        destination: str = "Engineering Building, Room 301",
    ) -> Post:
        if status is None:
            status = PostStatus.ACCEPTED if runner_id else PostStatus.PENDING
        post = Post(
            content=content,
            destination=destination,
            user_id=customer_id,
            runner_id=runner_id,
            status=status,
            accepted_at=datetime.utcnow() if runner_id else None,
        )
        db_session.add(post)
        await db_session.commit()
        await db_session.refresh(post)
        return post

    return _create_post


@pytest.fixture
def transaction_factory(db_session: AsyncSession):
    """Factory for creating test transactions directly, bypassing the workflow"""
    async def _create_transaction(
        runner_id: int,
        type: TransactionType = TransactionType.ERRAND_PAYMENT,
        status: TransactionStatus = TransactionStatus.PENDING,
        original_amount: Decimal = Decimal("100.00"),
        service_fee: Decimal = Decimal("0.00"),
        platform_commission: Decimal = Decimal("0.00"),
        customer_id: int | None = None,
        post_id: int | None = None,
        payment_method: PaymentMethod = PaymentMethod.GCASH,
    ) -> BalanceTransaction:
        transaction = BalanceTransaction(
            type=type,
            runner_id=runner_id,
            customer_id=customer_id,
            post_id=post_id,
            original_amount=original_amount,
            service_fee=service_fee,
            platform_commission=platform_commission,
            proof_of_purchase=PROOF_URL,
            payment_method=payment_method,
            status=status,
        )
        db_session.add(transaction)
        await db_session.commit()
        await db_session.refresh(transaction)
        return transaction

    return _create_transaction


@pytest.fixture
def balance_factory(db_session: AsyncSession):
    """Factory for creating a runner balance with a given history"""
    async def _create_balance(
        runner_id: int,
        total_earned: Decimal = Decimal("0.00"),
        total_paid: Decimal = Decimal("0.00"),
        balance_started_at: datetime | None = None,
        status: RunnerBalanceStatus = RunnerBalanceStatus.ACTIVE,
        reminder_sent: bool = False,
        warning_sent: bool = False,
    ) -> RunnerBalance:
        balance = RunnerBalance(
            runner_id=runner_id,
            total_earned=total_earned,
            total_paid=total_paid,
            current_balance=total_earned - total_paid,
            balance_started_at=balance_started_at,
            status=status,
            reminder_sent=reminder_sent,
            warning_sent=warning_sent,
        )
        db_session.add(balance)
        await db_session.commit()
        await db_session.refresh(balance)
        return balance

    return _create_balance


@pytest.fixture
async def people(user_factory):
    """A customer, a runner and an admin"""
    return {
        "customer": await user_factory(firstname="Carla", lastname="Customer"),
        "runner": await user_factory(firstname="Rico", lastname="Runner"),
        "admin": await user_factory(firstname="Ada", lastname="Admin", is_admin=True),
    }

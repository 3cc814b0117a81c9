"""
Tests for the Redis lock client and database session helpers
"""
from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from errands.core import redis_client
from errands.core.config import settings
from errands.core.redis_client import close_redis, get_redis as real_get_redis
from errands.db import database


class _RecordingRedis:
    def __init__(self):
        self.pings = 0
        self.closed = False

    async def ping(self):
        self.pings += 1
        return True

    async def aclose(self):
        self.closed = True


@pytest.fixture
def recorded_from_url():
    """Replaces redis.asyncio.from_url and records how the client was built"""
    calls = []
    client = _RecordingRedis()

    def _from_url(url, **kwargs):
        calls.append((url, kwargs))
        return client

    redis_client._redis_client = None
    with patch.object(redis_client.aioredis, "from_url", _from_url):
        yield calls, client
    redis_client._redis_client = None


class TestRedisClient:

    @pytest.mark.unit
    async def test_client_has_bounded_socket_timeouts(self, recorded_from_url):
        calls, client = recorded_from_url

        assert await real_get_redis() is client

        (url, kwargs), = calls
        assert url == settings.REDIS_URL
        assert kwargs["socket_timeout"] == settings.REDIS_SOCKET_TIMEOUT_SECONDS
        assert kwargs["socket_connect_timeout"] == settings.REDIS_SOCKET_TIMEOUT_SECONDS
        assert kwargs["decode_responses"] is True

    @pytest.mark.unit
    async def test_client_is_created_once(self, recorded_from_url):
        calls, client = recorded_from_url

        await real_get_redis()
        await real_get_redis()

        assert len(calls) == 1
        assert client.pings == 1

    @pytest.mark.unit
    async def test_close_drops_the_singleton(self, recorded_from_url):
        calls, client = recorded_from_url
        await real_get_redis()

        await close_redis()

        assert client.closed is True
        assert redis_client._redis_client is None

    @pytest.mark.unit
    def test_password_is_masked(self):
        masked = redis_client._mask_redis_url("redis://:hunter2@cache:6379/0")
        assert masked == "redis://:****@cache:6379/0"


class _RecordingSession:
    def __init__(self):
        self.rolled_back = False
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def rollback(self):
        self.rolled_back = True

    async def close(self):
        self.closed = True


class TestSessions:

    @pytest.mark.unit
    async def test_request_session_rolls_back_on_error(self):
        session = _RecordingSession()

        with patch.object(database, "AsyncSessionLocal", lambda: session):
            dependency = database.get_db()
            assert await dependency.__anext__() is session
            with pytest.raises(RuntimeError):
                await dependency.athrow(RuntimeError("handler failed"))

        assert session.rolled_back is True
        assert session.closed is True

    @pytest.mark.unit
    async def test_request_session_untouched_on_success(self):
        session = _RecordingSession()

        with patch.object(database, "AsyncSessionLocal", lambda: session):
            dependency = database.get_db()
            await dependency.__anext__()
            with pytest.raises(StopAsyncIteration):
                await dependency.__anext__()

        assert session.rolled_back is False
        assert session.closed is True

    @pytest.mark.unit
    async def test_task_session_uses_unpooled_engine(self):
        engine_kwargs = []

        def _create_engine(url, **kwargs):
            engine_kwargs.append(kwargs)
            return create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=kwargs["poolclass"])

        with patch.object(database, "create_async_engine", _create_engine):
            async with database.get_task_session() as session:
                result = await session.execute(text("SELECT 1"))
                assert result.scalar() == 1

        (kwargs,) = engine_kwargs
        assert kwargs["poolclass"] is NullPool
        assert "pool_size" not in kwargs

    @pytest.mark.unit
    async def test_task_session_propagates_errors(self):
        def _create_engine(url, **kwargs):
            return create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=kwargs["poolclass"])

        with patch.object(database, "create_async_engine", _create_engine):
            with pytest.raises(RuntimeError, match="sweep failed"):
                async with database.get_task_session():
                    raise RuntimeError("sweep failed")

"""
Tests for Event Gateway token storage
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from haunted.token_manager import ACCESS_TOKEN_TTL, TokenManager

from conftest import LWA_HOST, LWA_TOKEN_PATH


def make_redis(data=None):
    """Dict-backed stand-in for redis.asyncio.Redis."""
    data = {} if data is None else data
    redis = MagicMock()

    async def set_(key, value, ex=None):
        data[key] = value

    async def get(key):
        return data.get(key)

    async def mget(keys):
        return [data.get(k) for k in keys]

    async def scan_iter(match=None):
        prefix = (match or "").rstrip("*")
        for key in list(data):
            if key.startswith(prefix):
                yield key

    redis.set = AsyncMock(side_effect=set_)
    redis.get = AsyncMock(side_effect=get)
    redis.mget = AsyncMock(side_effect=mget)
    redis.scan_iter = scan_iter
    redis.aclose = AsyncMock()
    return redis, data


@pytest.mark.asyncio
async def test_store_and_get_in_memory(token_manager):
    record = await token_manager.store_event_gateway_token("grantee-1", "access-1", "refresh-1")

    assert record.access_token == "access-1"
    assert await token_manager.get_event_gateway_token() == "access-1"
    assert await token_manager.get_all_event_gateway_tokens() == ["access-1"]


@pytest.mark.asyncio
async def test_store_mirrors_to_redis(alexa):
    redis, data = make_redis()
    manager = TokenManager(alexa=alexa, redis=redis)

    await manager.store_event_gateway_token("grantee-1", "access-1", "refresh-1")

    assert data["token:event_gateway_grantee-1"] == "access-1"
    assert data["refresh:event_gateway_grantee-1"] == "refresh-1"
    redis.set.assert_any_await(
        "token:event_gateway_grantee-1", "access-1", ex=ACCESS_TOKEN_TTL
    )


@pytest.mark.asyncio
async def test_tokens_merged_from_memory_and_redis_without_duplicates(alexa):
    redis, data = make_redis(
        {
            "token:event_gateway_old-user": "access-old",
            "refresh:event_gateway_old-user": "refresh-old",
        }
    )
    manager = TokenManager(alexa=alexa, redis=redis)
    await manager.store_event_gateway_token("new-user", "access-new", "refresh-new")

    tokens = await manager.get_all_event_gateway_tokens()

    assert sorted(tokens) == ["access-new", "access-old"]


@pytest.mark.asyncio
async def test_redis_failure_falls_back_to_memory(alexa):
    redis, _ = make_redis()
    redis.set = AsyncMock(side_effect=RedisError("OOM command not allowed"))
    manager = TokenManager(alexa=alexa, redis=redis)

    await manager.store_event_gateway_token("grantee-1", "access-1", "refresh-1")

    assert manager.redis_disabled is True
    assert await manager.get_all_event_gateway_tokens() == ["access-1"]

    # Redis is never touched again
    await manager.store_event_gateway_token("grantee-2", "access-2", None)
    assert redis.set.await_count == 1


@pytest.mark.asyncio
async def test_redis_scan_failure_disables_redis(alexa):
    redis, _ = make_redis()

    async def broken_scan(match=None):
        raise RedisConnectionError("connection refused")
        yield  # pragma: no cover

    redis.scan_iter = broken_scan
    manager = TokenManager(alexa=alexa, redis=redis)
    manager._access_tokens["event_gateway_u"] = "access-u"

    assert await manager.get_all_event_gateway_tokens() == ["access-u"]
    assert manager.redis_enabled is False


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_makes_no_call(token_manager, upstream):
    await token_manager.store_event_gateway_token("grantee-1", "access-1", None)

    assert await token_manager.refresh_access_token("access-1") is None
    assert await token_manager.refresh_access_token("unknown-token") is None
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_refresh_stores_new_token(token_manager, upstream):
    upstream.add(
        LWA_HOST,
        LWA_TOKEN_PATH,
        (200, {"access_token": "access-2", "refresh_token": "refresh-2"}),
    )
    await token_manager.store_event_gateway_token("grantee-1", "access-1", "refresh-1")

    new_token = await token_manager.refresh_access_token("access-1")

    assert new_token == "access-2"
    assert await token_manager.get_all_event_gateway_tokens() == ["access-2"]
    request = upstream.calls(LWA_HOST, LWA_TOKEN_PATH)[0]
    body = request.content.decode()
    assert "grant_type=refresh_token" in body
    assert "refresh_token=refresh-1" in body


@pytest.mark.asyncio
async def test_refresh_uses_refresh_token_from_redis(alexa, upstream):
    upstream.add(LWA_HOST, LWA_TOKEN_PATH, (200, {"access_token": "access-2"}))
    redis, data = make_redis(
        {
            "token:event_gateway_u": "access-1",
            "refresh:event_gateway_u": "refresh-1",
        }
    )
    manager = TokenManager(alexa=alexa, redis=redis)

    assert await manager.refresh_access_token("access-1") == "access-2"
    assert data["token:event_gateway_u"] == "access-2"
    # Refresh token kept when LWA does not rotate it
    assert data["refresh:event_gateway_u"] == "refresh-1"


@pytest.mark.asyncio
async def test_refresh_failure_returns_none(token_manager, upstream):
    upstream.add(LWA_HOST, LWA_TOKEN_PATH, (400, {"error": "invalid_grant"}))
    await token_manager.store_event_gateway_token("grantee-1", "access-1", "refresh-1")

    assert await token_manager.refresh_access_token("access-1") is None
    assert await token_manager.get_all_event_gateway_tokens() == ["access-1"]

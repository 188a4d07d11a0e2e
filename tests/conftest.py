# tests/conftest.py
import asyncio
import sys

import pytest_asyncio
from fakeredis import aioredis as fake_aioredis

from app.backend.db.redis_client import RedisClient

# This is the crucial fix for Windows asyncio issues with pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest_asyncio.fixture
async def fake_redis():
    """An in-process Redis standing in for the document store, empty for every test."""
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def redis_client(fake_redis) -> RedisClient:
    return RedisClient(client=fake_redis)

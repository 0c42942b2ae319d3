"""
Tests for admin lookups and the admin cache.
"""
import pytest
import redis.asyncio as redis
from sqlalchemy import event

from templegiving.model.admins import is_user_admin, create_admin
from templegiving.model.admincache import (
    MemoryAdminCache, RedisAdminCache, new_cache,
)
from templegiving.model.admincache._memory import AdminCache
from templegiving.model.orm import Admin


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def query_counter(db_engine):
    counter = {"n": 0}

    def _count(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            counter["n"] += 1

    event.listen(db_engine.sync_engine, "before_cursor_execute", _count)
    yield counter
    event.remove(db_engine.sync_engine, "before_cursor_execute", _count)


class TestIsUserAdmin:

    @pytest.mark.asyncio
    async def test_active_admin(self, db_session, admin_user, admin_cache):
        assert await is_user_admin(db_session, "admin@example.com",
                                   admin_cache)

    @pytest.mark.asyncio
    async def test_email_case_ignored(self, db_session, admin_user,
                                      admin_cache):
        assert await is_user_admin(db_session, "Admin@Example.com",
                                   admin_cache)

    @pytest.mark.asyncio
    async def test_inactive_admin(self, db_session, admin_cache):
        db_session.add(Admin(email="old@example.com", is_active=False))
        await db_session.commit()
        assert not await is_user_admin(db_session, "old@example.com",
                                       admin_cache)

    @pytest.mark.asyncio
    async def test_unknown_email(self, db_session, admin_cache):
        assert not await is_user_admin(db_session, "who@example.com",
                                       admin_cache)
        assert not await is_user_admin(db_session, "", admin_cache)

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(
        self, db_session, admin_user, admin_cache, query_counter
    ):
        assert await is_user_admin(db_session, "admin@example.com",
                                   admin_cache)
        after_first = query_counter["n"]
        assert after_first >= 1
        assert await is_user_admin(db_session, "admin@example.com",
                                   admin_cache)
        assert query_counter["n"] == after_first

    @pytest.mark.asyncio
    async def test_expired_entry_requeries(self, db_session, admin_user,
                                           query_counter):
        clock = FakeClock()
        cache = AdminCache(ttl_seconds=300, clock=clock)
        await is_user_admin(db_session, "admin@example.com", cache)
        before = query_counter["n"]
        clock.now += 301
        assert await is_user_admin(db_session, "admin@example.com", cache)
        assert query_counter["n"] == before + 1

    @pytest.mark.asyncio
    async def test_negative_answer_cached_until_invalidated(
        self, db_session, admin_cache
    ):
        assert not await is_user_admin(db_session, "new@example.com",
                                       admin_cache)
        created = await create_admin(db_session, {"email": "new@example.com"})
        assert created.ok
        assert not await is_user_admin(db_session, "new@example.com",
                                       admin_cache)
        await admin_cache.invalidate("new@example.com")
        assert await is_user_admin(db_session, "new@example.com",
                                   admin_cache)


class TestMemoryCache:

    @pytest.mark.asyncio
    async def test_lru_bound(self):
        cache = AdminCache(ttl_seconds=300, max_entries=2)
        await cache.set("a@x.com", True)
        await cache.set("b@x.com", False)
        assert await cache.get("a@x.com") is True  # a is now most recent
        await cache.set("c@x.com", True)
        assert len(cache) == 2
        assert await cache.get("b@x.com") is None
        assert await cache.get("a@x.com") is True
        assert await cache.get("c@x.com") is True

    @pytest.mark.asyncio
    async def test_expiry_on_read(self):
        clock = FakeClock()
        cache = AdminCache(ttl_seconds=10, clock=clock)
        await cache.set("a@x.com", True)
        clock.now += 9
        assert await cache.get("a@x.com") is True
        clock.now += 2
        assert await cache.get("a@x.com") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_clear(self):
        cache = AdminCache()
        await cache.set("a@x.com", True)
        await cache.clear()
        assert await cache.get("a@x.com") is None


class TestNewCache:

    def test_memory(self):
        cache = new_cache("memory", ttl_seconds=60, max_entries=8)
        assert isinstance(cache, MemoryAdminCache)

    def test_redis(self):
        cache = new_cache("redis", r=redis.Redis(), ttl_seconds=60)
        assert isinstance(cache, RedisAdminCache)
        assert cache.ttl == 60

    def test_redis_needs_client(self):
        with pytest.raises(RuntimeError):
            new_cache("redis")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            new_cache("memcached")

"""Tests for the TTL subscription cache."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from conftest import USER_ID, FakeAuthorizationService

from azpim.models import Subscription
from azpim.services.subscription_cache import SubscriptionCache, format_cache_age
from azpim.store import JsonFileStore, MemoryStore, subscription_cache_key

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)
SUBS = [
    Subscription(subscription_id="AAAA-1", display_name="Production"),
    Subscription(subscription_id="bbbb-2", display_name="Staging"),
]


class Clock:
    """Settable clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_cache(store=None, subscriptions=None, now=T0):
    service = FakeAuthorizationService(subscriptions=SUBS if subscriptions is None else subscriptions)
    clock = Clock(now)
    cache = SubscriptionCache(store or MemoryStore(), service, ttl=timedelta(hours=6), clock=clock)
    return cache, service, clock


class TestGet:
    """Test read-through behaviour."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_persists(self):
        """Test an empty store triggers one fetch and writes the document."""
        store = MemoryStore()
        cache, service, _ = make_cache(store)

        result = await cache.get(USER_ID)

        assert result.is_fresh is False
        assert [s.display_name for s in result.subscriptions] == ["Production", "Staging"]
        assert service.calls == [("fetch_subscriptions", USER_ID)]
        saved = store.documents[subscription_cache_key(USER_ID)]
        assert saved["version"] == 1
        assert saved["subscriptions"][0]["subscriptionId"] == "AAAA-1"
        assert "lastUpdated" in saved

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_fetch(self):
        """Test a fresh cache is served without calling the platform."""
        cache, service, clock = make_cache()
        await cache.get(USER_ID)
        service.calls.clear()

        clock.now = T0 + timedelta(hours=6) - timedelta(seconds=1)
        result = await cache.get(USER_ID)

        assert result.is_fresh is True
        assert service.calls == []

    @pytest.mark.asyncio
    async def test_stale_at_exactly_ttl(self):
        """Test a cache exactly six hours old is refetched."""
        cache, service, clock = make_cache()
        await cache.get(USER_ID)
        service.calls.clear()

        clock.now = T0 + timedelta(hours=6)
        result = await cache.get(USER_ID)

        assert result.is_fresh is False
        assert len(service.calls) == 1

    @pytest.mark.asyncio
    async def test_force_refresh(self):
        """Test force_refresh fetches even when fresh."""
        cache, service, _ = make_cache()
        await cache.get(USER_ID)
        service.calls.clear()

        await cache.get(USER_ID, force_refresh=True)

        assert len(service.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_cache_is_refetched(self):
        """Test a fresh but empty listing does not count as a hit."""
        cache, service, _ = make_cache(subscriptions=[])
        await cache.get(USER_ID)
        await cache.get(USER_ID)

        assert len(service.calls) == 2

    @pytest.mark.asyncio
    async def test_malformed_document_is_ignored(self):
        """Test a corrupt document is treated as a miss."""
        store = MemoryStore({subscription_cache_key(USER_ID): {"version": 1, "lastUpdated": "yesterday"}})
        cache, service, _ = make_cache(store)

        result = await cache.get(USER_ID)

        assert len(service.calls) == 1
        assert len(result.subscriptions) == 2

    @pytest.mark.asyncio
    async def test_truncated_file_is_ignored(self, tmp_path):
        """Test an undecodable cache file on disk is a miss and gets rewritten."""
        store = JsonFileStore(tmp_path)
        path = store.path_for(subscription_cache_key(USER_ID))
        path.parent.mkdir(parents=True)
        path.write_text('{"version": 1, "lastUpdated": "2025-01-01T00:00:00Z", "subscr')
        cache, service, _ = make_cache(store)

        assert (await cache.validate_subscription_id(USER_ID, "aaaa-1")).valid is False
        assert await cache.get_cache_age(USER_ID) is None

        result = await cache.get(USER_ID)

        assert len(service.calls) == 1
        assert len(result.subscriptions) == 2
        assert json.loads(path.read_text())["subscriptions"][0]["subscriptionId"] == "AAAA-1"


class TestInvalidate:
    """Test cache deletion."""

    @pytest.mark.asyncio
    async def test_idempotent(self):
        """Test invalidating twice reports what happened each time."""
        cache, _, _ = make_cache()
        await cache.get(USER_ID)

        assert await cache.invalidate(USER_ID) is True
        assert await cache.invalidate(USER_ID) is False
        assert await cache.get_cache_age(USER_ID) is None


class TestValidateSubscriptionId:
    """Test lookups against the persisted cache."""

    @pytest.mark.asyncio
    async def test_case_insensitive_hit(self):
        """Test ids match regardless of case and surrounding space."""
        cache, service, _ = make_cache()
        await cache.get(USER_ID)
        service.calls.clear()

        result = await cache.validate_subscription_id(USER_ID, "  aaaa-1 ")

        assert result.valid is True
        assert result.subscription.display_name == "Production"
        assert service.calls == []

    @pytest.mark.asyncio
    async def test_no_cache_never_fetches(self):
        """Test a missing cache means not found, without any fetch."""
        cache, service, _ = make_cache()

        result = await cache.validate_subscription_id(USER_ID, "AAAA-1")

        assert result.valid is False
        assert result.subscription is None
        assert service.calls == []


class TestCacheAge:
    """Test age reporting helpers."""

    @pytest.mark.asyncio
    async def test_age_and_name_map(self):
        """Test age is measured from the write and names are keyed by lower-case id."""
        cache, _, clock = make_cache()
        await cache.get(USER_ID)
        clock.now = T0 + timedelta(minutes=5)

        assert await cache.get_cache_age(USER_ID) == timedelta(minutes=5)
        assert await cache.get_subscription_name_map(USER_ID) == {
            "aaaa-1": "Production",
            "bbbb-2": "Staging",
        }

    @pytest.mark.parametrize(
        "age,expected",
        [
            (None, "no cache"),
            (timedelta(seconds=42), "42s ago"),
            (timedelta(minutes=5, seconds=10), "5m ago"),
            (timedelta(hours=2, minutes=3), "2h 3m ago"),
        ],
    )
    def test_format_cache_age(self, age, expected):
        """Test human-readable cache ages."""
        assert format_cache_age(age) == expected

"""TTL read-through cache over the subscription listing.

The listing is slow and rarely changes, so it is kept per user in the
persistent store and reused while younger than the TTL (6 hours by
default). Single writer, last write wins; a malformed document is treated
as absent because the cache can always be rebuilt.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pydantic import ValidationError

from azpim.config import settings
from azpim.errors import ConfigError
from azpim.logging_config import get_logger
from azpim.models import Subscription, SubscriptionCacheDocument, utc_now
from azpim.platform.base import AuthorizationService
from azpim.store import PersistentStore, subscription_cache_key

logger = get_logger(__name__)


def _default_ttl() -> timedelta:
    """Cache TTL from config."""
    return timedelta(hours=settings.subscription_cache_ttl_hours)


@dataclass
class CachedSubscriptions:
    """Subscriptions plus where they came from."""

    subscriptions: list[Subscription]
    is_fresh: bool
    last_updated: datetime | None = None


@dataclass
class SubscriptionValidation:
    """Result of checking a subscription id against the cache."""

    valid: bool
    subscription: Subscription | None = field(default=None)


def format_cache_age(age: timedelta | None) -> str:
    """Render a cache age as "no cache", "42s ago", "5m ago" or "2h 3m ago"."""
    if age is None:
        return "no cache"

    seconds = int(age.total_seconds())
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m ago"
    if minutes > 0:
        return f"{minutes}m ago"
    return f"{seconds}s ago"


class SubscriptionCache:
    """Per-user subscription cache backed by a PersistentStore."""

    def __init__(
        self,
        store: PersistentStore,
        service: AuthorizationService,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.service = service
        self.ttl = ttl if ttl is not None else _default_ttl()
        self.clock = clock

    def is_fresh(self, document: SubscriptionCacheDocument) -> bool:
        """Fresh iff now - last_updated < ttl."""
        return self.clock() - document.last_updated < self.ttl

    async def load(self, user_id: str) -> SubscriptionCacheDocument | None:
        """Load the persisted document, or None if absent or unreadable."""
        try:
            result = await self.store.get(subscription_cache_key(user_id))
        except ConfigError as e:
            logger.warning("Ignoring unreadable subscription cache", user_id=user_id, error=e.message)
            return None
        if not result.exists or not isinstance(result.data, dict):
            return None
        try:
            return SubscriptionCacheDocument.model_validate(result.data)
        except ValidationError:
            logger.warning("Ignoring malformed subscription cache", user_id=user_id)
            return None

    async def save(self, user_id: str, subscriptions: list[Subscription]) -> SubscriptionCacheDocument:
        document = SubscriptionCacheDocument(last_updated=self.clock(), subscriptions=subscriptions)
        await self.store.put(subscription_cache_key(user_id), document.to_json_dict())
        logger.debug("Subscription cache saved", user_id=user_id, count=len(subscriptions))
        return document

    async def get(self, user_id: str, force_refresh: bool = False) -> CachedSubscriptions:
        """Return cached subscriptions if fresh, otherwise fetch and persist.

        A fresh, non-empty cache is served without any platform call.
        """
        if not force_refresh:
            document = await self.load(user_id)
            if document is not None and document.subscriptions and self.is_fresh(document):
                logger.debug("Using cached subscriptions", count=len(document.subscriptions))
                return CachedSubscriptions(
                    subscriptions=document.subscriptions,
                    is_fresh=True,
                    last_updated=document.last_updated,
                )
            logger.debug("Subscription cache miss or stale, fetching")
        else:
            logger.debug("Force refresh enabled, skipping subscription cache")

        subscriptions = await self.service.fetch_subscriptions(user_id)
        document = await self.save(user_id, subscriptions)
        return CachedSubscriptions(
            subscriptions=document.subscriptions,
            is_fresh=False,
            last_updated=document.last_updated,
        )

    async def invalidate(self, user_id: str) -> bool:
        """Delete the cache. Returns False if there was nothing to delete."""
        deleted = await self.store.delete(subscription_cache_key(user_id))
        if deleted:
            logger.info("Subscription cache invalidated", user_id=user_id)
        return deleted

    async def validate_subscription_id(self, user_id: str, subscription_id: str) -> SubscriptionValidation:
        """Look up an id (case-insensitive) in the persisted cache only.

        Never triggers a fetch; a missing or empty cache means "not found".
        """
        normalized = subscription_id.strip().lower()
        document = await self.load(user_id)
        if document is None or not document.subscriptions:
            return SubscriptionValidation(valid=False)

        for sub in document.subscriptions:
            if sub.subscription_id.lower() == normalized:
                return SubscriptionValidation(valid=True, subscription=sub)
        return SubscriptionValidation(valid=False)

    async def get_cache_age(self, user_id: str) -> timedelta | None:
        document = await self.load(user_id)
        if document is None:
            return None
        return self.clock() - document.last_updated

    async def get_subscription_name_map(self, user_id: str) -> dict[str, str]:
        """Map lower-cased subscription id to display name from the cache."""
        document = await self.load(user_id)
        if document is None:
            return {}
        return {sub.subscription_id.lower(): sub.display_name for sub in document.subscriptions}

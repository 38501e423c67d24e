"""Change feed adapter: row-level change notifications per table.

Subscribers name a table, an event filter and optionally a ``column = value``
row filter, and get a callback for every matching committed change until
they unsubscribe. Within one subscription, changes arrive in the order they
were published (the publisher publishes in commit order). Nothing is
acknowledged or retried: when a transport drops, updates stop and the
caller is expected to refetch.
"""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import redis.asyncio as aioredis

from labormarket.config import settings
from labormarket.realtime.events import ChangeEvent, ChangeMessage, EventFilter, RowFilter

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Awaitable[None] | None]


def channel_name(table: str, event_filter: EventFilter, row_filter: RowFilter | None) -> str:
    """Unique per subscription so concurrent subscribers on a table never collide."""
    parts = ["realtime", table, event_filter.value]
    if row_filter is not None:
        parts.append(str(row_filter))
    parts.append(str(time.monotonic_ns()))
    return "-".join(parts)


async def _invoke(callback: ChangeCallback, event: ChangeEvent) -> None:
    result = callback(event)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        event_filter: EventFilter,
        row_filter: RowFilter | None,
        callback: ChangeCallback,
    ) -> None:
        self.feed = feed
        self.table = table
        self.event_filter = event_filter
        self.row_filter = row_filter
        self.callback = callback
        self.channel = channel_name(table, event_filter, row_filter)
        self.closed = False

    def wants(self, message: ChangeMessage) -> bool:
        return (
            not self.closed
            and message.table == self.table
            and message.matches(self.event_filter, self.row_filter)
        )

    async def deliver(self, message: ChangeMessage) -> None:
        if not self.wants(message):
            return
        await _invoke(self.callback, message.to_event())

    async def unsubscribe(self) -> None:
        """Release the channel. Safe to call any number of times."""
        if self.closed:
            return
        self.closed = True
        await self.feed._release(self)
        logger.debug("Released channel %s", self.channel)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.unsubscribe()


class ChangeFeed(ABC):
    """Transport-agnostic change feed."""

    async def subscribe(
        self,
        table: str,
        event_filter: EventFilter | str,
        callback: ChangeCallback,
        row_filter: RowFilter | None = None,
    ) -> Subscription:
        subscription = Subscription(
            self, table, EventFilter(event_filter), row_filter, callback
        )
        await self._attach(subscription)
        logger.debug("Opened channel %s", subscription.channel)
        return subscription

    @abstractmethod
    async def publish(self, message: ChangeMessage) -> None: ...

    @abstractmethod
    async def _attach(self, subscription: Subscription) -> None: ...

    @abstractmethod
    async def _release(self, subscription: Subscription) -> None: ...

    async def close(self) -> None:
        """Drop every open subscription."""


class LocalChangeFeed(ChangeFeed):
    """In-process fan-out. Delivery happens inside ``publish``.

    Callback errors propagate to whoever published.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}

    @property
    def subscription_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    async def _attach(self, subscription: Subscription) -> None:
        self._subscriptions.setdefault(subscription.table, []).append(subscription)

    async def _release(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.table, [])
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            self._subscriptions.pop(subscription.table, None)

    async def publish(self, message: ChangeMessage) -> None:
        # Copy: callbacks may unsubscribe (themselves or others) mid-delivery.
        for subscription in list(self._subscriptions.get(message.table, [])):
            await subscription.deliver(message)

    async def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for subscription in list(subs):
                await subscription.unsubscribe()


class RedisChangeFeed(ChangeFeed):
    """Redis pub/sub transport: one channel per table, one reader per subscription."""

    def __init__(self, redis: aioredis.Redis, prefix: str | None = None) -> None:
        self.redis = redis
        self.prefix = prefix or settings.change_feed_channel_prefix
        self._readers: dict[Subscription, tuple[object, asyncio.Task]] = {}

    def table_channel(self, table: str) -> str:
        return f"{self.prefix}:{table}"

    async def publish(self, message: ChangeMessage) -> None:
        await self.redis.publish(self.table_channel(message.table), message.model_dump_json())

    async def _attach(self, subscription: Subscription) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.table_channel(subscription.table))
        task = asyncio.create_task(
            self._read(subscription, pubsub), name=subscription.channel
        )
        self._readers[subscription] = (pubsub, task)

    async def _read(self, subscription: Subscription, pubsub) -> None:  # type: ignore[no-untyped-def]
        try:
            while not subscription.closed:
                raw = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if raw is None or raw.get("type") != "message":
                    continue
                try:
                    message = ChangeMessage.model_validate_json(raw["data"])
                except ValueError:
                    logger.warning("Dropping malformed change on %s", subscription.channel)
                    continue
                await subscription.deliver(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Change feed reader %s stopped", subscription.channel)

    async def _release(self, subscription: Subscription) -> None:
        entry = self._readers.pop(subscription, None)
        if entry is None:
            return
        pubsub, task = entry
        if task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await pubsub.unsubscribe()
        await pubsub.aclose()

    async def close(self) -> None:
        for subscription in list(self._readers):
            await subscription.unsubscribe()


_feed: ChangeFeed | None = None


def get_change_feed() -> ChangeFeed:
    """Process-wide feed, built from settings on first use."""
    global _feed
    if _feed is None:
        if settings.change_feed_backend == "redis":
            _feed = RedisChangeFeed(aioredis.from_url(settings.redis_url))
        else:
            _feed = LocalChangeFeed()
    return _feed


def set_change_feed(feed: ChangeFeed | None) -> None:
    global _feed
    _feed = feed

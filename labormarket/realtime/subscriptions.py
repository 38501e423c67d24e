"""Local copies of store entities kept in sync by the change feed.

``CollectionSubscription`` mirrors a list of entities, ``RecordSubscription``
a single filtered row. Both start from a snapshot the caller fetched and
patch it with incoming changes. A new snapshot always wins: ``reset()``
throws away whatever the feed patched in since the last one.

The merge logic lives in two pure reducers so an event is either applied
completely or not at all.
"""

from collections.abc import Callable, Sequence
from typing import Any, Generic, TypeVar

from labormarket.realtime.events import (
    ChangeEvent,
    Deleted,
    EventFilter,
    Inserted,
    Row,
    RowFilter,
    Updated,
)
from labormarket.realtime.feed import ChangeFeed, Subscription

T = TypeVar("T")
Transform = Callable[[Row], Any]


def identity_of(item: Any, key: str = "id") -> Any:
    if isinstance(item, dict):
        value = item.get(key)
    else:
        value = getattr(item, key, None)
    return None if value is None else str(value)


def apply_to_collection(
    items: Sequence[T],
    event: ChangeEvent,
    transform: Transform | None = None,
    key: str = "id",
) -> list[T]:
    """Return a new list with ``event`` merged into ``items``.

    INSERT appends, UPDATE replaces the matching element in place (and is
    dropped when nothing matches), DELETE removes the matching element.
    """
    if isinstance(event, Inserted):
        item = transform(event.row) if transform else event.row
        return [*items, item]
    if isinstance(event, Updated):
        target = identity_of(event.row, key)
        if not any(identity_of(item, key) == target for item in items):
            return list(items)
        updated = transform(event.row) if transform else event.row
        return [updated if identity_of(item, key) == target else item for item in items]
    if isinstance(event, Deleted):
        target = None if event.id is None else str(event.id)
        return [item for item in items if identity_of(item, key) != target]
    raise TypeError(f"Unknown change event: {event!r}")


def apply_to_record(
    current: T | None, event: ChangeEvent, transform: Transform | None = None
) -> T | None:
    if isinstance(event, (Inserted, Updated)):
        return transform(event.row) if transform else event.row
    if isinstance(event, Deleted):
        return None
    raise TypeError(f"Unknown change event: {event!r}")


class CollectionSubscription(Generic[T]):
    """A list of entities fed by a table subscription."""

    def __init__(
        self,
        feed: ChangeFeed,
        initial: Sequence[T] = (),
        key: str = "id",
    ) -> None:
        self.feed = feed
        self.key = key
        self.items: list[T] = list(initial)
        self._subscription: Subscription | None = None
        self._binding: tuple[str, EventFilter, Transform | None] | None = None
        self._transform: Transform | None = None

    def reset(self, initial: Sequence[T]) -> None:
        """Replace local state with a freshly fetched snapshot."""
        self.items = list(initial)

    def _on_change(self, event: ChangeEvent) -> None:
        self.items = apply_to_collection(self.items, event, self._transform, self.key)

    async def bind(
        self,
        table: str,
        event_filter: EventFilter | str = EventFilter.ANY,
        transform: Transform | None = None,
    ) -> None:
        """Subscribe, or re-subscribe if table, filter or transform changed."""
        binding = (table, EventFilter(event_filter), transform)
        if self._binding is not None and self._same_binding(binding):
            return
        await self.close()
        self._transform = transform
        self._subscription = await self.feed.subscribe(table, binding[1], self._on_change)
        self._binding = binding

    def _same_binding(self, binding: tuple[str, EventFilter, Transform | None]) -> bool:
        table, event_filter, transform = self._binding  # type: ignore[misc]
        return table == binding[0] and event_filter is binding[1] and transform is binding[2]

    async def close(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
        self._subscription = None
        self._binding = None

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and not self._subscription.closed


class RecordSubscription(Generic[T]):
    """A single row, selected by ``column = value``, fed by the change feed."""

    def __init__(self, feed: ChangeFeed, initial: T | None = None) -> None:
        self.feed = feed
        self.record: T | None = initial
        self._subscription: Subscription | None = None
        self._binding: tuple[str, str, str, EventFilter] | None = None
        self._transform: Transform | None = None

    def reset(self, initial: T | None) -> None:
        self.record = initial

    def _on_change(self, event: ChangeEvent) -> None:
        self.record = apply_to_record(self.record, event, self._transform)

    async def bind(
        self,
        table: str,
        column: str,
        value: Any,
        event_filter: EventFilter | str = EventFilter.ANY,
        transform: Transform | None = None,
    ) -> None:
        binding = (table, column, str(value), EventFilter(event_filter))
        if binding == self._binding and transform is self._transform:
            return
        await self.close()
        self._transform = transform
        self._subscription = await self.feed.subscribe(
            table, binding[3], self._on_change, row_filter=RowFilter(column, value)
        )
        self._binding = binding

    async def close(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
        self._subscription = None
        self._binding = None

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

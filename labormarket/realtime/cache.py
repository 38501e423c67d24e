"""Optimistic local cache on top of a collection subscription.

UI actions don't patch local state directly. Each one is recorded as a
pending operation and shown immediately through ``view``; when the server
confirms, the operation is folded into the confirmed snapshot, and when the
server rejects, it is dropped so the view falls back to the snapshot.
"""

import logging
import uuid
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from labormarket.realtime.events import ChangeEvent, Deleted, Inserted, Row, Updated
from labormarket.realtime.feed import ChangeFeed
from labormarket.realtime.subscriptions import (
    CollectionSubscription,
    Transform,
    apply_to_collection,
    identity_of,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PendingOperation:
    event: ChangeEvent
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex)


def merge(
    items: Sequence[T], event: ChangeEvent, transform: Transform | None, key: str
) -> list[T]:
    """Like apply_to_collection, but an INSERT of a known id replaces it.

    The feed echoes our own confirmed writes back to us; without this the
    echo of an insert we already folded in would show up twice.
    """
    if isinstance(event, Inserted):
        target = identity_of(event.row, key)
        if target is not None and any(identity_of(item, key) == target for item in items):
            event = Updated(event.row)
    return apply_to_collection(items, event, transform, key)


class OptimisticCollection(CollectionSubscription[T]):
    def __init__(self, feed: ChangeFeed, initial: Sequence[T] = (), key: str = "id") -> None:
        super().__init__(feed, initial, key)
        self.pending: list[PendingOperation] = []

    @property
    def view(self) -> list[T]:
        """Confirmed snapshot with pending operations replayed in order."""
        items = list(self.items)
        for op in self.pending:
            items = merge(items, op.event, self._transform, self.key)
        return items

    def _on_change(self, event: ChangeEvent) -> None:
        self.items = merge(self.items, event, self._transform, self.key)

    def begin(self, event: ChangeEvent) -> PendingOperation:
        op = PendingOperation(event)
        self.pending.append(op)
        return op

    def confirm(self, op_id: str, confirmed: Row | None = None) -> None:
        """Fold a pending operation into the snapshot.

        ``confirmed`` is the row the server returned; it replaces the
        optimistic guess when given.
        """
        op = self._pop(op_id)
        if op is None:
            return
        event = op.event
        if confirmed is not None:
            if isinstance(event, Deleted):
                event = Deleted(identity_of(confirmed, self.key), confirmed)
            elif isinstance(event, Inserted):
                event = Inserted(confirmed)
            else:
                event = Updated(confirmed)
        self.items = merge(self.items, event, self._transform, self.key)

    def rollback(self, op_id: str) -> None:
        if self._pop(op_id) is not None:
            logger.debug("Rolled back optimistic operation %s", op_id)

    async def run(self, event: ChangeEvent, request: Awaitable[Row | None]) -> Row | None:
        """Apply ``event`` optimistically while ``request`` is in flight."""
        op = self.begin(event)
        try:
            confirmed = await request
        except Exception:
            self.rollback(op.op_id)
            raise
        self.confirm(op.op_id, confirmed)
        return confirmed

    def _pop(self, op_id: str) -> PendingOperation | None:
        for index, op in enumerate(self.pending):
            if op.op_id == op_id:
                return self.pending.pop(index)
        return None

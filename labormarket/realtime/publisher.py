"""Turn committed ORM writes into change feed messages.

An ``after_flush`` listener records inserted, updated and deleted rows of the
tracked tables in ``session.info``. After a successful commit the service
layer takes the recording and publishes it, in flush order. A rollback discards the
recording, so subscribers never see a change that did not commit.
"""

import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from labormarket.realtime.events import ChangeMessage, previous_snapshot, row_snapshot
from labormarket.realtime.feed import ChangeFeed, get_change_feed

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_changes"
TRACKED_TABLES = frozenset({"jobs", "job_applications", "job_assignments"})


def _table_of(obj: object) -> str | None:
    table = getattr(obj, "__tablename__", None)
    return table if table in TRACKED_TABLES else None


@event.listens_for(Session, "after_flush")
def _record_changes(session: Session, flush_context) -> None:  # type: ignore[no-untyped-def]
    pending: list[ChangeMessage] = session.info.setdefault(PENDING_KEY, [])
    for obj in session.new:
        table = _table_of(obj)
        if table:
            pending.append(ChangeMessage(table=table, event_type="INSERT", new=row_snapshot(obj)))
    for obj in session.dirty:
        table = _table_of(obj)
        if table and session.is_modified(obj, include_collections=False):
            pending.append(ChangeMessage(
                table=table,
                event_type="UPDATE",
                new=row_snapshot(obj),
                old=previous_snapshot(obj),
            ))
    for obj in session.deleted:
        table = _table_of(obj)
        if table:
            pending.append(ChangeMessage(table=table, event_type="DELETE", old=row_snapshot(obj)))


@event.listens_for(Session, "after_soft_rollback")
def _discard_changes(session: Session, previous_transaction) -> None:  # type: ignore[no-untyped-def]
    session.info.pop(PENDING_KEY, None)


def take_pending(db: AsyncSession) -> list[ChangeMessage]:
    return db.sync_session.info.pop(PENDING_KEY, [])


async def publish_changes(messages: list[ChangeMessage], feed: ChangeFeed | None = None) -> None:
    """Publish already-committed changes. Failures are logged, never raised."""
    feed = feed or get_change_feed()
    for message in messages:
        try:
            await feed.publish(message)
        except Exception:
            logger.exception(
                "Failed to publish %s on %s", message.event_type, message.table
            )


"""Transaction helpers shared by the lifecycle services.

A transition either commits every one of its writes or none of them:
services mutate freely, then call ``commit_transition`` once. A failure after
any write rolls the session back.
"""

import functools
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.errors import LifecycleError, StoreError
from labormarket.realtime.publisher import PENDING_KEY, publish_changes, take_pending

logger = logging.getLogger(__name__)


def is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate key" in message


async def commit_transition(
    db: AsyncSession, on_conflict: LifecycleError | None = None
) -> None:
    """Commit, then publish the committed changes to the change feed.

    A unique-index violation becomes ``on_conflict`` when given; every other
    store failure becomes ``StoreError``.
    """
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if on_conflict is not None and is_unique_violation(e):
            raise on_conflict from e
        logger.error("Integrity violation on commit: %s", e.orig)
        raise StoreError() from e
    await publish_changes(take_pending(db))


def _has_writes(db: AsyncSession) -> bool:
    return bool(db.new or db.dirty or db.deleted or db.sync_session.info.get(PENDING_KEY))


async def _end_rejected(db: AsyncSession) -> None:
    """Close the transaction of a rejected transition.

    Writes are rolled back. A transition rejected before writing anything
    commits its reads instead, so objects already handed out stay loaded.
    """
    if _has_writes(db):
        await db.rollback()
    else:
        await db.commit()


def transactional(fn):  # type: ignore[no-untyped-def]
    """Roll back on any failure and surface store errors as ``StoreError``."""

    @functools.wraps(fn)
    async def wrapper(db: AsyncSession, *args, **kwargs):  # type: ignore[no-untyped-def]
        try:
            return await fn(db, *args, **kwargs)
        except LifecycleError:
            await _end_rejected(db)
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            logger.exception("Store operation %s failed", fn.__name__)
            raise StoreError() from e

    return wrapper

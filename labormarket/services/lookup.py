"""Counterpart lookups with an explicit outcome.

A lookup either found the record, found nothing, or failed. Callers match on
the outcome instead of poking at maybe-null join results.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.models.profile import Profile

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    record: T


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class LookupFailed:
    reason: str


LookupResult = Found[Profile] | NotFound | LookupFailed


async def lookup_profile(db: AsyncSession, profile_id: uuid.UUID | None) -> LookupResult:
    if profile_id is None:
        return NotFound()
    try:
        result = await db.execute(select(Profile).where(Profile.id == profile_id))
        profile = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.warning("Profile lookup for %s failed: %s", profile_id, e)
        return LookupFailed(str(e))
    if profile is None:
        return NotFound()
    return Found(profile)


def display_name(result: LookupResult, placeholder: str) -> str:
    if isinstance(result, Found) and result.record.full_name:
        return result.record.full_name
    return placeholder


class ProfileNames:
    """Memoizes name lookups for the span of one aggregation."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._cache: dict[uuid.UUID, LookupResult] = {}

    async def name(self, profile_id: uuid.UUID | None, placeholder: str) -> str:
        if profile_id is None:
            return placeholder
        if profile_id not in self._cache:
            self._cache[profile_id] = await lookup_profile(self.db, profile_id)
        return display_name(self._cache[profile_id], placeholder)

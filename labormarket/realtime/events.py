"""Change records: the wire message and the decoded event variants.

A ``ChangeMessage`` is what travels over the feed transport. It is decoded
exactly once, at the adapter boundary, into one of three event types so
that nothing downstream inspects loosely-typed payloads.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field
from sqlalchemy import inspect as sa_inspect

Row = dict[str, Any]


class EventFilter(enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ANY = "*"

    def matches(self, event_type: str) -> bool:
        return self is EventFilter.ANY or self.value == event_type


@dataclass(frozen=True)
class RowFilter:
    """Restrict a subscription to rows where ``column == value``."""

    column: str
    value: Any

    def matches(self, row: Row | None) -> bool:
        if row is None or self.column not in row:
            return False
        return str(row[self.column]) == str(self.value)

    def __str__(self) -> str:
        return f"{self.column}-{self.value}"


@dataclass(frozen=True)
class Inserted:
    row: Row


@dataclass(frozen=True)
class Updated:
    row: Row
    old: Row | None = None


@dataclass(frozen=True)
class Deleted:
    id: Any
    old: Row | None = None


ChangeEvent = Inserted | Updated | Deleted


class ChangeMessage(BaseModel):
    table: str
    event_type: Literal["INSERT", "UPDATE", "DELETE"]
    new: Row | None = None
    old: Row | None = None
    committed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_event(self, key: str = "id") -> ChangeEvent:
        if self.event_type == "INSERT":
            if self.new is None:
                raise ValueError(f"INSERT on {self.table} carries no row")
            return Inserted(self.new)
        if self.event_type == "UPDATE":
            if self.new is None:
                raise ValueError(f"UPDATE on {self.table} carries no row")
            return Updated(self.new, self.old)
        if self.old is None or key not in self.old:
            raise ValueError(f"DELETE on {self.table} carries no {key}")
        return Deleted(self.old[key], self.old)

    def matches(self, event_filter: EventFilter, row_filter: RowFilter | None) -> bool:
        if not event_filter.matches(self.event_type):
            return False
        if row_filter is None:
            return True
        if self.event_type == "DELETE":
            return row_filter.matches(self.old)
        return row_filter.matches(self.new) or row_filter.matches(self.old)


def json_safe(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return [json_safe(v) for v in value]
    if isinstance(value, dict):
        return {k: json_safe(v) for k, v in value.items()}
    return value


def row_snapshot(obj: Any) -> Row:
    """Column values of an ORM instance as a JSON-safe dict."""
    mapper = sa_inspect(obj).mapper
    return {
        attr.key: json_safe(getattr(obj, attr.key))
        for attr in mapper.column_attrs
    }


def previous_snapshot(obj: Any) -> Row:
    """Column values as they were before the pending flush."""
    state = sa_inspect(obj)
    row: Row = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            row[attr.key] = json_safe(history.deleted[0])
        else:
            row[attr.key] = json_safe(getattr(obj, attr.key))
    return row

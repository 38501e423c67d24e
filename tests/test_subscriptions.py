"""Tests for the entity subscription hook: reducers, binding, release."""

import pytest

from labormarket.realtime.events import ChangeMessage, Deleted, Inserted, Updated
from labormarket.realtime.feed import LocalChangeFeed
from labormarket.realtime.subscriptions import (
    CollectionSubscription,
    RecordSubscription,
    apply_to_collection,
    apply_to_record,
)

A = {"id": "a", "title": "Paint fence"}
B = {"id": "b", "title": "Fix sink"}
B2 = {"id": "b", "title": "Fix sink and tap"}


def test_update_replaces_matching_element_in_place() -> None:
    assert apply_to_collection([A, B], Updated(B2)) == [A, B2]


def test_insert_appends() -> None:
    assert apply_to_collection([A], Inserted(B)) == [A, B]


def test_delete_removes_by_id() -> None:
    assert apply_to_collection([A, B], Deleted("a")) == [B]


def test_delete_of_unknown_id_is_noop() -> None:
    assert apply_to_collection([A, B], Deleted("zzz")) == [A, B]


def test_update_of_unknown_id_is_dropped() -> None:
    assert apply_to_collection([A], Updated(B2)) == [A]


def test_reducer_does_not_mutate_input() -> None:
    items = [A, B]
    apply_to_collection(items, Deleted("a"))
    assert items == [A, B]


def test_transform_applies_to_incoming_rows() -> None:
    result = apply_to_collection([A], Inserted(B), transform=lambda r: {**r, "seen": True})
    assert result == [A, {**B, "seen": True}]


def test_record_reducer() -> None:
    assert apply_to_record(None, Inserted(A)) == A
    assert apply_to_record(B, Updated(B2)) == B2
    assert apply_to_record(B, Deleted("b")) is None


@pytest.mark.asyncio
async def test_collection_follows_feed() -> None:
    feed = LocalChangeFeed()
    jobs = CollectionSubscription(feed, [A, B])
    await jobs.bind("jobs")

    await feed.publish(ChangeMessage(table="jobs", event_type="UPDATE", new=B2))
    assert jobs.items == [A, B2]

    await feed.publish(ChangeMessage(table="jobs", event_type="DELETE", old={"id": "zzz"}))
    assert jobs.items == [A, B2]

    await feed.publish(ChangeMessage(table="jobs", event_type="DELETE", old=A))
    assert jobs.items == [B2]


@pytest.mark.asyncio
async def test_reset_replaces_local_state() -> None:
    feed = LocalChangeFeed()
    jobs = CollectionSubscription(feed, [A])
    await jobs.bind("jobs")
    await feed.publish(ChangeMessage(table="jobs", event_type="INSERT", new=B))

    jobs.reset([B2])
    assert jobs.items == [B2]


@pytest.mark.asyncio
async def test_rebind_with_same_identity_keeps_subscription() -> None:
    feed = LocalChangeFeed()
    jobs = CollectionSubscription(feed)

    def transform(row: dict) -> dict:
        return row

    await jobs.bind("jobs", "*", transform)
    first = jobs._subscription
    await jobs.bind("jobs", "*", transform)

    assert jobs._subscription is first
    assert feed.subscription_count == 1


@pytest.mark.asyncio
async def test_rebind_with_new_transform_resubscribes() -> None:
    """A fresh transform each call means a fresh subscription each call."""
    feed = LocalChangeFeed()
    jobs = CollectionSubscription(feed)

    await jobs.bind("jobs", "*", lambda r: r)
    first = jobs._subscription
    await jobs.bind("jobs", "*", lambda r: r)

    assert jobs._subscription is not first
    assert first.closed
    assert feed.subscription_count == 1


@pytest.mark.asyncio
async def test_rebind_to_other_table_releases_old_channel() -> None:
    feed = LocalChangeFeed()
    sub = CollectionSubscription(feed)
    await sub.bind("jobs")
    await sub.bind("job_assignments")

    await feed.publish(ChangeMessage(table="jobs", event_type="INSERT", new=A))
    assert sub.items == []
    assert feed.subscription_count == 1


@pytest.mark.asyncio
async def test_close_releases_channel() -> None:
    feed = LocalChangeFeed()
    jobs = CollectionSubscription(feed)
    await jobs.bind("jobs")
    assert jobs.subscribed

    await jobs.close()
    await jobs.close()

    assert not jobs.subscribed
    assert feed.subscription_count == 0


@pytest.mark.asyncio
async def test_transform_error_surfaces_and_state_is_untouched() -> None:
    feed = LocalChangeFeed()
    jobs = CollectionSubscription(feed, [A])

    def broken(row: dict) -> dict:
        raise KeyError("budget")

    await jobs.bind("jobs", "*", broken)
    with pytest.raises(KeyError):
        await feed.publish(ChangeMessage(table="jobs", event_type="INSERT", new=B))
    assert jobs.items == [A]


@pytest.mark.asyncio
async def test_record_subscription_filters_by_column() -> None:
    feed = LocalChangeFeed()
    assignment = RecordSubscription(feed, {"id": "x", "job_id": "j1", "status": "in_progress"})
    await assignment.bind("job_assignments", "job_id", "j1")

    await feed.publish(ChangeMessage(
        table="job_assignments", event_type="UPDATE",
        new={"id": "y", "job_id": "j2", "status": "completed"},
    ))
    assert assignment.record["status"] == "in_progress"

    await feed.publish(ChangeMessage(
        table="job_assignments", event_type="UPDATE",
        new={"id": "x", "job_id": "j1", "status": "completed"},
    ))
    assert assignment.record["status"] == "completed"

    await feed.publish(ChangeMessage(
        table="job_assignments", event_type="DELETE",
        old={"id": "x", "job_id": "j1"},
    ))
    assert assignment.record is None


@pytest.mark.asyncio
async def test_record_rebind_on_value_change() -> None:
    feed = LocalChangeFeed()
    record = RecordSubscription(feed)
    await record.bind("jobs", "id", "a")
    first = record._subscription
    await record.bind("jobs", "id", "a")
    assert record._subscription is first

    await record.bind("jobs", "id", "b")
    assert first.closed
    assert feed.subscription_count == 1

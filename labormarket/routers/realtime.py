"""WebSocket bridge onto the change feed.

``/realtime/{table}?token=...&event=UPDATE&column=job_id&value=...`` streams
one JSON frame per matching committed change until the client disconnects.

Jobs are public. Applications and assignments are only streamed to their
parties, so those subscriptions must carry a row filter that pins them to
rows the principal may read.
"""

import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext, resolve_principal
from labormarket.database import get_db
from labormarket.models.application import JobApplication
from labormarket.models.assignment import JobAssignment
from labormarket.models.job import Job
from labormarket.realtime.events import ChangeEvent, Deleted, EventFilter, Inserted, RowFilter
from labormarket.realtime.feed import get_change_feed
from labormarket.realtime.publisher import TRACKED_TABLES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# Columns that name the principal directly on a party-scoped table.
PARTY_COLUMNS = {
    "job_applications": ("laborer_id",),
    "job_assignments": ("client_id", "laborer_id"),
}


def event_frame(table: str, event: ChangeEvent) -> dict:
    if isinstance(event, Inserted):
        return {"table": table, "event_type": "INSERT", "new": event.row, "old": None}
    if isinstance(event, Deleted):
        return {"table": table, "event_type": "DELETE", "new": None, "old": event.old or {"id": event.id}}
    return {"table": table, "event_type": "UPDATE", "new": event.row, "old": event.old}


async def _job_visible(db: AsyncSession, auth: AuthContext, table: str, job_id: uuid.UUID) -> bool:
    job = await db.get(Job, job_id)
    if job is None:
        return False
    if job.client_id == auth.principal_id:
        return True
    if table == "job_assignments":
        laborer_assignment = await db.scalar(
            select(JobAssignment.id).where(
                JobAssignment.job_id == job_id,
                JobAssignment.laborer_id == auth.principal_id,
            )
        )
        return laborer_assignment is not None
    return False


async def _row_visible(db: AsyncSession, auth: AuthContext, table: str, row_id: uuid.UUID) -> bool:
    if table == "job_assignments":
        assignment = await db.get(JobAssignment, row_id)
        return assignment is not None and auth.principal_id in (
            assignment.client_id, assignment.laborer_id
        )
    application = await db.get(JobApplication, row_id)
    if application is None:
        return False
    if application.laborer_id == auth.principal_id:
        return True
    job = await db.get(Job, application.job_id)
    return job is not None and job.client_id == auth.principal_id


async def stream_refusal(
    db: AsyncSession, auth: AuthContext, table: str, row_filter: RowFilter | None
) -> str | None:
    """Why ``auth`` may not stream ``table`` under ``row_filter``, or None if it may."""
    if table not in TRACKED_TABLES:
        return f"Unknown table {table}"
    if table not in PARTY_COLUMNS:
        return None
    if row_filter is None:
        return f"Streaming {table} requires a column filter"

    if row_filter.column in PARTY_COLUMNS[table]:
        if str(row_filter.value) == str(auth.principal_id):
            return None
        return "Not a party to these rows"

    if row_filter.column not in ("id", "job_id"):
        return f"Cannot filter {table} on {row_filter.column}"
    try:
        target = uuid.UUID(str(row_filter.value))
    except ValueError:
        return f"Invalid {row_filter.column}"
    if row_filter.column == "job_id":
        visible = await _job_visible(db, auth, table, target)
    else:
        visible = await _row_visible(db, auth, table, target)
    return None if visible else "Not a party to these rows"


async def _drain_until_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/realtime/{table}")
async def stream_changes(
    websocket: WebSocket,
    table: str,
    token: str = "",
    event: str = "*",
    column: str | None = None,
    value: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        event_filter = EventFilter(event.upper())
    except ValueError:
        await websocket.close(code=1008, reason=f"Unknown event {event}")
        return
    row_filter = RowFilter(column, value) if column and value is not None else None

    auth = await resolve_principal(db, token) if token else None
    if auth is None:
        await websocket.close(code=1008, reason="Invalid or expired session")
        return
    refusal = await stream_refusal(db, auth, table, row_filter)
    # The stream outlives these checks; don't hold a connection for it.
    await db.close()
    if refusal is not None:
        await websocket.close(code=1008, reason=refusal)
        return

    await websocket.accept()
    queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
    subscription = await get_change_feed().subscribe(table, event_filter, queue.put_nowait, row_filter)
    listener = asyncio.create_task(_drain_until_disconnect(websocket))
    logger.info("Principal %s streaming %s (%s)", auth.principal_id, table, subscription.channel)
    getter: asyncio.Task | None = None
    try:
        while not listener.done():
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, listener}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                break
            await websocket.send_json(event_frame(table, getter.result()))
    except WebSocketDisconnect:
        pass
    finally:
        if getter is not None:
            getter.cancel()
        listener.cancel()
        try:
            await listener
        except asyncio.CancelledError:
            pass
        await subscription.unsubscribe()

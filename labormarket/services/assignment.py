"""Assignment execution: completion and post-completion ratings."""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext
from labormarket.errors import AuthorizationError, ConflictError, NotFoundError
from labormarket.models.assignment import (
    AssignmentStatus,
    JobAssignment,
    VALID_ASSIGNMENT_TRANSITIONS,
)
from labormarket.models.job import JobStatus
from labormarket.schemas.assignment import RatingCreate
from labormarket.services.job import _assert_transition, _get_job
from labormarket.services.transaction import commit_transition, transactional

logger = logging.getLogger(__name__)


async def _get_assignment(
    db: AsyncSession, assignment_id: uuid.UUID, for_update: bool = False
) -> JobAssignment:
    query = select(JobAssignment).where(JobAssignment.id == assignment_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFoundError("Assignment not found")
    return assignment


def _assert_party(
    assignment: JobAssignment, auth: AuthContext, allowed: str = "both"
) -> None:
    """Ensure the principal is a party to the assignment. allowed: 'client', 'laborer', 'both'."""
    is_client = assignment.client_id == auth.principal_id
    is_laborer = assignment.laborer_id == auth.principal_id
    if allowed == "client" and not is_client:
        raise AuthorizationError("Only the client can perform this action")
    if allowed == "laborer" and not is_laborer:
        raise AuthorizationError("Only the assigned laborer can perform this action")
    if allowed == "both" and not (is_client or is_laborer):
        raise AuthorizationError("Not a party to this assignment")


def _assert_assignment_transition(current: AssignmentStatus, target: AssignmentStatus) -> None:
    if target not in VALID_ASSIGNMENT_TRANSITIONS.get(current, set()):
        raise ConflictError(f"Cannot transition assignment from {current.value} to {target.value}")


@transactional
async def complete_assignment(
    db: AsyncSession, auth: AuthContext, assignment_id: uuid.UUID
) -> JobAssignment:
    """Laborer marks the work done. The job completes with it."""
    assignment = await _get_assignment(db, assignment_id, for_update=True)
    _assert_party(assignment, auth, allowed="laborer")
    _assert_assignment_transition(assignment.status, AssignmentStatus.COMPLETED)

    job = await _get_job(db, assignment.job_id, for_update=True)
    _assert_transition(job.status, JobStatus.COMPLETED)

    assignment.status = AssignmentStatus.COMPLETED
    assignment.end_date = datetime.now(UTC)
    job.status = JobStatus.COMPLETED

    await commit_transition(db)
    await db.refresh(assignment)
    logger.info("Assignment %s completed, job %s completed", assignment_id, job.id)
    return assignment


@transactional
async def rate_assignment(
    db: AsyncSession, auth: AuthContext, assignment_id: uuid.UUID, data: RatingCreate
) -> JobAssignment:
    """Each party rates the other once, after completion."""
    assignment = await _get_assignment(db, assignment_id, for_update=True)
    _assert_party(assignment, auth)

    if assignment.status != AssignmentStatus.COMPLETED:
        raise ConflictError("Can only rate completed jobs")

    if auth.principal_id == assignment.client_id:
        if assignment.client_rating is not None:
            raise ConflictError("You have already rated this job")
        assignment.client_rating = data.rating
        assignment.client_review = data.review
    else:
        if assignment.laborer_rating is not None:
            raise ConflictError("You have already rated this job")
        assignment.laborer_rating = data.rating
        assignment.laborer_review = data.review

    await commit_transition(db)
    await db.refresh(assignment)
    return assignment


@transactional
async def get_assignment(
    db: AsyncSession, auth: AuthContext, assignment_id: uuid.UUID
) -> JobAssignment:
    assignment = await _get_assignment(db, assignment_id)
    _assert_party(assignment, auth)
    return assignment


@transactional
async def get_assignment_for_job(db: AsyncSession, job_id: uuid.UUID) -> JobAssignment | None:
    """The job's live (non-cancelled) assignment, if any."""
    result = await db.execute(
        select(JobAssignment).where(
            JobAssignment.job_id == job_id,
            JobAssignment.status != AssignmentStatus.CANCELLED,
        )
    )
    return result.scalars().first()

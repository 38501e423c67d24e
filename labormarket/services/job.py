"""Job posting, lookup and cancellation."""

import logging
import uuid

from sqlalchemy import ColumnElement, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext
from labormarket.errors import AuthorizationError, ConflictError, NotFoundError
from labormarket.models.application import ApplicationStatus, JobApplication
from labormarket.models.assignment import AssignmentStatus, JobAssignment
from labormarket.models.job import Job, JobStatus, VALID_TRANSITIONS
from labormarket.schemas.job import JobCreate
from labormarket.services.transaction import commit_transition, transactional

logger = logging.getLogger(__name__)


def _assert_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise ConflictError if the job can't move from current to target."""
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise ConflictError(f"Cannot transition job from {current.value} to {target.value}")


def _assert_owner(job: Job, auth: AuthContext) -> None:
    if job.client_id != auth.principal_id:
        raise AuthorizationError("Only the client who posted this job can perform this action")


async def _get_job(db: AsyncSession, job_id: uuid.UUID, for_update: bool = False) -> Job:
    query = select(Job).where(Job.id == job_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("Job not found")
    return job


@transactional
async def post_job(db: AsyncSession, auth: AuthContext, data: JobCreate) -> Job:
    """Client posts a new job. It starts out open."""
    if not auth.is_client:
        raise AuthorizationError("Only clients can post jobs")

    job = Job(
        id=uuid.uuid4(),
        client_id=auth.principal_id,
        title=data.title,
        description=data.description,
        budget=data.budget,
        location=data.location,
        required_skills=data.required_skills or [],
        status=JobStatus.OPEN,
    )
    db.add(job)
    await commit_transition(db)
    await db.refresh(job)
    logger.info("Job %s posted by %s", job.id, auth.principal_id)
    return job


@transactional
async def cancel_job(db: AsyncSession, auth: AuthContext, job_id: uuid.UUID) -> Job:
    """Owner closes a job that hasn't completed.

    Pending applications are declined and a running assignment is cancelled
    in the same transaction.
    """
    job = await _get_job(db, job_id, for_update=True)
    _assert_owner(job, auth)
    _assert_transition(job.status, JobStatus.CANCELLED)

    result = await db.execute(
        select(JobApplication).where(
            JobApplication.job_id == job_id,
            JobApplication.status == ApplicationStatus.PENDING,
        )
    )
    pending = list(result.scalars().all())

    result = await db.execute(
        select(JobAssignment).where(
            JobAssignment.job_id == job_id,
            JobAssignment.status == AssignmentStatus.IN_PROGRESS,
        )
    )
    running = list(result.scalars().all())

    for application in pending:
        application.status = ApplicationStatus.DECLINED
    for assignment in running:
        assignment.status = AssignmentStatus.CANCELLED
    job.status = JobStatus.CANCELLED

    await commit_transition(db)
    await db.refresh(job)
    logger.info(
        "Job %s cancelled: %d applications declined, %d assignments cancelled",
        job_id, len(pending), len(running),
    )
    return job


@transactional
async def get_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """Get job by ID (public)."""
    return await _get_job(db, job_id)


def _has_skill(dialect: str, skill: str) -> ColumnElement[bool]:
    """Case-insensitive membership of ``skill`` in the job's skill array."""
    if dialect == "postgresql":
        elements = func.jsonb_array_elements_text(Job.required_skills).table_valued("value")
    else:
        elements = func.json_each(Job.required_skills).table_valued("value")
    return exists().where(func.lower(elements.c.value) == skill)


@transactional
async def list_open_jobs(
    db: AsyncSession, skill: str | None = None, limit: int = 20, offset: int = 0
) -> list[Job]:
    """Open jobs, newest first, optionally narrowed to one required skill."""
    query = select(Job).where(Job.status == JobStatus.OPEN)
    if skill:
        query = query.where(_has_skill(db.get_bind().dialect.name, skill.strip().lower()))
    query = query.order_by(Job.created_at.desc(), Job.id).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


@transactional
async def list_jobs_for_client(
    db: AsyncSession, client_id: uuid.UUID, statuses: list[JobStatus] | None = None
) -> list[Job]:
    query = select(Job).where(Job.client_id == client_id)
    if statuses:
        query = query.where(Job.status.in_(statuses))
    result = await db.execute(query.order_by(Job.created_at.asc()))
    return list(result.scalars().all())

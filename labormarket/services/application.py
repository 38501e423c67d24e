"""Job applications: submit, accept, decline.

Acceptance is the pivot of the workflow. In one transaction it accepts the
application, creates the in-progress assignment, moves the job to assigned
and declines every other pending application for the job.
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext
from labormarket.errors import (
    AuthorizationError,
    ConflictError,
    DuplicateApplicationError,
    NotFoundError,
)
from labormarket.models.application import ApplicationStatus, JobApplication
from labormarket.models.assignment import AssignmentStatus, JobAssignment, PaymentStatus
from labormarket.models.job import JobStatus
from labormarket.schemas.application import ApplicationCreate
from labormarket.services.job import _assert_owner, _assert_transition, _get_job
from labormarket.services.transaction import commit_transition, transactional

logger = logging.getLogger(__name__)


async def _get_application(db: AsyncSession, application_id: uuid.UUID) -> JobApplication:
    result = await db.execute(
        select(JobApplication).where(JobApplication.id == application_id)
    )
    application = result.scalar_one_or_none()
    if application is None:
        raise NotFoundError("Application not found")
    return application


async def _find_pending_application(
    db: AsyncSession, job_id: uuid.UUID, laborer_id: uuid.UUID
) -> JobApplication | None:
    result = await db.execute(
        select(JobApplication).where(
            JobApplication.job_id == job_id,
            JobApplication.laborer_id == laborer_id,
            JobApplication.status == ApplicationStatus.PENDING,
        )
    )
    return result.scalar_one_or_none()


async def _find_active_assignment(db: AsyncSession, job_id: uuid.UUID) -> JobAssignment | None:
    result = await db.execute(
        select(JobAssignment).where(
            JobAssignment.job_id == job_id,
            JobAssignment.status != AssignmentStatus.CANCELLED,
        )
    )
    return result.scalars().first()


def _assert_applicant_or_owner(application: JobApplication, client_id: uuid.UUID, auth: AuthContext) -> None:
    if auth.principal_id not in (application.laborer_id, client_id):
        raise AuthorizationError("Not a party to this application")


@transactional
async def submit_application(
    db: AsyncSession, auth: AuthContext, job_id: uuid.UUID, data: ApplicationCreate
) -> JobApplication:
    """Laborer applies to an open job.

    The pre-check gives a friendly error in the common case; the partial
    unique index settles concurrent submissions.
    """
    if not auth.is_laborer:
        raise AuthorizationError("Only laborers can apply for jobs")

    # Locked so a concurrent acceptance can't close the job between this
    # check and the insert.
    job = await _get_job(db, job_id, for_update=True)
    if job.client_id == auth.principal_id:
        raise AuthorizationError("Cannot apply to your own job")
    if job.status != JobStatus.OPEN:
        raise ConflictError(f"Job is not open for applications, currently {job.status.value}")

    if await _find_pending_application(db, job_id, auth.principal_id) is not None:
        raise DuplicateApplicationError()

    rate = data.proposed_rate if data.proposed_rate is not None else job.budget
    application = JobApplication(
        id=uuid.uuid4(),
        job_id=job_id,
        laborer_id=auth.principal_id,
        proposed_rate=rate,
        note=data.note,
        status=ApplicationStatus.PENDING,
    )
    db.add(application)
    await commit_transition(db, on_conflict=DuplicateApplicationError())
    await db.refresh(application)
    logger.info("Laborer %s applied to job %s at %s", auth.principal_id, job_id, rate)
    return application


@transactional
async def accept_application(
    db: AsyncSession, auth: AuthContext, application_id: uuid.UUID
) -> JobAssignment:
    """Accept a pending application and open the assignment for it."""
    application = await _get_application(db, application_id)
    job = await _get_job(db, application.job_id, for_update=True)
    _assert_applicant_or_owner(application, job.client_id, auth)

    if application.status != ApplicationStatus.PENDING:
        raise ConflictError(f"Application is already {application.status.value}")
    if await _find_active_assignment(db, job.id) is not None:
        raise ConflictError("Job already has an active assignment")
    _assert_transition(job.status, JobStatus.ASSIGNED)

    # Read everything before writing so autoflush can't fire mid-transition.
    result = await db.execute(
        select(JobApplication).where(
            JobApplication.job_id == job.id,
            JobApplication.status == ApplicationStatus.PENDING,
            JobApplication.id != application.id,
        )
    )
    competing = list(result.scalars().all())

    application.status = ApplicationStatus.ACCEPTED
    for other in competing:
        other.status = ApplicationStatus.DECLINED
    job.status = JobStatus.ASSIGNED
    assignment = JobAssignment(
        id=uuid.uuid4(),
        job_id=job.id,
        laborer_id=application.laborer_id,
        client_id=job.client_id,
        application_id=application.id,
        start_date=datetime.now(UTC),
        final_amount=application.proposed_rate,
        status=AssignmentStatus.IN_PROGRESS,
        payment_status=PaymentStatus.PENDING,
    )
    db.add(assignment)

    await commit_transition(db, on_conflict=ConflictError("Job already has an active assignment"))
    await db.refresh(assignment)
    logger.info(
        "Application %s accepted by %s: assignment %s, %d competing declined",
        application_id, auth.principal_id, assignment.id, len(competing),
    )
    return assignment


@transactional
async def decline_application(
    db: AsyncSession, auth: AuthContext, application_id: uuid.UUID
) -> JobApplication:
    """Either the job owner or the applicant declines a pending application."""
    application = await _get_application(db, application_id)
    job = await _get_job(db, application.job_id)
    _assert_applicant_or_owner(application, job.client_id, auth)

    if application.status != ApplicationStatus.PENDING:
        raise ConflictError(f"Application is already {application.status.value}")

    application.status = ApplicationStatus.DECLINED
    await commit_transition(db)
    await db.refresh(application)
    return application


@transactional
async def get_application(
    db: AsyncSession, auth: AuthContext, application_id: uuid.UUID
) -> JobApplication:
    application = await _get_application(db, application_id)
    job = await _get_job(db, application.job_id)
    _assert_applicant_or_owner(application, job.client_id, auth)
    return application


@transactional
async def list_applications_for_job(
    db: AsyncSession,
    auth: AuthContext,
    job_id: uuid.UUID,
    status: ApplicationStatus | None = None,
) -> list[JobApplication]:
    """Applications on a job, oldest first. Owner only."""
    job = await _get_job(db, job_id)
    _assert_owner(job, auth)
    query = select(JobApplication).where(JobApplication.job_id == job_id)
    if status is not None:
        query = query.where(JobApplication.status == status)
    result = await db.execute(query.order_by(JobApplication.created_at.asc()))
    return list(result.scalars().all())

"""Per-role dashboard read models.

Aggregators never write. A failed counterpart lookup shows a placeholder
name; a failed primary query yields an empty dashboard carrying an error
message instead of raising, so the view can still render.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext
from labormarket.config import settings
from labormarket.errors import StoreError
from labormarket.models.application import ApplicationStatus, JobApplication
from labormarket.models.assignment import AssignmentStatus, JobAssignment
from labormarket.models.job import Job, JobStatus
from labormarket.schemas.dashboard import ClientDashboard, DashboardItem, LaborerDashboard
from labormarket.services.lookup import ProfileNames
from labormarket.utils.money import sum_amounts, to_amount

logger = logging.getLogger(__name__)

UNASSIGNED_LABEL = "Unassigned"
ONGOING_JOB_STATUSES = (JobStatus.OPEN, JobStatus.ASSIGNED)


async def client_dashboard(db: AsyncSession, auth: AuthContext) -> ClientDashboard:
    """Jobs the client posted, split into ongoing and completed."""
    try:
        result = await db.execute(
            select(Job)
            .where(
                Job.client_id == auth.principal_id,
                Job.status.in_([*ONGOING_JOB_STATUSES, JobStatus.COMPLETED]),
            )
            .order_by(Job.created_at.asc())
        )
        jobs = list(result.scalars().all())

        job_ids = [job.id for job in jobs]
        assignments: dict = {}
        if job_ids:
            result = await db.execute(
                select(JobAssignment).where(
                    JobAssignment.job_id.in_(job_ids),
                    JobAssignment.status != AssignmentStatus.CANCELLED,
                )
            )
            assignments = {a.job_id: a for a in result.scalars().all()}

        result = await db.execute(
            select(JobApplication, Job)
            .join(Job, Job.id == JobApplication.job_id)
            .where(
                Job.client_id == auth.principal_id,
                Job.status == JobStatus.OPEN,
                JobApplication.status == ApplicationStatus.PENDING,
            )
            .order_by(JobApplication.created_at.asc())
        )
        applications = list(result.all())
    except SQLAlchemyError:
        logger.exception("Client dashboard fetch failed for %s", auth.principal_id)
        return ClientDashboard(error=StoreError.default_message)

    names = ProfileNames(db)
    placeholder = settings.laborer_placeholder_name
    dashboard = ClientDashboard()

    for job in jobs:
        assignment = assignments.get(job.id)
        if assignment is not None:
            counterpart = await names.name(assignment.laborer_id, placeholder)
        else:
            counterpart = UNASSIGNED_LABEL
        item = DashboardItem(
            id=job.id,
            job_id=job.id,
            title=job.title,
            counterpart_name=counterpart,
            status=job.status.value,
            date=(assignment.end_date if job.status == JobStatus.COMPLETED and assignment else job.created_at),
            amount=to_amount(job.budget),
        )
        if job.status == JobStatus.COMPLETED:
            dashboard.completed.append(item)
        else:
            dashboard.ongoing.append(item)

    for application, job in applications:
        dashboard.pending_applications.append(DashboardItem(
            id=application.id,
            job_id=job.id,
            title=job.title,
            counterpart_name=await names.name(application.laborer_id, placeholder),
            status=application.status.value,
            date=application.created_at,
            amount=to_amount(application.proposed_rate),
        ))

    dashboard.total_spent = sum_amounts(item.amount for item in dashboard.completed)
    return dashboard


async def laborer_dashboard(db: AsyncSession, auth: AuthContext) -> LaborerDashboard:
    """The laborer's assignments plus their outstanding applications."""
    try:
        result = await db.execute(
            select(JobAssignment, Job)
            .join(Job, Job.id == JobAssignment.job_id)
            .where(
                JobAssignment.laborer_id == auth.principal_id,
                JobAssignment.status.in_([AssignmentStatus.IN_PROGRESS, AssignmentStatus.COMPLETED]),
            )
            .order_by(JobAssignment.start_date.asc())
        )
        assignments = list(result.all())

        result = await db.execute(
            select(JobApplication, Job)
            .join(Job, Job.id == JobApplication.job_id)
            .where(
                JobApplication.laborer_id == auth.principal_id,
                JobApplication.status == ApplicationStatus.PENDING,
            )
            .order_by(JobApplication.created_at.asc())
        )
        applications = list(result.all())
    except SQLAlchemyError:
        logger.exception("Laborer dashboard fetch failed for %s", auth.principal_id)
        return LaborerDashboard(error=StoreError.default_message)

    names = ProfileNames(db)
    placeholder = settings.client_placeholder_name
    dashboard = LaborerDashboard()

    for assignment, job in assignments:
        completed = assignment.status == AssignmentStatus.COMPLETED
        item = DashboardItem(
            id=assignment.id,
            job_id=job.id,
            title=job.title,
            counterpart_name=await names.name(assignment.client_id, placeholder),
            status=assignment.status.value,
            date=assignment.end_date if completed else assignment.start_date,
            amount=to_amount(assignment.final_amount),
        )
        if completed:
            dashboard.completed.append(item)
        else:
            dashboard.pending.append(item)

    for application, job in applications:
        dashboard.requests.append(DashboardItem(
            id=application.id,
            job_id=job.id,
            title=job.title,
            counterpart_name=await names.name(job.client_id, placeholder),
            status=application.status.value,
            date=application.created_at,
            amount=to_amount(application.proposed_rate),
        ))

    dashboard.total_earnings = sum_amounts(item.amount for item in dashboard.completed)
    return dashboard

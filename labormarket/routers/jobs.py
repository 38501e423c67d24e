"""Job posting and application endpoints."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext, require_auth
from labormarket.database import get_db
from labormarket.models.application import ApplicationStatus
from labormarket.schemas.application import ApplicationCreate, ApplicationResponse
from labormarket.schemas.assignment import AssignmentResponse
from labormarket.schemas.job import JobCreate, JobResponse
from labormarket.services import application as application_service
from labormarket.services import assignment as assignment_service
from labormarket.services import job as job_service

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=201)
async def post_job(
    data: JobCreate,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Client posts a job."""
    job = await job_service.post_job(db, auth, data)
    return JobResponse.model_validate(job)


@router.get("", response_model=list[JobResponse])
async def list_open_jobs(
    skill: str | None = Query(None, max_length=64),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    """Browse open jobs (public)."""
    jobs = await job_service.list_open_jobs(db, skill=skill, limit=limit, offset=offset)
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.get_job(db, job_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Owner cancels an open or assigned job."""
    job = await job_service.cancel_job(db, auth, job_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/applications", response_model=ApplicationResponse, status_code=201)
async def submit_application(
    job_id: uuid.UUID,
    data: ApplicationCreate | None = None,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    """Laborer applies to an open job."""
    application = await application_service.submit_application(
        db, auth, job_id, data or ApplicationCreate()
    )
    return ApplicationResponse.model_validate(application)


@router.get("/{job_id}/applications", response_model=list[ApplicationResponse])
async def list_applications(
    job_id: uuid.UUID,
    status: ApplicationStatus | None = None,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> list[ApplicationResponse]:
    """Applications on a job. Owner only."""
    applications = await application_service.list_applications_for_job(db, auth, job_id, status)
    return [ApplicationResponse.model_validate(a) for a in applications]


@router.get("/{job_id}/assignment", response_model=AssignmentResponse | None)
async def get_job_assignment(
    job_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> AssignmentResponse | None:
    """The job's live assignment, visible to its two parties."""
    assignment = await assignment_service.get_assignment_for_job(db, job_id)
    if assignment is None or auth.principal_id not in (assignment.client_id, assignment.laborer_id):
        return None
    return AssignmentResponse.model_validate(assignment)

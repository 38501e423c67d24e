"""Application decision endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext, require_auth
from labormarket.database import get_db
from labormarket.schemas.application import ApplicationResponse
from labormarket.schemas.assignment import AssignmentResponse
from labormarket.services import application as application_service

router = APIRouter(prefix="/applications", tags=["applications"])


@router.get("/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    application = await application_service.get_application(db, auth, application_id)
    return ApplicationResponse.model_validate(application)


@router.post("/{application_id}/accept", response_model=AssignmentResponse)
async def accept_application(
    application_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> AssignmentResponse:
    """Accept a pending application. Returns the new assignment."""
    assignment = await application_service.accept_application(db, auth, application_id)
    return AssignmentResponse.model_validate(assignment)


@router.post("/{application_id}/decline", response_model=ApplicationResponse)
async def decline_application(
    application_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    application = await application_service.decline_application(db, auth, application_id)
    return ApplicationResponse.model_validate(application)

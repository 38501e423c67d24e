"""Assignment execution, payment and rating endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext, require_auth
from labormarket.database import get_db
from labormarket.schemas.assignment import AssignmentResponse, RatingCreate
from labormarket.schemas.payment import PaymentDetails, PaymentResponse
from labormarket.services import assignment as assignment_service
from labormarket.services import payment as payment_service

router = APIRouter(prefix="/assignments", tags=["assignments"])


class PaymentAuditResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    amount: Decimal
    outcome: str
    processor_reference: str | None
    detail: str | None
    timestamp: datetime

    @field_validator("outcome", mode="before")
    @classmethod
    def serialize_outcome(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> AssignmentResponse:
    """Assignment details. Only its two parties can view it."""
    assignment = await assignment_service.get_assignment(db, auth, assignment_id)
    return AssignmentResponse.model_validate(assignment)


@router.post("/{assignment_id}/complete", response_model=AssignmentResponse)
async def complete_assignment(
    assignment_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> AssignmentResponse:
    """Laborer marks the work done."""
    assignment = await assignment_service.complete_assignment(db, auth, assignment_id)
    return AssignmentResponse.model_validate(assignment)


@router.post("/{assignment_id}/pay", response_model=PaymentResponse)
async def capture_payment(
    assignment_id: uuid.UUID,
    details: PaymentDetails,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    """Client pays for completed work."""
    assignment, result = await payment_service.capture_payment(db, auth, assignment_id, details)
    return PaymentResponse(
        assignment=AssignmentResponse.model_validate(assignment),
        reference=result.reference,
        message=result.message,
    )


@router.post("/{assignment_id}/rate", response_model=AssignmentResponse)
async def rate_assignment(
    assignment_id: uuid.UUID,
    data: RatingCreate,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> AssignmentResponse:
    assignment = await assignment_service.rate_assignment(db, auth, assignment_id, data)
    return AssignmentResponse.model_validate(assignment)


@router.get("/{assignment_id}/payments", response_model=list[PaymentAuditResponse])
async def payment_history(
    assignment_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentAuditResponse]:
    """Payment attempts for the assignment, oldest first."""
    entries = await payment_service.get_payment_history(db, auth, assignment_id)
    return [PaymentAuditResponse.model_validate(e) for e in entries]

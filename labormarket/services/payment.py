"""Payment capture for completed assignments, with an append-only audit log."""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from labormarket.auth.context import AuthContext
from labormarket.errors import AuthorizationError, ConflictError, PaymentError, ValidationError
from labormarket.models.assignment import AssignmentStatus, JobAssignment, PaymentStatus
from labormarket.models.payment import PaymentAuditLog, PaymentOutcome
from labormarket.schemas.payment import PaymentDetails
from labormarket.services.assignment import _get_assignment
from labormarket.services.payment_processor import (
    PaymentProcessor,
    PaymentResult,
    get_payment_processor,
)
from labormarket.services.transaction import commit_transition, transactional
from labormarket.utils.money import format_amount, to_amount

logger = logging.getLogger(__name__)


def _log_audit(
    db: AsyncSession,
    assignment: JobAssignment,
    actor_id: uuid.UUID,
    amount: Decimal,
    outcome: PaymentOutcome,
    reference: str | None = None,
    detail: str | None = None,
) -> None:
    """Append to the immutable audit log."""
    db.add(PaymentAuditLog(
        id=uuid.uuid4(),
        assignment_id=assignment.id,
        actor_id=actor_id,
        amount=amount,
        outcome=outcome,
        processor_reference=reference,
        detail=detail,
    ))


async def _attempt_key(db: AsyncSession, assignment: JobAssignment) -> str:
    """Idempotency key for the next capture attempt.

    A decline is final for its key, so each decline moves to a new one. After a
    failed attempt the outcome is unknown and the retry reuses the key, letting
    the processor settle it at most once.
    """
    declined = await db.scalar(
        select(func.count()).select_from(PaymentAuditLog).where(
            PaymentAuditLog.assignment_id == assignment.id,
            PaymentAuditLog.outcome == PaymentOutcome.DECLINED,
        )
    )
    return f"{assignment.id}:{(declined or 0) + 1}"


def _check_details(details: PaymentDetails) -> None:
    if details.missing_fields():
        raise ValidationError("Please fill in all payment details.")
    problems = details.format_problems()
    if problems:
        raise ValidationError("; ".join(problems))


@transactional
async def capture_payment(
    db: AsyncSession,
    auth: AuthContext,
    assignment_id: uuid.UUID,
    details: PaymentDetails,
    processor: PaymentProcessor | None = None,
) -> tuple[JobAssignment, PaymentResult]:
    """Client pays for finished work.

    Rejected when the payment already went through, so a retry can never
    charge twice. The assignment row stays locked for the duration of the
    processor call.
    """
    assignment = await _get_assignment(db, assignment_id, for_update=True)
    if auth.principal_id != assignment.client_id:
        raise AuthorizationError("Only the client who posted this job can make a payment.")
    if assignment.payment_status == PaymentStatus.COMPLETED:
        raise ConflictError("Payment has already been completed")
    if assignment.status != AssignmentStatus.COMPLETED:
        raise ConflictError(
            f"Payment can only be made for completed work, currently {assignment.status.value}"
        )
    _check_details(details)

    processor = processor or get_payment_processor()
    amount = to_amount(assignment.final_amount)
    key = await _attempt_key(db, assignment)

    try:
        result = await processor.capture(assignment.id, amount, details, idempotency_key=key)
    except PaymentError as e:
        _log_audit(db, assignment, auth.principal_id, amount, PaymentOutcome.FAILED, detail=e.message)
        await commit_transition(db)
        raise

    if not result.success:
        _log_audit(
            db, assignment, auth.principal_id, amount, PaymentOutcome.DECLINED,
            reference=result.reference, detail=result.message,
        )
        await commit_transition(db)
        raise ValidationError(f"Payment declined: {result.message or 'card was declined'}")

    assignment.payment_status = PaymentStatus.COMPLETED
    _log_audit(
        db, assignment, auth.principal_id, amount, PaymentOutcome.CAPTURED,
        reference=result.reference, detail=f"card ending {details.last4}",
    )
    await commit_transition(db)
    await db.refresh(assignment)
    logger.info(
        "Captured %s for assignment %s (ref %s)",
        format_amount(amount), assignment_id, result.reference,
    )
    return assignment, result


@transactional
async def get_payment_history(
    db: AsyncSession, auth: AuthContext, assignment_id: uuid.UUID
) -> list[PaymentAuditLog]:
    assignment = await _get_assignment(db, assignment_id)
    if auth.principal_id not in (assignment.client_id, assignment.laborer_id):
        raise AuthorizationError("Not a party to this assignment")
    result = await db.execute(
        select(PaymentAuditLog)
        .where(PaymentAuditLog.assignment_id == assignment_id)
        .order_by(PaymentAuditLog.timestamp.asc())
    )
    return list(result.scalars().all())

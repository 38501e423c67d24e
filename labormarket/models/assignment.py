"""JobAssignment model: the binding contract once an application is accepted."""

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, Numeric, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from labormarket.database import Base


class AssignmentStatus(enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


VALID_ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, set[AssignmentStatus]] = {
    AssignmentStatus.IN_PROGRESS: {AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED},
    AssignmentStatus.COMPLETED: set(),
    AssignmentStatus.CANCELLED: set(),
}


class JobAssignment(Base):
    __tablename__ = "job_assignments"
    __table_args__ = (
        CheckConstraint("final_amount >= 0", name="ck_job_assignments_amount_non_negative"),
        CheckConstraint(
            "client_rating IS NULL OR (client_rating >= 1 AND client_rating <= 5)",
            name="ck_job_assignments_client_rating",
        ),
        CheckConstraint(
            "laborer_rating IS NULL OR (laborer_rating >= 1 AND laborer_rating <= 5)",
            name="ck_job_assignments_laborer_rating",
        ),
        # Exactly one live assignment per job
        Index(
            "uq_job_assignments_active_job",
            "job_id",
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    laborer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    application_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("job_applications.id", ondelete="SET NULL"), nullable=True
    )
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(AssignmentStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=AssignmentStatus.IN_PROGRESS,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    # Ratings are named after the party who gave them.
    client_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    client_review: Mapped[str | None] = mapped_column(Text, nullable=True)
    laborer_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    laborer_review: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

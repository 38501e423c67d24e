"""Payment capture audit log."""

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from labormarket.database import Base


class PaymentOutcome(enum.Enum):
    CAPTURED = "captured"
    DECLINED = "declined"
    FAILED = "failed"


class PaymentAuditLog(Base):
    """Append-only audit log. Never update or delete rows."""
    __tablename__ = "payment_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("job_assignments.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    outcome: Mapped[PaymentOutcome] = mapped_column(
        Enum(PaymentOutcome, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    processor_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

"""Create payment_audit_log.

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "payment_audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "assignment_id", sa.Uuid(),
            sa.ForeignKey("job_assignments.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("actor_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "outcome",
            sa.Enum("captured", "declined", "failed", name="paymentoutcome"),
            nullable=False,
        ),
        sa.Column("processor_reference", sa.String(128), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payment_audit_log_assignment_id", "payment_audit_log", ["assignment_id"])


def downgrade() -> None:
    op.drop_table("payment_audit_log")
    op.execute("DROP TYPE IF EXISTS paymentoutcome")

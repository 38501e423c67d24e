"""Create job_applications with one pending application per laborer and job.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "job_applications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("laborer_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("proposed_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", "declined", name="applicationstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("proposed_rate >= 0", name="ck_job_applications_rate_non_negative"),
    )
    op.create_index("ix_job_applications_job_id", "job_applications", ["job_id"])
    op.create_index("ix_job_applications_laborer_id", "job_applications", ["laborer_id"])
    op.create_index(
        "uq_job_applications_pending",
        "job_applications",
        ["job_id", "laborer_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_job_applications_pending", table_name="job_applications")
    op.drop_table("job_applications")
    op.execute("DROP TYPE IF EXISTS applicationstatus")

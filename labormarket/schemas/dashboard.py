"""Read models returned by the dashboard aggregators."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class DashboardItem(BaseModel):
    """One row on a dashboard: a job, assignment or application."""
    id: uuid.UUID
    job_id: uuid.UUID
    title: str
    counterpart_name: str
    status: str
    date: datetime | None = None
    amount: Decimal


class ClientDashboard(BaseModel):
    ongoing: list[DashboardItem] = Field(default_factory=list)
    completed: list[DashboardItem] = Field(default_factory=list)
    pending_applications: list[DashboardItem] = Field(default_factory=list)
    total_spent: Decimal = Decimal("0.00")
    error: str | None = None


class LaborerDashboard(BaseModel):
    pending: list[DashboardItem] = Field(default_factory=list)
    completed: list[DashboardItem] = Field(default_factory=list)
    requests: list[DashboardItem] = Field(default_factory=list)
    total_earnings: Decimal = Decimal("0.00")
    error: str | None = None

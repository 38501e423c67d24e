"""Pydantic v2 schemas for job assignments and post-completion ratings."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: str | None = Field(None, max_length=4096)


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    laborer_id: uuid.UUID
    client_id: uuid.UUID
    application_id: uuid.UUID | None = None
    start_date: datetime | None
    end_date: datetime | None
    final_amount: Decimal
    status: str
    payment_status: str
    client_rating: int | None = None
    client_review: str | None = None
    laborer_rating: int | None = None
    laborer_review: str | None = None

    @field_validator("status", "payment_status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)

"""Pydantic v2 schemas for jobs."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from labormarket.config import settings


class JobCreate(BaseModel):
    """Client posts a job."""
    title: str = Field(..., min_length=1, max_length=256)
    description: str = Field(..., min_length=1, max_length=8192)
    budget: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    location: str | None = Field(None, max_length=512)
    required_skills: list[str] | None = Field(None, max_length=50)

    @field_validator("budget")
    @classmethod
    def validate_budget(cls, v: Decimal) -> Decimal:
        if v > settings.max_budget:
            raise ValueError(f"Maximum budget is {settings.max_budget:,}")
        return v

    @field_validator("required_skills")
    @classmethod
    def normalize_skills(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        seen: list[str] = []
        for skill in v:
            skill = skill.strip()
            if len(skill) > 64:
                raise ValueError("Skill must be <= 64 chars")
            if skill and skill not in seen:
                seen.append(skill)
        return seen


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: uuid.UUID
    title: str
    description: str
    budget: Decimal
    location: str | None
    required_skills: list[str] | None
    status: str
    created_at: datetime
    updated_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)

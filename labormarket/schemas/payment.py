"""Pydantic v2 schemas for payment capture."""

import re

from pydantic import BaseModel, Field, field_validator

from labormarket.schemas.assignment import AssignmentResponse

_EXPIRY = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")


class PaymentDetails(BaseModel):
    """Card details as typed into the payment form.

    Fields may arrive empty; the engine reports missing ones as a single
    validation error instead of one per field.
    """
    card_name: str = Field("", max_length=256)
    card_number: str = Field("", max_length=32)
    card_expiry: str = Field("", max_length=5)
    card_cvc: str = Field("", max_length=4)

    @field_validator("card_number", mode="before")
    @classmethod
    def strip_spaces(cls, v: object) -> object:
        if isinstance(v, str):
            return re.sub(r"\s+", "", v)
        return v

    def missing_fields(self) -> list[str]:
        return [
            name for name in ("card_name", "card_number", "card_expiry", "card_cvc")
            if not getattr(self, name).strip()
        ]

    def format_problems(self) -> list[str]:
        problems = []
        if not self.card_number.isdigit() or not 13 <= len(self.card_number) <= 19:
            problems.append("Card number must be 13 to 19 digits")
        if not _EXPIRY.match(self.card_expiry):
            problems.append("Expiry must be MM/YY")
        if not self.card_cvc.isdigit() or len(self.card_cvc) not in (3, 4):
            problems.append("CVC must be 3 or 4 digits")
        return problems

    @property
    def last4(self) -> str:
        return self.card_number[-4:]


class PaymentResponse(BaseModel):
    assignment: AssignmentResponse
    reference: str | None = None
    message: str

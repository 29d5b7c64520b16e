"""Request/response schemas for payment, submission, status and contact."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eta_service.schemas.validators import EMAIL_REGEX


# ── Payment & submission ────────────────────────────────────

class PaymentIntentRequest(BaseModel):
    turnstile_token: str | None = None


class PaymentIntentOut(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: int  # pence
    currency: str


class SubmitRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    turnstile_token: str | None = None


class SubmitOut(BaseModel):
    success: bool = True
    reference_number: str
    duplicate: bool = False


# ── Status lookup ───────────────────────────────────────────

class StatusLookupRequest(BaseModel):
    reference_number: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)


class StatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reference_number: str
    status: str
    applicant_name: str
    submitted_at: datetime | None = None
    updated_at: datetime | None = None


# ── Contact form ────────────────────────────────────────────

ContactSubject = Literal[
    "General Inquiry",
    "Application Status",
    "Payment Issue",
    "Document Upload Problem",
    "Refund Request",
    "Other",
]


class ContactRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    email: str
    reference_number: str | None = Field(None, max_length=32)
    subject: ContactSubject
    message: str = Field(..., min_length=1, max_length=5000)
    turnstile_token: str | None = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not EMAIL_REGEX.match(v):
            raise ValueError("Invalid email address format")
        return v


class ContactOut(BaseModel):
    success: bool = True
    message: str = "Your message has been sent. We'll get back to you soon."

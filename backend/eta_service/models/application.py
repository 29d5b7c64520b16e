"""SubmittedApplication: the durable record of a paid ETA application.

Created exactly once per Stripe PaymentIntent, after the charge has
succeeded. `payment_intent_id` carries a unique constraint so two
racing submissions for the same charge cannot both be stored.

Lifecycle:  submitted → approved | refused   (back office only)
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from eta_service.database import Base

STATUSES = ("draft", "paid", "submitted", "approved", "refused")


class SubmittedApplication(Base):
    __tablename__ = "eta_applications"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    reference_number: Mapped[str] = mapped_column(
        String(32), unique=True, nullable=False, index=True
    )
    # draft | paid | submitted | approved | refused
    status: Mapped[str] = mapped_column(String(20), default="submitted", index=True)

    # ── Payment ──────────────────────────────────────────────
    payment_intent_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    payment_amount: Mapped[int] = mapped_column(Integer, nullable=False)  # pence
    payment_currency: Mapped[str] = mapped_column(String(3), default="gbp")

    # ── Passport ─────────────────────────────────────────────
    passport_country: Mapped[str | None] = mapped_column(String(100))
    passport_number: Mapped[str | None] = mapped_column(String(20))
    issue_date: Mapped[date | None] = mapped_column(Date)
    expiry_date: Mapped[date | None] = mapped_column(Date)
    issuing_authority: Mapped[str | None] = mapped_column(String(255))

    # ── Personal ─────────────────────────────────────────────
    first_name: Mapped[str | None] = mapped_column(String(255))
    last_name: Mapped[str | None] = mapped_column(String(255))
    date_of_birth: Mapped[date | None] = mapped_column(Date)
    gender: Mapped[str | None] = mapped_column(String(10))
    nationality: Mapped[str | None] = mapped_column(String(100))
    birth_country: Mapped[str | None] = mapped_column(String(100))

    # ── Contact ──────────────────────────────────────────────
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(20))

    # ── Photos (public URLs, never raw bytes) ────────────────
    selfie_photo_url: Mapped[str | None] = mapped_column(Text)
    passport_photo_url: Mapped[str | None] = mapped_column(Text)

    # ── Background ───────────────────────────────────────────
    criminal_convictions: Mapped[str | None] = mapped_column(String(3))
    immigration_breaches: Mapped[str | None] = mapped_column(String(3))
    previous_refusals: Mapped[str | None] = mapped_column(String(3))
    terrorism_involvement: Mapped[str | None] = mapped_column(String(3))

    # ── Address ──────────────────────────────────────────────
    address_line_1: Mapped[str | None] = mapped_column(String(255))
    address_line_2: Mapped[str | None] = mapped_column(String(255))
    city: Mapped[str | None] = mapped_column(String(100))
    state: Mapped[str | None] = mapped_column(String(100))
    postcode: Mapped[str | None] = mapped_column(String(20))
    country: Mapped[str | None] = mapped_column(String(100))

    # ── Emergency contact (optional) ─────────────────────────
    emergency_name: Mapped[str | None] = mapped_column(String(255))
    emergency_relationship: Mapped[str | None] = mapped_column(String(100))
    emergency_phone: Mapped[str | None] = mapped_column(String(20))

    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def applicant_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

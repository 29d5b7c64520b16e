"""Persistence for submitted applications.

`put()` commits immediately: the record must be durable before any
confirmation email goes out. If the unique constraint on
`payment_intent_id` trips (two submissions for the same charge racing
past `find_by_charge_id`), the winner is re-read and reported through
`DuplicateChargeError` instead of surfacing a database error.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from eta_service.models.application import STATUSES, SubmittedApplication

logger = logging.getLogger(__name__)


class DuplicateChargeError(Exception):
    def __init__(self, existing: SubmittedApplication):
        self.existing = existing
        super().__init__(f"Charge {existing.payment_intent_id} already submitted")


class ApplicationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_charge_id(self, payment_intent_id: str) -> SubmittedApplication | None:
        result = await self.db.execute(
            select(SubmittedApplication)
            .where(SubmittedApplication.payment_intent_id == payment_intent_id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_reference(self, reference_number: str) -> SubmittedApplication | None:
        result = await self.db.execute(
            select(SubmittedApplication).where(
                SubmittedApplication.reference_number == reference_number.strip().upper()
            )
        )
        return result.scalar_one_or_none()

    async def lookup(self, reference_number: str, email: str) -> SubmittedApplication | None:
        """Match on both reference and applicant email (case-insensitive)."""
        result = await self.db.execute(
            select(SubmittedApplication).where(
                SubmittedApplication.reference_number == reference_number.strip().upper(),
                func.lower(SubmittedApplication.email) == email.strip().lower(),
            )
        )
        return result.scalar_one_or_none()

    async def put(self, reference_number: str, fields: dict) -> SubmittedApplication:
        application = SubmittedApplication(reference_number=reference_number, **fields)
        self.db.add(application)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.find_by_charge_id(fields["payment_intent_id"])
            if existing is None:
                raise
            logger.warning(
                "Concurrent submission for %s resolved to %s",
                existing.payment_intent_id, existing.reference_number,
            )
            raise DuplicateChargeError(existing)
        await self.db.refresh(application)
        return application

    async def update_status(self, reference_number: str, status: str) -> SubmittedApplication | None:
        if status not in STATUSES:
            raise ValueError(f"Unknown status '{status}'")
        application = await self.find_by_reference(reference_number)
        if application is None:
            return None
        application.status = status
        application.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(application)
        return application

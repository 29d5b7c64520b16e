"""Management CLI for back-office operations.

Usage:
    python -m eta_service.cli show ETA-MGXK3Q1Z-7F2A
    python -m eta_service.cli set-status ETA-MGXK3Q1Z-7F2A approved
"""

import asyncio
import logging
import sys

import httpx

from eta_service.config import settings
from eta_service.database import async_session
from eta_service.services.applications import ApplicationRepository
from eta_service.services.email import EmailSender

logger = logging.getLogger("eta_service.cli")

# Statuses back office may move an application to
SETTABLE_STATUSES = ("submitted", "approved", "refused")

_SHOWN_FIELDS = (
    "reference_number", "status", "email", "phone",
    "passport_country", "passport_number", "expiry_date",
    "date_of_birth", "nationality",
    "payment_intent_id", "payment_amount", "payment_currency",
    "selfie_photo_url", "passport_photo_url",
    "submitted_at", "updated_at",
)


async def show(reference_number: str, session_factory=async_session) -> bool:
    async with session_factory() as db:
        application = await ApplicationRepository(db).find_by_reference(reference_number)
    if application is None:
        print(f"No application {reference_number.upper()}")
        return False

    print(f"  applicant_name: {application.applicant_name}")
    for name in _SHOWN_FIELDS:
        print(f"  {name}: {getattr(application, name)}")
    return True


async def set_status(
    reference_number: str,
    status: str,
    session_factory=async_session,
    mailer: EmailSender | None = None,
) -> bool:
    """Update status and notify the applicant (email failure only logged)."""
    if status not in SETTABLE_STATUSES:
        print(f"Status must be one of: {', '.join(SETTABLE_STATUSES)}")
        return False

    async with session_factory() as db:
        application = await ApplicationRepository(db).update_status(reference_number, status)
    if application is None:
        print(f"No application {reference_number.upper()}")
        return False
    print(f"  {application.reference_number} -> {application.status}")

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        sender = mailer or EmailSender(client)
        try:
            await sender.send(
                to=application.email,
                subject=f"Application Update - {application.reference_number}",
                template="status_update",
                data={
                    "reference_number": application.reference_number,
                    "applicant_name": application.applicant_name or "Applicant",
                    "status": application.status,
                    "status_url": f"{settings.app_url}/status",
                },
            )
        except Exception:
            logger.exception("Status update email for %s failed", application.reference_number)
            print("  WARNING: status saved but the applicant email was not sent")
    return True


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "show" and len(sys.argv) == 3:
        ok = asyncio.run(show(sys.argv[2]))
    elif cmd == "set-status" and len(sys.argv) == 4:
        ok = asyncio.run(set_status(sys.argv[2], sys.argv[3]))
    else:
        print("Usage: python -m eta_service.cli [show <reference>|set-status <reference> <status>]")
        ok = False
    sys.exit(0 if ok else 1)

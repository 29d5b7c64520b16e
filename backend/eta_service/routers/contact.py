"""Public contact form → operator inbox.

Unlike the post-submission emails, delivery failure here is reported to
the caller: the email is the only thing this endpoint does.
"""

import logging

from fastapi import APIRouter, Depends, Request

from eta_service.config import settings
from eta_service.deps import client_ip, get_mailer, get_verifier
from eta_service.middleware.exceptions import EmailDeliveryError
from eta_service.schemas.application import ContactOut, ContactRequest
from eta_service.services.email import EmailSendError, EmailSender
from eta_service.services.turnstile import TurnstileVerifier

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ContactOut)
async def send_contact_message(
    body: ContactRequest,
    request: Request,
    mailer: EmailSender = Depends(get_mailer),
    verifier: TurnstileVerifier = Depends(get_verifier),
):
    await verifier.require_human(body.turnstile_token, client_ip(request))

    subject = f"[Contact] {body.subject}"
    if body.reference_number:
        subject += f" - {body.reference_number}"

    try:
        await mailer.send(
            to=settings.admin_notification_email,
            subject=subject,
            template="contact_message",
            data={
                "name": body.name,
                "email": body.email,
                "reference_number": body.reference_number,
                "subject": body.subject,
                "message": body.message,
            },
            reply_to=body.email,
        )
    except EmailSendError as exc:
        logger.error("Contact message from %s not delivered: %s", body.email, exc)
        raise EmailDeliveryError() from exc

    return ContactOut()

"""Payment and submission flow for a completed wizard draft.

Phases (stored on ``WizardState.submission``):

    reviewing
      → awaiting_charge_intent         create_charge_intent()
      → awaiting_charge_confirmation   browser collects payment
      → submitting                     submit(): charge verified
      → complete                       record stored (or already existed)

Any of the first four can drop to ``errored``; `reset()` returns to
``reviewing``, or to ``awaiting_charge_confirmation`` when the failure
happened after a charge intent existed, so the same charge can be
re-submitted. The draft is never touched by a failure.

A session owns at most one charge intent: once created, further
`create_charge_intent()` calls hand back the same intent id and client
secret rather than opening a second charge.

Both entry points take an optional `checkpoint` coroutine, awaited once
the in-flight flag is set, so callers can persist that flag before the
slow collaborator call starts.

Success of `submit()` is defined by the database write alone. Photo
uploads and emails are attempted afterwards and only ever logged on
failure.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable

from fastapi import status
from sqlalchemy.exc import SQLAlchemyError

from eta_service.config import settings
from eta_service.middleware.exceptions import (
    PaymentError,
    PersistenceError,
    StepValidationError,
    SubmissionStateError,
)
from eta_service.models.application import SubmittedApplication
from eta_service.schemas.wizard import validate_draft
from eta_service.services.applications import ApplicationRepository, DuplicateChargeError
from eta_service.services.email import EmailSender
from eta_service.services.payments import Charge, ChargeIntent, PaymentGatewayError, StripeGateway
from eta_service.services.storage import FileStorage, decode_data_url
from eta_service.services.turnstile import TurnstileVerifier
from eta_service.services.wizard_state import SubmissionPhase, WizardState
from eta_service.utils.numbering import generate_reference_number

logger = logging.getLogger(__name__)

# Draft keys that never reach the stored record
_EXCLUDED_FIELDS = {
    "confirm_email",
    "passport_photo",
    "selfie_photo",
    "confirm_accuracy",
    "consent_submit",
    "accept_terms",
    "accept_data_processing",
}
_DATE_FIELDS = {"issue_date", "expiry_date", "date_of_birth"}
_PHOTO_FIELDS = {
    "selfie_photo": "selfie",
    "passport_photo": "passport",
}

Checkpoint = Callable[[WizardState], Awaitable[None]]


@dataclass
class SubmissionResult:
    reference_number: str
    duplicate: bool = False


@dataclass
class Outcome:
    """Result of a best-effort call. `error` is only ever logged."""
    ok: bool
    value: Any = None
    error: Exception | None = None


async def attempt(description: str, call: Awaitable) -> Outcome:
    try:
        return Outcome(ok=True, value=await call)
    except Exception as exc:
        logger.exception("%s failed", description)
        return Outcome(ok=False, error=exc)


def _payment_error(exc: PaymentGatewayError) -> PaymentError:
    if exc.transient:
        return PaymentError(exc.message, "PAYMENT_SERVICE_UNAVAILABLE", status.HTTP_502_BAD_GATEWAY)
    return PaymentError(exc.message)


def application_fields(draft: dict) -> dict:
    """Flatten a wizard draft into SubmittedApplication column values."""
    columns = SubmittedApplication.__table__.columns.keys()
    fields = {}
    for key, value in draft.items():
        if key in _EXCLUDED_FIELDS or key not in columns:
            continue
        if key in _DATE_FIELDS and isinstance(value, str):
            value = date.fromisoformat(value)
        fields[key] = value if value != "" else None
    return fields


class SubmissionOrchestrator:
    def __init__(
        self,
        payments: StripeGateway,
        repository: ApplicationRepository,
        storage: FileStorage,
        mailer: EmailSender,
        verifier: TurnstileVerifier,
        *,
        amount: int = settings.total_fee_pence,
        currency: str = settings.payment_currency,
        admin_email: str = settings.admin_notification_email,
        status_url: str = f"{settings.app_url}/status",
    ):
        self.payments = payments
        self.repository = repository
        self.storage = storage
        self.mailer = mailer
        self.verifier = verifier
        self.amount = amount
        self.currency = currency
        self.admin_email = admin_email
        self.status_url = status_url

    # ── reviewing → awaiting_charge_confirmation ─────────────

    async def create_charge_intent(
        self,
        state: WizardState,
        bot_token: str | None,
        remote_ip: str | None = None,
        checkpoint: Checkpoint | None = None,
    ) -> ChargeIntent:
        if state.is_submitted:
            raise SubmissionStateError("This application has already been submitted")
        if state.payment_in_flight or state.submission_in_flight:
            raise SubmissionStateError("A payment is already in progress", "PAYMENT_IN_PROGRESS")

        await self.verifier.require_human(bot_token, remote_ip)

        submission = state.submission
        if submission.payment_intent_id and submission.client_secret:
            # The browser may already be paying this charge
            logger.info("Reusing charge intent %s for session %s",
                        submission.payment_intent_id, state.session_id)
            submission.phase = SubmissionPhase.AWAITING_CHARGE_CONFIRMATION
            submission.error_message = None
            submission.resume_phase = None
            return ChargeIntent(
                intent_id=submission.payment_intent_id,
                client_secret=submission.client_secret,
            )

        # Consent flags live on the review step; every other slice must
        # still be valid too before money is taken.
        failures = validate_draft(state.draft)
        if failures:
            first = failures[0]
            raise StepValidationError(first.step_id.value, first.errors)

        draft = state.draft
        submission.phase = SubmissionPhase.AWAITING_CHARGE_INTENT
        submission.error_message = None
        state.payment_in_flight = True
        try:
            if checkpoint is not None:
                await checkpoint(state)
            intent = await self.payments.create_charge_intent(
                amount=self.amount,
                currency=self.currency,
                receipt_email=draft["email"],
                metadata={
                    "applicant_name": f"{draft.get('first_name', '')} {draft.get('last_name', '')}".strip(),
                    "passport_number": draft.get("passport_number", ""),
                    "service_fee": f"{settings.service_fee_pence / 100:.2f}",
                    "processing_fee": f"{settings.processing_fee_pence / 100:.2f}",
                },
            )
        except PaymentGatewayError as exc:
            submission.fail(exc.message, SubmissionPhase.REVIEWING)
            raise _payment_error(exc) from exc
        finally:
            state.payment_in_flight = False

        submission.payment_intent_id = intent.intent_id
        submission.client_secret = intent.client_secret
        submission.phase = SubmissionPhase.AWAITING_CHARGE_CONFIRMATION
        return intent

    # ── awaiting_charge_confirmation → complete ──────────────

    async def _retrieve_charge(self, intent_id: str) -> Charge:
        try:
            return await self.payments.retrieve_charge(intent_id)
        except PaymentGatewayError as exc:
            if not exc.transient:
                raise
            logger.warning("Retrying charge retrieval for %s after: %s", intent_id, exc.message)
            return await self.payments.retrieve_charge(intent_id)

    async def submit(
        self,
        state: WizardState,
        payment_intent_id: str,
        bot_token: str | None,
        remote_ip: str | None = None,
        checkpoint: Checkpoint | None = None,
    ) -> SubmissionResult:
        await self.verifier.require_human(bot_token, remote_ip)

        submission = state.submission
        if state.is_submitted:
            if payment_intent_id != submission.payment_intent_id:
                raise SubmissionStateError("This application has already been submitted")
            return SubmissionResult(submission.reference_number, duplicate=True)
        if state.submission_in_flight or state.payment_in_flight:
            raise SubmissionStateError("A submission is already in progress", "SUBMISSION_IN_PROGRESS")

        if submission.payment_intent_id is None:
            raise SubmissionStateError("No payment has been started for this application")
        if payment_intent_id != submission.payment_intent_id:
            raise SubmissionStateError("Payment does not belong to this application")

        state.submission_in_flight = True
        try:
            if checkpoint is not None:
                await checkpoint(state)
            return await self._confirm_and_store(state, payment_intent_id)
        finally:
            state.submission_in_flight = False

    async def _confirm_and_store(self, state: WizardState, intent_id: str) -> SubmissionResult:
        submission = state.submission
        submission.phase = SubmissionPhase.AWAITING_CHARGE_CONFIRMATION
        submission.error_message = None

        try:
            charge = await self._retrieve_charge(intent_id)
        except PaymentGatewayError as exc:
            submission.fail(exc.message, SubmissionPhase.AWAITING_CHARGE_CONFIRMATION)
            raise _payment_error(exc) from exc

        if not charge.succeeded:
            message = "Payment has not been completed"
            submission.fail(message, SubmissionPhase.AWAITING_CHARGE_CONFIRMATION)
            raise PaymentError(message, error_code="PAYMENT_INCOMPLETE")

        submission.phase = SubmissionPhase.SUBMITTING

        try:
            existing = await self.repository.find_by_charge_id(intent_id)
            if existing is not None:
                logger.info("Duplicate submission for %s -> %s", intent_id, existing.reference_number)
                return self._complete(state, existing.reference_number, duplicate=True)

            reference_number = generate_reference_number()
            photo_urls = await self._upload_photos(reference_number, state.draft)

            fields = application_fields(state.draft)
            fields.update(
                status="submitted",
                payment_intent_id=intent_id,
                payment_amount=charge.amount,
                payment_currency=charge.currency,
                selfie_photo_url=photo_urls.get("selfie"),
                passport_photo_url=photo_urls.get("passport"),
            )
            application = await self.repository.put(reference_number, fields)
        except DuplicateChargeError as dup:
            return self._complete(state, dup.existing.reference_number, duplicate=True)
        except SQLAlchemyError:
            logger.exception("Failed to store application for paid charge %s", intent_id)
            submission.fail(
                "Your payment succeeded but we couldn't save your application.",
                SubmissionPhase.AWAITING_CHARGE_CONFIRMATION,
            )
            raise PersistenceError(intent_id)

        logger.info("Application %s stored for charge %s", reference_number, intent_id)
        await self._send_notifications(application)
        return self._complete(state, reference_number, duplicate=False)

    @staticmethod
    def _complete(state: WizardState, reference_number: str, duplicate: bool) -> SubmissionResult:
        submission = state.submission
        submission.phase = SubmissionPhase.COMPLETE
        submission.reference_number = reference_number
        submission.duplicate = duplicate
        submission.client_secret = None
        submission.error_message = None
        submission.resume_phase = None
        return SubmissionResult(reference_number, duplicate)

    # ── errored → reviewing / awaiting_charge_confirmation ───

    @staticmethod
    def reset(state: WizardState) -> None:
        submission = state.submission
        if submission.phase != SubmissionPhase.ERRORED:
            return
        submission.phase = submission.resume_phase or SubmissionPhase.REVIEWING
        submission.error_message = None
        submission.resume_phase = None

    # ── Best-effort side effects ─────────────────────────────

    async def _upload_photos(self, reference_number: str, draft: dict) -> dict[str, str]:
        urls: dict[str, str] = {}
        for field_name, label in _PHOTO_FIELDS.items():
            value = draft.get(field_name)
            if not isinstance(value, str) or not value.startswith("data:"):
                continue
            # Soft: a missing photo never blocks a paid submission
            outcome = await attempt(
                f"{label.capitalize()} photo upload for {reference_number}",
                self._store_photo(reference_number, label, value),
            )
            if outcome.ok:
                urls[label] = outcome.value
        return urls

    async def _store_photo(self, reference_number: str, label: str, data_url: str) -> str:
        content_type, payload = decode_data_url(data_url)
        path = f"applications/{reference_number}/{label}.jpg"
        return await self.storage.store(path, payload, content_type)

    async def _send_notifications(self, application: SubmittedApplication) -> None:
        now = datetime.utcnow()
        submitted_on = f"{now.day} {now:%B %Y}"
        applicant_name = application.applicant_name or "Applicant"

        # Soft: the application is already stored
        await attempt(
            f"Confirmation email for {application.reference_number}",
            self.mailer.send(
                to=application.email,
                subject=f"Application Received - {application.reference_number}",
                template="confirmation",
                data={
                    "reference_number": application.reference_number,
                    "applicant_name": applicant_name,
                    "email": application.email,
                    "submitted_at": submitted_on,
                    "status_url": self.status_url,
                },
            ),
        )
        await attempt(
            f"Admin notification for {application.reference_number}",
            self.mailer.send(
                to=self.admin_email,
                subject=f"New ETA Application - {application.reference_number}",
                template="admin_notification",
                data={
                    "application": application,
                    "applicant_name": application.applicant_name or "N/A",
                    "submitted_at": submitted_on,
                },
                reply_to=application.email,
            ),
        )

"""Application wizard: 8 steps, then payment and submission.

Endpoints:
  POST   /api/wizard/                              → start a session
  GET    /api/wizard/{session_id}                  → progress + draft
  PATCH  /api/wizard/{session_id}/steps/{step_id}  → validate + save a step
  POST   /api/wizard/{session_id}/advance          → next step
  POST   /api/wizard/{session_id}/retreat          → previous step
  POST   /api/wizard/{session_id}/jump/{index}     → step indicator click
  DELETE /api/wizard/{session_id}                  → abandon the draft
  POST   /api/wizard/{session_id}/payment-intent   → start payment
  POST   /api/wizard/{session_id}/submit           → confirm payment + store
  POST   /api/wizard/{session_id}/reset            → clear an errored phase

Design:
  - Session state lives in Redis (see services/sessions.py) and is
    loaded and saved explicitly in each handler.
  - A step slice is merged only after it validates; a failed PATCH
    leaves the draft and navigation untouched.
  - A step can be saved only once the applicant has reached the step
    before it.
  - payment-intent and submit run under a per-session Redis lock; a
    concurrent second call gets 409.
  - Once submitted, the session is read-only.
"""

from fastapi import APIRouter, Body, Depends, Request, status

from eta_service.config import settings
from eta_service.deps import client_ip, get_orchestrator, get_session_store
from eta_service.middleware.exceptions import StepValidationError, SubmissionStateError
from eta_service.schemas.application import (
    PaymentIntentOut,
    PaymentIntentRequest,
    SubmitOut,
    SubmitRequest,
)
from eta_service.schemas.wizard import (
    STEPS,
    StepId,
    SubmissionOut,
    WizardProgress,
    validate_step,
)
from eta_service.services.sessions import WizardSessionStore
from eta_service.services.submission import SubmissionOrchestrator
from eta_service.services.wizard_state import WizardState

router = APIRouter()


# ── Helpers ──────────────────────────────────────────────────

def _make_progress(state: WizardState) -> WizardProgress:
    """Build a WizardProgress response from current state."""
    submission = state.submission
    return WizardProgress(
        session_id=state.session_id,
        current_step=state.current_step,
        current_step_id=state.current_step_id,
        total_steps=state.total_steps,
        completed_steps=sorted(state.completed_steps),
        unlocked_steps=state.unlocked_steps(),
        is_first_step=state.is_first_step,
        is_last_step=state.is_last_step,
        payment_in_flight=state.payment_in_flight,
        submission_in_flight=state.submission_in_flight,
        draft=state.draft,
        submission=SubmissionOut(
            phase=submission.phase.value,
            payment_intent_id=submission.payment_intent_id,
            reference_number=submission.reference_number,
            duplicate=submission.duplicate,
            error_message=submission.error_message,
        ),
    )


def _ensure_editable(state: WizardState) -> None:
    if state.is_submitted:
        raise SubmissionStateError("This application has already been submitted")


# ── Session lifecycle ───────────────────────────────────────

@router.post("/", response_model=WizardProgress, status_code=status.HTTP_201_CREATED)
async def start_session(store: WizardSessionStore = Depends(get_session_store)):
    state = await store.create()
    return _make_progress(state)


@router.get("/{session_id}", response_model=WizardProgress)
async def get_progress(session_id: str, store: WizardSessionStore = Depends(get_session_store)):
    state = await store.load(session_id)
    return _make_progress(state)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_session(session_id: str, store: WizardSessionStore = Depends(get_session_store)):
    await store.load(session_id)
    await store.discard(session_id)


# ── Steps ───────────────────────────────────────────────────

@router.patch("/{session_id}/steps/{step_id}", response_model=WizardProgress)
async def save_step(
    session_id: str,
    step_id: StepId,
    body: dict = Body(...),
    store: WizardSessionStore = Depends(get_session_store),
):
    """Validate one step's slice; on success merge it and move on."""
    state = await store.load(session_id)
    _ensure_editable(state)

    index = STEPS.index(step_id)
    if not state.can_save_step(index):
        raise SubmissionStateError(
            f"Step '{step_id.value}' is not reachable yet",
            "STEP_LOCKED",
        )

    result = validate_step(
        step_id,
        body,
        min_validity_months=settings.passport_min_validity_months,
    )
    if not result.is_valid:
        raise StepValidationError(step_id.value, result.errors)

    state.merge_step_data(result.as_draft_fields())
    state.mark_complete(index)
    if index == state.current_step:
        state.advance()

    await store.save(state)
    return _make_progress(state)


@router.post("/{session_id}/advance", response_model=WizardProgress)
async def advance(session_id: str, store: WizardSessionStore = Depends(get_session_store)):
    state = await store.load(session_id)
    _ensure_editable(state)
    state.advance()
    await store.save(state)
    return _make_progress(state)


@router.post("/{session_id}/retreat", response_model=WizardProgress)
async def retreat(session_id: str, store: WizardSessionStore = Depends(get_session_store)):
    state = await store.load(session_id)
    _ensure_editable(state)
    state.retreat()
    await store.save(state)
    return _make_progress(state)


@router.post("/{session_id}/jump/{index}", response_model=WizardProgress)
async def jump(session_id: str, index: int, store: WizardSessionStore = Depends(get_session_store)):
    """Step indicator click: only unlocked steps can be reached."""
    state = await store.load(session_id)
    _ensure_editable(state)
    if state.is_step_unlocked(index):
        state.jump_to(index)
        await store.save(state)
    return _make_progress(state)


# ── Payment & submission ────────────────────────────────────

@router.post("/{session_id}/payment-intent", response_model=PaymentIntentOut)
async def create_payment_intent(
    session_id: str,
    body: PaymentIntentRequest,
    request: Request,
    store: WizardSessionStore = Depends(get_session_store),
    orchestrator: SubmissionOrchestrator = Depends(get_orchestrator),
):
    async with store.exclusive(session_id, "PAYMENT_IN_PROGRESS") as state:
        try:
            intent = await orchestrator.create_charge_intent(
                state, body.turnstile_token, client_ip(request), checkpoint=store.save
            )
        finally:
            # Phase changes are kept even when the call fails
            await store.save(state)
    return PaymentIntentOut(
        client_secret=intent.client_secret,
        payment_intent_id=intent.intent_id,
        amount=orchestrator.amount,
        currency=orchestrator.currency,
    )


@router.post("/{session_id}/submit", response_model=SubmitOut)
async def submit_application(
    session_id: str,
    body: SubmitRequest,
    request: Request,
    store: WizardSessionStore = Depends(get_session_store),
    orchestrator: SubmissionOrchestrator = Depends(get_orchestrator),
):
    async with store.exclusive(session_id, "SUBMISSION_IN_PROGRESS") as state:
        try:
            result = await orchestrator.submit(
                state,
                body.payment_intent_id,
                body.turnstile_token,
                client_ip(request),
                checkpoint=store.save,
            )
        finally:
            await store.save(state)
    return SubmitOut(reference_number=result.reference_number, duplicate=result.duplicate)


@router.post("/{session_id}/reset", response_model=WizardProgress)
async def reset_submission(
    session_id: str,
    store: WizardSessionStore = Depends(get_session_store),
    orchestrator: SubmissionOrchestrator = Depends(get_orchestrator),
):
    state = await store.load(session_id)
    orchestrator.reset(state)
    await store.save(state)
    return _make_progress(state)

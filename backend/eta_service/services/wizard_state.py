"""Runtime state of one applicant's wizard session.

Holds the step index, the accumulated draft, the completed-step set and
the payment/submission bookkeeping used by the submission orchestrator.
Every operation here is total: out-of-range navigation is a silent
no-op, never an error. Field validation happens before data reaches
`merge_step_data`, see `eta_service.schemas.wizard.validate_step`.

The object is loaded from and saved back to the session store around
each request (`eta_service.services.sessions`); it is never written to
the database.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum

from eta_service.schemas.wizard import STEPS, TOTAL_STEPS, StepId


class SubmissionPhase(str, Enum):
    REVIEWING = "reviewing"
    AWAITING_CHARGE_INTENT = "awaiting_charge_intent"
    AWAITING_CHARGE_CONFIRMATION = "awaiting_charge_confirmation"
    SUBMITTING = "submitting"
    COMPLETE = "complete"
    ERRORED = "errored"


@dataclass
class SubmissionRecord:
    phase: SubmissionPhase = SubmissionPhase.REVIEWING
    payment_intent_id: str | None = None
    client_secret: str | None = None
    reference_number: str | None = None
    duplicate: bool = False
    error_message: str | None = None
    # Phase restored by reset() after an error
    resume_phase: SubmissionPhase | None = None

    def fail(self, message: str, resume_phase: SubmissionPhase) -> None:
        self.phase = SubmissionPhase.ERRORED
        self.error_message = message
        self.resume_phase = resume_phase

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "payment_intent_id": self.payment_intent_id,
            "client_secret": self.client_secret,
            "reference_number": self.reference_number,
            "duplicate": self.duplicate,
            "error_message": self.error_message,
            "resume_phase": self.resume_phase.value if self.resume_phase else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SubmissionRecord:
        resume = data.get("resume_phase")
        return cls(
            phase=SubmissionPhase(data.get("phase", SubmissionPhase.REVIEWING.value)),
            payment_intent_id=data.get("payment_intent_id"),
            client_secret=data.get("client_secret"),
            reference_number=data.get("reference_number"),
            duplicate=data.get("duplicate", False),
            error_message=data.get("error_message"),
            resume_phase=SubmissionPhase(resume) if resume else None,
        )


@dataclass
class WizardState:
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    total_steps: int = TOTAL_STEPS
    current_step: int = 0
    draft: dict = field(default_factory=dict)
    completed_steps: set[int] = field(default_factory=set)
    highest_visited: int = 0
    payment_in_flight: bool = False
    submission_in_flight: bool = False
    submission: SubmissionRecord = field(default_factory=SubmissionRecord)

    # ── Navigation ───────────────────────────────────────────

    def _visit(self, index: int) -> None:
        self.current_step = index
        self.highest_visited = max(self.highest_visited, index)

    def advance(self) -> None:
        if self.current_step < self.total_steps - 1:
            self._visit(self.current_step + 1)

    def retreat(self) -> None:
        if self.current_step > 0:
            self._visit(self.current_step - 1)

    def jump_to(self, index: int) -> None:
        if 0 <= index < self.total_steps:
            self._visit(index)

    # ── Mutation ─────────────────────────────────────────────

    def merge_step_data(self, partial: dict) -> None:
        self.draft = {**self.draft, **partial}

    def mark_complete(self, index: int) -> None:
        self.completed_steps.add(index)

    # ── Queries ──────────────────────────────────────────────

    def is_step_unlocked(self, index: int) -> bool:
        return (
            index == self.current_step
            or index in self.completed_steps
            or index < self.highest_visited
        )

    def can_save_step(self, index: int) -> bool:
        """Saving may run at most one step past the furthest one visited."""
        return 0 <= index <= self.highest_visited + 1

    def unlocked_steps(self) -> list[int]:
        return [i for i in range(self.total_steps) if self.is_step_unlocked(i)]

    @property
    def current_step_id(self) -> StepId:
        return STEPS[self.current_step]

    @property
    def is_first_step(self) -> bool:
        return self.current_step == 0

    @property
    def is_last_step(self) -> bool:
        return self.current_step == self.total_steps - 1

    @property
    def is_submitted(self) -> bool:
        return self.submission.phase == SubmissionPhase.COMPLETE

    # ── Serialization (session store) ────────────────────────

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "total_steps": self.total_steps,
            "current_step": self.current_step,
            "draft": self.draft,
            "completed_steps": sorted(self.completed_steps),
            "highest_visited": self.highest_visited,
            "payment_in_flight": self.payment_in_flight,
            "submission_in_flight": self.submission_in_flight,
            "submission": self.submission.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> WizardState:
        return cls(
            session_id=data["session_id"],
            total_steps=data.get("total_steps", TOTAL_STEPS),
            current_step=data.get("current_step", 0),
            draft=dict(data.get("draft") or {}),
            completed_steps=set(data.get("completed_steps") or []),
            highest_visited=data.get("highest_visited", 0),
            payment_in_flight=data.get("payment_in_flight", False),
            submission_in_flight=data.get("submission_in_flight", False),
            submission=SubmissionRecord.from_dict(data.get("submission") or {}),
        )

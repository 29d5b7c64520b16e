"""Pydantic schemas for the 8-step ETA application wizard.

Each step owns a slice of the application draft. Validating a slice
yields either the typed slice or a ``{field: error_key}`` mapping; keys
follow ``<step>.errors.<name>`` so the front end can localise them.

Relative-date rules read "today" from the validation context so they
can be pinned in tests:

    PassportStep.model_validate(data, context={"today": date(2026, 10, 19)})
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic_core import PydanticCustomError

from eta_service.schemas.validators import (
    add_months,
    check_email,
    check_not_after,
    check_passport_number,
    check_phone,
    check_strictly_after,
    check_strictly_before,
    min_validity_months_from,
    today_from,
)

YesNo = Literal["yes", "no"]


class StepId(str, Enum):
    PASSPORT = "passport"
    PERSONAL = "personal"
    CONTACT = "contact"
    PHOTO = "photo"
    BACKGROUND = "background"
    ADDRESS = "address"
    EMERGENCY = "emergency"
    REVIEW = "review"


STEPS: list[StepId] = list(StepId)
TOTAL_STEPS = len(STEPS)


# ── Base ────────────────────────────────────────────────────

class StepSchema(BaseModel):
    """Common behaviour: blank strings count as missing."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    # field -> key used when the value is missing/blank
    required_errors: ClassVar[dict[str, str]] = {}
    # field -> key used when the value is present but unparseable
    invalid_errors: ClassVar[dict[str, str]] = {}

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


# ── Step 1: Passport ─────────────────────────────────────────

class PassportStep(StepSchema):
    required_errors = {
        "passport_country": "passport.errors.countryRequired",
        "passport_number": "passport.errors.numberRequired",
        "issue_date": "passport.errors.issueDateRequired",
        "expiry_date": "passport.errors.expiryRequired",
        "issuing_authority": "passport.errors.authorityRequired",
    }
    invalid_errors = {
        "issue_date": "passport.errors.issueDateInvalid",
        "expiry_date": "passport.errors.expiryInvalid",
    }

    passport_country: str
    passport_number: str
    issue_date: date
    expiry_date: date
    issuing_authority: str
    passport_photo: str | None = None  # data URL, uploaded at submission

    @field_validator("passport_number")
    @classmethod
    def _passport_number(cls, v: str) -> str:
        return check_passport_number(v, "passport.errors.numberInvalid")

    @field_validator("issue_date")
    @classmethod
    def _issue_date(cls, v: date, info: ValidationInfo) -> date:
        return check_not_after(v, today_from(info), "passport.errors.issueDateFuture")

    @field_validator("expiry_date")
    @classmethod
    def _expiry_date(cls, v: date, info: ValidationInfo) -> date:
        today = today_from(info)
        check_strictly_after(v, today, "passport.errors.expiryPast")
        # A passport valid for less than the minimum window is rejected
        # even though it has not yet expired.
        cutoff = add_months(today, min_validity_months_from(info))
        return check_strictly_after(v, cutoff, "passport.errors.expiryTooSoon")


# ── Step 2: Personal ─────────────────────────────────────────

class PersonalStep(StepSchema):
    required_errors = {
        "first_name": "personal.errors.firstNameRequired",
        "last_name": "personal.errors.lastNameRequired",
        "date_of_birth": "personal.errors.dobRequired",
        "gender": "personal.errors.genderRequired",
        "nationality": "personal.errors.nationalityRequired",
        "birth_country": "personal.errors.birthCountryRequired",
    }
    invalid_errors = {
        "date_of_birth": "personal.errors.dobInvalid",
        "gender": "personal.errors.genderInvalid",
    }

    first_name: str
    last_name: str
    date_of_birth: date
    gender: Literal["male", "female", "other"]
    nationality: str
    birth_country: str

    @field_validator("date_of_birth")
    @classmethod
    def _dob(cls, v: date, info: ValidationInfo) -> date:
        return check_strictly_before(v, today_from(info), "personal.errors.dobFuture")


# ── Step 3: Contact ──────────────────────────────────────────

class ContactStep(StepSchema):
    required_errors = {
        "email": "contact.errors.emailRequired",
        "confirm_email": "contact.errors.emailRequired",
        "phone": "contact.errors.phoneRequired",
    }

    email: str
    confirm_email: str
    phone: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return check_email(v, "contact.errors.emailInvalid")

    @field_validator("confirm_email")
    @classmethod
    def _confirm_email(cls, v: str, info: ValidationInfo) -> str:
        # Only compared once the primary email itself is valid.
        email = info.data.get("email")
        if email is not None and v != email:
            raise PydanticCustomError("contact.errors.emailMismatch", "Email addresses do not match")
        return v

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        return check_phone(v, "contact.errors.phoneInvalid")


# ── Step 4: Photo ────────────────────────────────────────────

class PhotoStep(StepSchema):
    selfie_photo: str | None = None  # data URL, uploaded at submission


# ── Step 5: Background ───────────────────────────────────────

class BackgroundStep(StepSchema):
    required_errors = {
        "criminal_convictions": "background.errors.criminalRequired",
        "immigration_breaches": "background.errors.immigrationRequired",
        "previous_refusals": "background.errors.refusalRequired",
        "terrorism_involvement": "background.errors.terrorismRequired",
    }

    criminal_convictions: YesNo
    immigration_breaches: YesNo
    previous_refusals: YesNo
    terrorism_involvement: YesNo


# ── Step 6: Address ──────────────────────────────────────────

class AddressStep(StepSchema):
    required_errors = {
        "address_line_1": "address.errors.line1Required",
        "city": "address.errors.cityRequired",
        "postcode": "address.errors.postcodeRequired",
        "country": "address.errors.countryRequired",
    }

    address_line_1: str
    address_line_2: str | None = None
    city: str
    state: str | None = None
    postcode: str
    country: str


# ── Step 7: Emergency contact (optional) ─────────────────────

class EmergencyStep(StepSchema):
    emergency_name: str | None = None
    emergency_relationship: str | None = None
    emergency_phone: str | None = None


# ── Step 8: Review & consent ─────────────────────────────────

CONSENT_ERRORS = {
    "confirm_accuracy": "review.errors.accuracyRequired",
    "consent_submit": "review.errors.submitRequired",
    "accept_terms": "review.errors.termsRequired",
    "accept_data_processing": "review.errors.dataRequired",
}


class ReviewStep(StepSchema):
    # Defaults are validated too, so an omitted flag fails like a false one.
    model_config = ConfigDict(validate_default=True)

    required_errors = CONSENT_ERRORS

    confirm_accuracy: bool | None = None
    consent_submit: bool | None = None
    accept_terms: bool | None = None
    accept_data_processing: bool | None = None

    @field_validator(*CONSENT_ERRORS, mode="before")
    @classmethod
    def _must_be_true(cls, v: Any, info: ValidationInfo) -> bool:
        if v is not True:
            raise PydanticCustomError(CONSENT_ERRORS[info.field_name], "Consent is required")
        return v


STEP_SCHEMAS: dict[StepId, type[StepSchema]] = {
    StepId.PASSPORT: PassportStep,
    StepId.PERSONAL: PersonalStep,
    StepId.CONTACT: ContactStep,
    StepId.PHOTO: PhotoStep,
    StepId.BACKGROUND: BackgroundStep,
    StepId.ADDRESS: AddressStep,
    StepId.EMERGENCY: EmergencyStep,
    StepId.REVIEW: ReviewStep,
}

_unhandled = [s.value for s in StepId if s not in STEP_SCHEMAS]
if _unhandled:
    raise RuntimeError(f"Wizard steps without a schema: {', '.join(_unhandled)}")


# ── Validation dispatch ─────────────────────────────────────

@dataclass
class StepResult:
    step_id: StepId
    slice: StepSchema | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.slice is not None

    def as_draft_fields(self) -> dict:
        """JSON-safe field values, ready to merge into the draft."""
        if self.slice is None:
            return {}
        return self.slice.model_dump(mode="json")


def _error_key(schema: type[StepSchema], error: dict) -> tuple[str, str]:
    name = str(error["loc"][0]) if error["loc"] else "__root__"
    etype = error["type"]
    if "." in etype:
        # PydanticCustomError raised by one of our checks
        return name, etype
    if etype == "missing" or error.get("input") is None:
        return name, schema.required_errors.get(name, f"errors.{name}Required")
    return name, (
        schema.invalid_errors.get(name)
        or schema.required_errors.get(name)
        or f"errors.{name}Invalid"
    )


def validate_step(
    step_id: StepId,
    data: dict,
    *,
    today: date | None = None,
    min_validity_months: int | None = None,
) -> StepResult:
    """Validate one step's slice against its rule set."""
    schema = STEP_SCHEMAS[step_id]
    context: dict[str, Any] = {}
    if today is not None:
        context["today"] = today
    if min_validity_months is not None:
        context["min_validity_months"] = min_validity_months

    try:
        slice_ = schema.model_validate(data, context=context)
    except ValidationError as exc:
        errors: dict[str, str] = {}
        for error in exc.errors():
            name, key = _error_key(schema, error)
            errors.setdefault(name, key)
        return StepResult(step_id=step_id, errors=errors)
    return StepResult(step_id=step_id, slice=slice_)


def validate_draft(draft: dict, *, today: date | None = None) -> list[StepResult]:
    """Validate every step slice of a full draft; returns only failures."""
    failures = []
    for step_id in STEPS:
        result = validate_step(step_id, draft, today=today)
        if not result.is_valid:
            failures.append(result)
    return failures


# ── Wizard progress (API responses) ─────────────────────────

class SubmissionOut(BaseModel):
    phase: str
    payment_intent_id: str | None = None
    reference_number: str | None = None
    duplicate: bool = False
    error_message: str | None = None


class WizardProgress(BaseModel):
    session_id: str
    current_step: int
    current_step_id: StepId
    total_steps: int
    completed_steps: list[int]
    unlocked_steps: list[int]
    is_first_step: bool
    is_last_step: bool
    payment_in_flight: bool
    submission_in_flight: bool
    draft: dict
    submission: SubmissionOut

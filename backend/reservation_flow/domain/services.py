import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..models import WizardStep
from ..schemas import AvailabilityDecision, ReservationDraft
from .errors import InvalidDraftError, ValidationError

_email_adapter: TypeAdapter[str] = TypeAdapter(EmailStr)
PHONE_RE = re.compile(r"^\(\d{2}\) \d{5}-\d{4}$")

MIN_NAME_LENGTH = 3
MIN_AGE = 18
MAX_AGE = 120


@dataclass(frozen=True)
class PanelGate:
    requested: bool
    blocks: bool
    message: str = ""


@dataclass(frozen=True)
class DetailsContext:
    decision: Optional[AvailabilityDecision]
    panel: PanelGate


def age_on(birth_date: date, today: date) -> int:
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def validate_personal_data(draft: ReservationDraft, *, today: date) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if len(draft.name.strip()) < MIN_NAME_LENGTH:
        errors.append(ValidationError("name", f"Name must have at least {MIN_NAME_LENGTH} characters"))
    try:
        _email_adapter.validate_python(draft.email)
    except PydanticValidationError:
        errors.append(ValidationError("email", "Invalid email"))
    if not PHONE_RE.match(draft.phone):
        errors.append(ValidationError("phone", "Phone must match (XX) XXXXX-XXXX"))
    if draft.birth_date is None:
        errors.append(ValidationError("birth_date", "Birth date is required"))
    elif not MIN_AGE <= age_on(draft.birth_date, today) <= MAX_AGE:
        errors.append(ValidationError("birth_date", f"Age must be between {MIN_AGE} and {MAX_AGE}"))
    return errors


def validate_reservation_type(draft: ReservationDraft) -> list[ValidationError]:
    try:
        draft.variant()
    except InvalidDraftError as exc:
        return [_rename_variant_error(err) for err in exc.errors]
    return []


def _rename_variant_error(err: ValidationError) -> ValidationError:
    # "party.menu_type" -> "menu_type": tagged-union locations carry the tag first.
    field = err.field.split(".", 1)[-1]
    if field == "menu_type":
        return ValidationError("menu_type", "Choose a menu type")
    return ValidationError(field, err.message)


def validate_reservation_details(draft: ReservationDraft, context: DetailsContext) -> list[ValidationError]:
    """
    Gate for leaving the details step. Availability must be resolved and open
    for the chosen date, the time must be one of its slots, and a requested
    panel must be confirmed available (unknown counts as blocking).
    """
    errors = validate_reservation_type(draft)

    if draft.reservation_date is None:
        errors.append(ValidationError("reservation_date", "Reservation date is required"))
    if not draft.desired_time:
        errors.append(ValidationError("desired_time", "Choose a time"))
    if draft.desired_location is None:
        errors.append(ValidationError("desired_location", "Please select a valid location"))

    if draft.reservation_date is not None:
        decision = context.decision
        if decision is None:
            errors.append(ValidationError("reservation_date", "Availability is still loading"))
        elif not decision.available:
            errors.append(ValidationError("reservation_date", decision.message or "Date not available"))
        elif draft.desired_time and draft.desired_time not in decision.time_slots:
            errors.append(ValidationError("desired_time", "Time not available for this date"))

    if context.panel.requested and context.panel.blocks:
        errors.append(ValidationError("panel_requested", context.panel.message or "Panel availability not confirmed"))
    return errors


def admission_errors(
    step: WizardStep,
    draft: ReservationDraft,
    *,
    today: date,
    context: DetailsContext,
) -> list[ValidationError]:
    if step == WizardStep.PERSONAL_DATA:
        return validate_personal_data(draft, today=today)
    if step == WizardStep.RESERVATION_DETAILS:
        return validate_reservation_details(draft, context)
    return []

from datetime import date, datetime
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .domain.errors import InvalidDraftError, ValidationError
from .models import Location, MenuType, PanelStatus, ReservationType, SubmissionStatus, WizardStep
from .utils.time import parse_hhmm


def _errors_from_pydantic(exc: PydanticValidationError) -> list[ValidationError]:
    errors: list[ValidationError] = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "draft"
        message = str(err["ctx"]["error"]) if err["type"] == "value_error" else err["msg"]
        errors.append(ValidationError(field, message))
    return errors


def _check_slot(slot: str) -> str:
    parse_hhmm(slot)
    return slot


TimeSlot = Annotated[str, AfterValidator(_check_slot)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class AvailabilityException(_CamelModel):
    day: date = Field(alias="date")
    time_slots: tuple[TimeSlot, ...] = ()
    message: str = ""


class AvailabilityConfig(_CamelModel):
    default_time_slots: tuple[TimeSlot, ...]
    blocked_dates: frozenset[date] = frozenset()
    blocked_weekdays: frozenset[int] = frozenset()
    exceptions: tuple[AvailabilityException, ...] = ()

    @field_validator("blocked_weekdays")
    @classmethod
    def _weekday_range(cls, value: frozenset[int]) -> frozenset[int]:
        bad = sorted(d for d in value if not 0 <= d <= 6)
        if bad:
            raise ValueError(f"weekdays must be 0..6 (0 = Sunday), got {bad}")
        return value

    @model_validator(mode="after")
    def _unique_exception_dates(self) -> "AvailabilityConfig":
        seen: set[date] = set()
        for exc in self.exceptions:
            if exc.day in seen:
                raise ValueError(f"duplicate exception for {exc.day.isoformat()}")
            seen.add(exc.day)
        return self

    def exception_for(self, day: date) -> Optional[AvailabilityException]:
        for exc in self.exceptions:
            if exc.day == day:
                return exc
        return None


DEFAULT_AVAILABILITY_CONFIG = AvailabilityConfig(
    default_time_slots=("18:00", "18:30", "19:00", "19:30", "20:00", "20:30"),
    blocked_dates=frozenset(),
    blocked_weekdays=frozenset({0}),
    exceptions=(),
)


class AvailabilityDecision(_CamelModel):
    available: bool
    time_slots: tuple[str, ...] = ()
    message: str = ""


# ---------------------------------------------------------------------------
# Panel
# ---------------------------------------------------------------------------


class PanelQuery(_CamelModel):
    day: date = Field(alias="date")
    party_size: int
    location: Location


class PanelAvailabilityResult(_CamelModel):
    available: bool
    slots_used: int = Field(
        default=0,
        ge=0,
        le=2,
        validation_alias=AliasChoices("slotsUsed", "slots_used", "count"),
    )
    message: str = ""


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------


class BirthdayReservation(BaseModel):
    kind: Literal["birthday"]
    panel_requested: bool = False
    panel_photo: Optional[str] = Field(default=None, validate_default=True)
    panel_notes: str = Field(default="", max_length=500, validate_default=True)

    @field_validator("panel_photo")
    @classmethod
    def _photo_with_panel(cls, value: Optional[str], info: ValidationInfo) -> Optional[str]:
        if info.data.get("panel_requested") and not (value or "").strip():
            raise ValueError("Send a photo for the panel")
        return value

    @field_validator("panel_notes")
    @classmethod
    def _notes_with_panel(cls, value: str, info: ValidationInfo) -> str:
        if info.data.get("panel_requested") and not value.strip():
            raise ValueError("Tell us what the panel should say")
        return value


class PartyReservation(BaseModel):
    kind: Literal["party"]
    menu_type: MenuType
    purchase_notes: str = Field(default="", max_length=500, validate_default=True)

    @field_validator("purchase_notes")
    @classmethod
    def _notes_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Purchase notes are required")
        return value


class MeetingReservation(BaseModel):
    kind: Literal["meeting"]


ReservationVariant = Annotated[
    Union[BirthdayReservation, PartyReservation, MeetingReservation],
    Field(discriminator="kind"),
]
_variant_adapter: TypeAdapter[Any] = TypeAdapter(ReservationVariant)


_BIRTHDAY_ONLY_FIELDS = {"panel_requested": False, "panel_photo": None, "panel_notes": ""}
_PARTY_ONLY_FIELDS = {"menu_type": None, "purchase_notes": ""}


class ReservationDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    email: str = ""
    phone: str = ""
    birth_date: Optional[date] = None
    reservation_type: Optional[ReservationType] = None
    panel_requested: bool = False
    panel_photo: Optional[str] = None
    panel_notes: str = Field(default="", max_length=500)
    menu_type: Optional[MenuType] = None
    purchase_notes: str = Field(default="", max_length=500)
    party_size: int = Field(default=1, ge=1, le=50)
    reservation_date: Optional[date] = None
    desired_time: str = ""
    desired_location: Optional[Location] = None
    notes: str = Field(default="", max_length=1000)

    @field_validator(
        "birth_date", "reservation_type", "menu_type", "reservation_date", "desired_location", mode="before"
    )
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _panel_only_for_birthday(self) -> "ReservationDraft":
        if self.panel_requested and self.reservation_type != ReservationType.BIRTHDAY:
            raise ValueError("panel can only be requested for birthday reservations")
        return self

    def apply(self, changes: Mapping[str, Any]) -> "ReservationDraft":
        """Return a new draft with `changes` applied.

        Fields that belong to another reservation type are cleared when the
        type changes, so a draft never carries a panel for a party, nor a menu
        for a birthday. Raises InvalidDraftError on unknown fields or broken
        invariants; the current draft is left untouched.
        """
        unknown = sorted(set(changes) - set(type(self).model_fields))
        if unknown:
            raise InvalidDraftError([ValidationError(name, "unknown field") for name in unknown])

        data = self.model_dump()
        data.update(changes)
        kind = data.get("reservation_type") or None
        if kind != ReservationType.BIRTHDAY:
            data.update(_BIRTHDAY_ONLY_FIELDS)
        if kind != ReservationType.PARTY:
            data.update(_PARTY_ONLY_FIELDS)
        try:
            return type(self).model_validate(data)
        except PydanticValidationError as exc:
            raise InvalidDraftError(_errors_from_pydantic(exc)) from exc

    def variant(self) -> Union[BirthdayReservation, PartyReservation, MeetingReservation]:
        if self.reservation_type is None:
            raise InvalidDraftError([ValidationError("reservation_type", "Choose a reservation type")])
        payload: dict[str, Any] = {"kind": self.reservation_type.value}
        if self.reservation_type == ReservationType.BIRTHDAY:
            payload.update(
                panel_requested=self.panel_requested,
                panel_photo=self.panel_photo,
                panel_notes=self.panel_notes,
            )
        elif self.reservation_type == ReservationType.PARTY:
            payload.update(menu_type=self.menu_type, purchase_notes=self.purchase_notes)
        try:
            return _variant_adapter.validate_python(payload)
        except PydanticValidationError as exc:
            raise InvalidDraftError(_errors_from_pydantic(exc)) from exc


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class PersonalDataBlock(_CamelModel):
    name: str
    email: str
    phone: str
    birth_date: date


class ReservationTypeBlock(_CamelModel):
    type: ReservationType
    panel_requested: bool
    panel_photo: Optional[str]
    panel_notes: Optional[str]
    menu_type: Optional[MenuType]
    purchase_notes: Optional[str]


class ReservationDetailsBlock(_CamelModel):
    party_size: int = Field(ge=1, le=50)
    reservation_date: date
    desired_time: str
    desired_location: Location
    notes: Optional[str]


class SubmissionRecord(_CamelModel):
    form_id: str
    timestamp: datetime
    personal_data: PersonalDataBlock
    reservation_type: ReservationTypeBlock
    reservation_details: ReservationDetailsBlock

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SubmissionResult(_CamelModel):
    success: bool
    message: str = ""


# ---------------------------------------------------------------------------
# HTTP views
# ---------------------------------------------------------------------------


class PanelView(BaseModel):
    status: PanelStatus
    reason: Optional[str] = None
    message: str = ""
    slots_used: Optional[int] = None
    slots_left: Optional[int] = None


class SubmissionView(BaseModel):
    status: SubmissionStatus
    error: Optional[str] = None
    pending_form_id: Optional[str] = None


class SessionSnapshot(BaseModel):
    session_id: str
    step: WizardStep
    draft: ReservationDraft
    availability: Optional[AvailabilityDecision] = None
    panel: PanelView
    submission: SubmissionView


class SubmitResponse(BaseModel):
    outcome: Literal["submitted", "queued"]
    form_id: str


class ReplayResponse(BaseModel):
    sent: int
    remaining: int

from __future__ import annotations


class ReservationFlowError(Exception):
    """Base class for errors raised by the reservation flow."""


class ValidationError(ReservationFlowError):
    """A single field-level problem, fixable by the user."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationError):
            return NotImplemented
        return (self.field, self.message) == (other.field, other.message)

    def __hash__(self) -> int:
        return hash((self.field, self.message))


class InvalidDraftError(ReservationFlowError):
    """A draft mutation would break one of the draft invariants."""

    def __init__(self, errors: list[ValidationError]) -> None:
        super().__init__("; ".join(str(e) for e in errors))
        self.errors = errors


class AvailabilityConfigError(ReservationFlowError):
    """Availability config could not be fetched or parsed."""


class AvailabilityUnresolved(ReservationFlowError):
    """Availability config has not been loaded yet."""


class EligibilityError(ReservationFlowError):
    """Remote panel capacity check failed; availability is unknown."""


class SubmissionError(ReservationFlowError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StepNotAllowedError(ReservationFlowError):
    """Operation requested from a wizard step that does not allow it."""

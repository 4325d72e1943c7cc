from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Collection, Optional

from ..models import Location, ReservationType


class PanelReason(StrEnum):
    TYPE_MISMATCH = "type_mismatch"
    NOT_REQUESTED = "not_requested"
    INSUFFICIENT_PARTY_SIZE = "insufficient_party_size"
    LOCATION_NOT_ELIGIBLE = "location_not_eligible"
    LIMIT_REACHED = "limit_reached"
    CHECK_FAILED = "check_failed"


@dataclass(frozen=True)
class PanelIneligibility:
    reason: PanelReason
    message: str


def limit_reached(max_concurrent: int) -> PanelIneligibility:
    return PanelIneligibility(
        PanelReason.LIMIT_REACHED,
        f"Panel unavailable for this date: limit of {max_concurrent} bookings reached",
    )


def check_local_eligibility(
    *,
    reservation_type: Optional[ReservationType],
    panel_requested: bool,
    party_size: int,
    location: Optional[Location],
    min_party_size: int,
    allowed_locations: Collection[Location],
) -> PanelIneligibility | None:
    """
    Local panel rules, no network. Returns None when a remote capacity check
    may be issued, otherwise the first rule that fails.
    """
    if reservation_type != ReservationType.BIRTHDAY:
        return PanelIneligibility(PanelReason.TYPE_MISMATCH, "The panel is only available for birthday reservations")
    if not panel_requested:
        return PanelIneligibility(PanelReason.NOT_REQUESTED, "No panel requested")
    if party_size < min_party_size:
        return PanelIneligibility(
            PanelReason.INSUFFICIENT_PARTY_SIZE,
            f"The panel requires at least {min_party_size} people",
        )
    if location is None or location not in allowed_locations:
        allowed = ", ".join(sorted(loc.value for loc in allowed_locations))
        return PanelIneligibility(
            PanelReason.LOCATION_NOT_ELIGIBLE,
            f"The panel can only be set up at: {allowed}",
        )
    return None

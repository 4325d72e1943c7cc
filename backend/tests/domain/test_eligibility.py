import pytest
from reservation_flow.domain.eligibility import PanelReason, check_local_eligibility, limit_reached
from reservation_flow.models import Location, ReservationType

ALLOWED = (Location.NEAR_STAGE, Location.OUTDOOR_AREA)


def _check(**overrides: object):
    kwargs: dict[str, object] = {
        "reservation_type": ReservationType.BIRTHDAY,
        "panel_requested": True,
        "party_size": 12,
        "location": Location.OUTDOOR_AREA,
        "min_party_size": 10,
        "allowed_locations": ALLOWED,
    }
    kwargs.update(overrides)
    return check_local_eligibility(**kwargs)  # type: ignore[arg-type]


def test_eligible_birthday_with_panel() -> None:
    assert _check() is None


def test_minimum_party_size_is_inclusive() -> None:
    assert _check(party_size=10) is None


def test_party_of_nine_is_rejected_for_size() -> None:
    result = _check(party_size=9, location=Location.NEAR_STAGE)
    assert result is not None
    assert result.reason == PanelReason.INSUFFICIENT_PARTY_SIZE
    assert "10" in result.message


def test_location_outside_allow_list_is_rejected() -> None:
    result = _check(location=Location.NEAR_PLAY)
    assert result is not None
    assert result.reason == PanelReason.LOCATION_NOT_ELIGIBLE


def test_missing_location_is_rejected() -> None:
    result = _check(location=None)
    assert result is not None
    assert result.reason == PanelReason.LOCATION_NOT_ELIGIBLE


@pytest.mark.parametrize("kind", [ReservationType.PARTY, ReservationType.MEETING, None])
def test_non_birthday_is_type_mismatch(kind: ReservationType | None) -> None:
    result = _check(reservation_type=kind)
    assert result is not None
    assert result.reason == PanelReason.TYPE_MISMATCH


def test_reasons_have_distinct_messages() -> None:
    messages = {
        _check(party_size=3).message,  # type: ignore[union-attr]
        _check(location=Location.NEAR_PLAY).message,  # type: ignore[union-attr]
        _check(reservation_type=ReservationType.MEETING).message,  # type: ignore[union-attr]
        limit_reached(2).message,
    }
    assert len(messages) == 4


def test_panel_not_requested() -> None:
    result = _check(panel_requested=False)
    assert result is not None
    assert result.reason == PanelReason.NOT_REQUESTED

from datetime import date, datetime

from ..schemas import AvailabilityConfig, AvailabilityDecision

PAST_DATE_MESSAGE = "Bookings cannot be made for past dates"
TODAY_CLOSED_MESSAGE = "Today's bookings are closed"
DATE_CLOSED_MESSAGE = "Date unavailable for bookings"
SUNDAY_CLOSED_MESSAGE = "We are closed on Sundays"
WEEKDAY_CLOSED_MESSAGE = "Day not available"

SUNDAY = 0


def weekday_sunday_first(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def _closed(message: str) -> AvailabilityDecision:
    return AvailabilityDecision(available=False, time_slots=(), message=message)


def resolve(
    day: date,
    now: datetime,
    config: AvailabilityConfig,
    *,
    cutoff_hour: int = 12,
) -> AvailabilityDecision:
    """
    Resolve whether `day` can be booked and which time slots it offers.

    Rules are checked in order and the first match wins: past date, same-day
    cutoff, dated exception, blocked date, blocked weekday, defaults. Exceptions
    come before both blocks so a special opening on a closed weekday holds.
    """
    today = now.date()
    if day < today:
        return _closed(PAST_DATE_MESSAGE)
    if day == today and now.hour >= cutoff_hour:
        return _closed(TODAY_CLOSED_MESSAGE)

    exception = config.exception_for(day)
    if exception is not None:
        if exception.time_slots:
            return AvailabilityDecision(
                available=True,
                time_slots=exception.time_slots,
                message=exception.message,
            )
        return _closed(exception.message or DATE_CLOSED_MESSAGE)

    if day in config.blocked_dates:
        return _closed(DATE_CLOSED_MESSAGE)

    weekday = weekday_sunday_first(day)
    if weekday in config.blocked_weekdays:
        return _closed(SUNDAY_CLOSED_MESSAGE if weekday == SUNDAY else WEEKDAY_CLOSED_MESSAGE)

    return AvailabilityDecision(available=True, time_slots=config.default_time_slots, message="")

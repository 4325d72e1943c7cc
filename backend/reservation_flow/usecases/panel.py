import asyncio
import logging
from typing import Collection, Optional

from ..domain.eligibility import PanelReason, check_local_eligibility, limit_reached
from ..domain.errors import EligibilityError
from ..domain.repositories import PanelCapacityChecker
from ..models import Location, PanelStatus
from ..schemas import AvailabilityDecision, PanelAvailabilityResult, PanelQuery, ReservationDraft
from .state import PanelState, SessionState

logger = logging.getLogger(__name__)

CHECK_FAILED_MESSAGE = "Could not verify panel availability, please try again"
DATE_FIRST_MESSAGE = "Choose an available date to check the panel"


class PanelEligibilityEngine:
    """
    Decides whether the birthday panel can be booked for the current draft.

    Local rules are evaluated synchronously on every notify(). When they pass
    and the date is open, a remote capacity check is scheduled after a
    quiescence window; a newer notify() cancels the pending timer. Every
    notify() bumps a sequence number and a remote result is applied only if
    its sequence is still the latest, so out-of-order replies are dropped.
    """

    def __init__(
        self,
        state: SessionState,
        checker: PanelCapacityChecker,
        *,
        debounce_seconds: float = 0.5,
        min_party_size: int = 10,
        allowed_locations: Collection[Location] = (Location.NEAR_STAGE, Location.OUTDOOR_AREA),
        max_concurrent: int = 2,
    ) -> None:
        self._state = state
        self._checker = checker
        self._debounce = debounce_seconds
        self._min_party_size = min_party_size
        self._allowed_locations = frozenset(allowed_locations)
        self._max_concurrent = max_concurrent
        self._sequence = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def pending(self) -> bool:
        return self._timer is not None or bool(self._inflight)

    def notify(self, draft: ReservationDraft, decision: Optional[AvailabilityDecision]) -> None:
        self._sequence += 1
        self._cancel_timer()

        if not draft.panel_requested:
            self._set(PanelState())
            return

        ineligible = check_local_eligibility(
            reservation_type=draft.reservation_type,
            panel_requested=draft.panel_requested,
            party_size=draft.party_size,
            location=draft.desired_location,
            min_party_size=self._min_party_size,
            allowed_locations=self._allowed_locations,
        )
        if ineligible is not None:
            self._set(PanelState(status=PanelStatus.INELIGIBLE, reason=ineligible.reason, message=ineligible.message))
            return

        day, location = draft.reservation_date, draft.desired_location
        if day is None or location is None or decision is None or not decision.available:
            message = decision.message if decision is not None and decision.message else DATE_FIRST_MESSAGE
            self._set(PanelState(status=PanelStatus.DATE_UNAVAILABLE, message=message))
            return

        query = PanelQuery(day=day, party_size=draft.party_size, location=location)
        self._set(PanelState(status=PanelStatus.CHECKING, query=query))
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._debounce, self._fire, self._sequence, query)

    def invalidate(self) -> None:
        """Forget the current query; late results for it are dropped."""
        self._sequence += 1
        self._cancel_timer()
        self._set(PanelState())

    async def settle(self) -> None:
        """Wait until no check is scheduled or in flight."""
        while self.pending:
            if self._inflight:
                await asyncio.gather(*list(self._inflight))
            else:
                await asyncio.sleep(self._debounce / 2)

    async def aclose(self) -> None:
        self._sequence += 1
        self._cancel_timer()
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, sequence: int, query: PanelQuery) -> None:
        self._timer = None
        if sequence != self._sequence:
            return
        task = asyncio.get_running_loop().create_task(self._run_check(sequence, query))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_check(self, sequence: int, query: PanelQuery) -> None:
        logger.debug("panel check #%d for %s", sequence, query)
        try:
            result = await self._checker.check_capacity(query.day, query.party_size, query.location)
        except EligibilityError as exc:
            if sequence != self._sequence:
                return
            logger.warning("panel capacity check failed: %s", exc)
            self._set(
                PanelState(
                    status=PanelStatus.ERROR,
                    reason=PanelReason.CHECK_FAILED,
                    message=CHECK_FAILED_MESSAGE,
                    query=query,
                )
            )
            return

        if sequence != self._sequence:
            logger.debug("discarding stale panel result #%d (latest #%d)", sequence, self._sequence)
            return
        self._set(self._state_from_result(result, query))

    def _state_from_result(self, result: PanelAvailabilityResult, query: PanelQuery) -> PanelState:
        if result.available and result.slots_used < self._max_concurrent:
            left = self._max_concurrent - result.slots_used
            return PanelState(
                status=PanelStatus.AVAILABLE,
                message=result.message or f"Available ({left} slot{'s' if left != 1 else ''} left)",
                slots_used=result.slots_used,
                query=query,
            )
        full = limit_reached(self._max_concurrent)
        return PanelState(
            status=PanelStatus.UNAVAILABLE,
            reason=full.reason,
            message=result.message or full.message,
            slots_used=result.slots_used,
            query=query,
        )

    def _set(self, panel: PanelState) -> None:
        self._state.panel = panel

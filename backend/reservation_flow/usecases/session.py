import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from functools import partial
from typing import Any, Callable, Mapping

from ..config import Settings
from ..domain.errors import InvalidDraftError, StepNotAllowedError, ValidationError
from ..domain.repositories import (
    ConnectivityProbe,
    KeyValueStore,
    OfflineQueue,
    PanelCapacityChecker,
    SubmissionGateway,
)
from ..domain.services import DetailsContext, admission_errors
from ..models import Location, SubmissionStatus, WizardStep
from ..schemas import SessionSnapshot, SubmissionRecord
from ..utils.request_id import generate_session_id
from .availability import AvailabilityConfigStore
from .panel import PanelEligibilityEngine
from .state import SessionState
from .submission import OfflineReplayer, SubmissionOutcome, SubmissionPipeline
from .wizard import WizardStateMachine

logger = logging.getLogger(__name__)

PANEL_TRIGGERS = frozenset(
    {"reservation_date", "party_size", "desired_location", "reservation_type", "panel_requested"}
)
_BUSY_STATUSES = (SubmissionStatus.SUBMITTING, SubmissionStatus.QUEUED, SubmissionStatus.SUCCEEDED)


class ReservationSession:
    """One user's wizard: draft mutations flow into availability, panel eligibility and the step gate."""

    def __init__(
        self,
        *,
        session_id: str,
        state: SessionState,
        availability: AvailabilityConfigStore,
        wizard: WizardStateMachine,
        panel: PanelEligibilityEngine,
        pipeline: SubmissionPipeline,
        clock: Callable[[], datetime],
    ) -> None:
        self.session_id = session_id
        self.state = state
        self.availability = availability
        self.wizard = wizard
        self.panel = panel
        self.pipeline = pipeline
        self._clock = clock
        # One mutation at a time: each ends with a write-through of the whole document.
        self._lock = asyncio.Lock()

    @classmethod
    def build(
        cls,
        session_id: str,
        *,
        settings: Settings,
        availability: AvailabilityConfigStore,
        store: KeyValueStore,
        queue: OfflineQueue,
        checker: PanelCapacityChecker,
        gateway: SubmissionGateway,
        connectivity: ConnectivityProbe,
        replayer: OfflineReplayer,
        clock: Callable[[], datetime],
    ) -> "ReservationSession":
        state = SessionState()
        panel = PanelEligibilityEngine(
            state,
            checker,
            debounce_seconds=settings.panel_debounce_ms / 1000,
            min_party_size=settings.panel_min_party_size,
            allowed_locations=[Location(value) for value in settings.panel_allowed_locations],
            max_concurrent=settings.panel_max_concurrent,
        )
        wizard = WizardStateMachine(
            state,
            store,
            session_id=session_id,
            reset_delay=settings.reset_delay_seconds,
            on_reset=panel.invalidate,
        )
        pipeline = SubmissionPipeline(state, wizard, gateway, queue, connectivity, replayer)
        return cls(
            session_id=session_id,
            state=state,
            availability=availability,
            wizard=wizard,
            panel=panel,
            pipeline=pipeline,
            clock=clock,
        )

    async def start(self) -> None:
        await self.wizard.start()
        self._refresh_availability()
        self.panel.notify(self.state.draft, self.state.availability)
        await self.pipeline.sync_pending()

    async def update_draft(self, changes: Mapping[str, Any]) -> set[str]:
        async with self._lock:
            changed = await self.wizard.update(changes)
            if "reservation_date" in changed:
                self._refresh_availability()
            if changed & PANEL_TRIGGERS:
                self.panel.notify(self.state.draft, self.state.availability)
            return changed

    def admission_errors(self) -> list[ValidationError]:
        self._refresh_availability()
        return admission_errors(
            self.state.step,
            self.state.draft,
            today=self._clock().date(),
            context=DetailsContext(decision=self.state.availability, panel=self.state.panel_gate()),
        )

    async def try_advance(self) -> list[ValidationError]:
        async with self._lock:
            errors = self.admission_errors()
            if not errors:
                await self.wizard.advance()
            return errors

    async def retreat(self) -> WizardStep:
        async with self._lock:
            return await self.wizard.retreat()

    async def reset(self) -> None:
        async with self._lock:
            await self.wizard.reset()

    async def submit(self) -> tuple[SubmissionOutcome, SubmissionRecord]:
        async with self._lock:
            return await self._submit()

    async def _submit(self) -> tuple[SubmissionOutcome, SubmissionRecord]:
        if self.state.step != WizardStep.SUMMARY:
            raise StepNotAllowedError("submission is only possible from the summary step")
        if self.state.submission in _BUSY_STATUSES:
            raise StepNotAllowedError(f"submission already {self.state.submission.value}")

        self._refresh_availability()
        today = self._clock().date()
        context = DetailsContext(decision=self.state.availability, panel=self.state.panel_gate())
        errors = [
            *admission_errors(WizardStep.PERSONAL_DATA, self.state.draft, today=today, context=context),
            *admission_errors(WizardStep.RESERVATION_DETAILS, self.state.draft, today=today, context=context),
        ]
        if errors:
            raise InvalidDraftError(errors)
        return await self.pipeline.submit()

    async def sync_pending(self) -> None:
        async with self._lock:
            await self.pipeline.sync_pending()

    async def snapshot_for_exit(self) -> None:
        async with self._lock:
            if self.state.submission == SubmissionStatus.SUCCEEDED:
                # The delayed reset would not survive the exit; clear now instead.
                await self.wizard.reset()
                return
            await self.wizard.snapshot_for_exit()

    async def aclose(self) -> None:
        await self.panel.aclose()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            step=self.state.step,
            draft=self.state.draft,
            availability=self.state.availability,
            panel=self.state.panel_view(max_concurrent=self.panel.max_concurrent),
            submission=self.state.submission_view(),
        )

    def _refresh_availability(self) -> None:
        day = self.state.draft.reservation_date
        if day is None or not self.availability.loaded:
            self.state.availability = None
            return
        self.state.availability = self.availability.resolve_for(day, self._clock())


class SessionRegistry:
    """
    Live sessions of this process, keyed by session id.

    At most max_sessions are kept; the least recently used one is flushed
    with a crash snapshot and dropped, and a session leaves as soon as its
    post-submission reset has run. Either way the next request for the id
    starts it again from storage.
    """

    def __init__(
        self,
        factory: Callable[[str], ReservationSession],
        replayer: OfflineReplayer,
        *,
        max_sessions: int = 1000,
    ) -> None:
        self._factory = factory
        self._replayer = replayer
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[str, ReservationSession] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def create(self) -> ReservationSession:
        return await self.get_or_start(generate_session_id())

    async def get_or_start(self, session_id: str) -> ReservationSession:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
                return session

            session = self._factory(session_id)
            session.wizard.on_completed = partial(self._forget, session_id, session)
            await session.start()
            self._sessions[session_id] = session
            while len(self._sessions) > self._max_sessions:
                evicted_id, evicted = self._sessions.popitem(last=False)
                logger.info("evicting least recently used session %s", evicted_id)
                await evicted.snapshot_for_exit()
                await evicted.aclose()
            return session

    async def replay_offline_queue(self) -> tuple[int, int]:
        delivered = await self._replayer.replay()
        for session in list(self._sessions.values()):
            await session.sync_pending()
        return len(delivered), len(await self._replayer.pending_ids())

    async def shutdown(self) -> None:
        for session in list(self._sessions.values()):
            await session.snapshot_for_exit()
            await session.aclose()
        self._sessions.clear()

    async def _forget(self, session_id: str, session: ReservationSession) -> None:
        if self._sessions.get(session_id) is session:
            del self._sessions[session_id]
        await session.aclose()

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from ..domain.errors import InvalidDraftError, SubmissionError, ValidationError
from ..domain.repositories import ConnectivityProbe, OfflineQueue, SubmissionGateway
from ..models import SubmissionStatus
from ..schemas import (
    PersonalDataBlock,
    ReservationDetailsBlock,
    ReservationDraft,
    ReservationTypeBlock,
    SubmissionRecord,
)
from ..utils.event_log import emit_flow_event
from .state import SessionState
from .wizard import WizardStateMachine

logger = logging.getLogger(__name__)

NOT_ACCEPTED_MESSAGE = "Reservation was not accepted, please try again"


class SubmissionOutcome(StrEnum):
    SUBMITTED = "submitted"
    QUEUED = "queued"


def build_submission_record(draft: ReservationDraft, *, now: Optional[datetime] = None) -> SubmissionRecord:
    """Assemble the payload for the submission endpoint; a new form id every call."""
    birth_date, kind = draft.birth_date, draft.reservation_type
    day, location = draft.reservation_date, draft.desired_location
    if birth_date is None or kind is None or day is None or location is None:
        required = {
            "birth_date": birth_date,
            "reservation_type": kind,
            "reservation_date": day,
            "desired_location": location,
        }
        raise InvalidDraftError(
            [ValidationError(name, "required for submission") for name, value in required.items() if value is None]
        )

    return SubmissionRecord(
        form_id=str(uuid.uuid4()),
        timestamp=now or datetime.now(timezone.utc),
        personal_data=PersonalDataBlock(
            name=draft.name,
            email=draft.email,
            phone=draft.phone,
            birth_date=birth_date,
        ),
        reservation_type=ReservationTypeBlock(
            type=kind,
            panel_requested=draft.panel_requested,
            panel_photo=draft.panel_photo or None,
            panel_notes=draft.panel_notes or None,
            menu_type=draft.menu_type,
            purchase_notes=draft.purchase_notes or None,
        ),
        reservation_details=ReservationDetailsBlock(
            party_size=draft.party_size,
            reservation_date=day,
            desired_time=draft.desired_time,
            desired_location=location,
            notes=draft.notes or None,
        ),
    )


class OfflineReplayer:
    """Replays queued submissions. One instance per process so drains never overlap."""

    def __init__(self, gateway: SubmissionGateway, queue: OfflineQueue, connectivity: ConnectivityProbe) -> None:
        self._gateway = gateway
        self._queue = queue
        self._connectivity = connectivity
        self._lock = asyncio.Lock()

    async def pending_ids(self) -> list[str]:
        return [record.form_id for record in await self._queue.peek()]

    async def replay(self) -> list[str]:
        """Drain queued records in FIFO order, stopping at the first failure. Returns the delivered form ids."""
        async with self._lock:
            if not await self._connectivity.is_online():
                return []
            delivered: list[str] = []
            for record in await self._queue.peek():
                try:
                    result = await self._gateway.submit(record)
                    if not result.success:
                        raise SubmissionError(result.message or NOT_ACCEPTED_MESSAGE)
                except SubmissionError as exc:
                    logger.warning("offline replay stopped at %s: %s", record.form_id, exc.message)
                    break
                await self._queue.dequeue(record.form_id)
                delivered.append(record.form_id)
                emit_flow_event(action="submission.replayed", form_id=record.form_id)
            return delivered


class SubmissionPipeline:
    def __init__(
        self,
        state: SessionState,
        wizard: WizardStateMachine,
        gateway: SubmissionGateway,
        queue: OfflineQueue,
        connectivity: ConnectivityProbe,
        replayer: Optional[OfflineReplayer] = None,
    ) -> None:
        self._state = state
        self._wizard = wizard
        self._gateway = gateway
        self._queue = queue
        self._connectivity = connectivity
        self._replayer = replayer or OfflineReplayer(gateway, queue, connectivity)

    async def submit(self) -> tuple[SubmissionOutcome, SubmissionRecord]:
        """
        Send the current draft. Offline, the record is queued for replay and
        nothing else changes. Online failures keep the draft, set the failed
        status and raise SubmissionError; there is no automatic retry.
        """
        record = build_submission_record(self._state.draft)

        if not await self._connectivity.is_online():
            await self._queue.enqueue(record)
            self._state.submission = SubmissionStatus.QUEUED
            self._state.submission_error = None
            self._state.pending_form_id = record.form_id
            await self._wizard.save()
            emit_flow_event(action="submission.queued", form_id=record.form_id, status=self._state.submission)
            return SubmissionOutcome.QUEUED, record

        self._state.submission = SubmissionStatus.SUBMITTING
        self._state.submission_error = None
        try:
            result = await self._gateway.submit(record)
            if not result.success:
                raise SubmissionError(result.message or NOT_ACCEPTED_MESSAGE)
        except SubmissionError as exc:
            self._state.submission = SubmissionStatus.FAILED
            self._state.submission_error = exc.message
            emit_flow_event(
                action="submission.failed",
                form_id=record.form_id,
                status=self._state.submission,
                message=exc.message,
            )
            raise

        self._mark_succeeded()
        emit_flow_event(action="submission.sent", form_id=record.form_id, status=self._state.submission)
        return SubmissionOutcome.SUBMITTED, record

    async def replay_offline_queue(self) -> int:
        """Drain the offline queue; returns how many records were delivered."""
        delivered = await self._replayer.replay()
        if self._state.pending_form_id in delivered:
            self._mark_succeeded()
        return len(delivered)

    async def sync_pending(self) -> None:
        """After a restore, settle a queued submission that was delivered meanwhile."""
        if self._state.pending_form_id is None:
            return
        if self._state.pending_form_id not in await self._replayer.pending_ids():
            self._mark_succeeded()

    def _mark_succeeded(self) -> None:
        self._state.submission = SubmissionStatus.SUCCEEDED
        self._state.submission_error = None
        self._state.pending_form_id = None
        self._wizard.schedule_reset()

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from ..domain.repositories import KeyValueStore
from ..models import SubmissionStatus, WizardStep
from ..schemas import ReservationDraft
from ..utils.event_log import emit_flow_event
from .state import PanelState, SessionState

logger = logging.getLogger(__name__)

DRAFT_KEY = "reservation-storage"
BACKUP_KEY = "reservation-form-backup"


def storage_keys(session_id: Optional[str]) -> tuple[str, str]:
    if not session_id:
        return DRAFT_KEY, BACKUP_KEY
    return f"{session_id}:{DRAFT_KEY}", f"{session_id}:{BACKUP_KEY}"


class WizardStateMachine:
    """
    Step sequencing and draft lifecycle for one session.

    Every mutation writes the whole {step, draft, pendingFormId} document
    through to the store. advance()/retreat() are unconditional clamped moves; callers check
    the admission gate first.
    """

    def __init__(
        self,
        state: SessionState,
        store: KeyValueStore,
        *,
        session_id: Optional[str] = None,
        reset_delay: float = 3.0,
        on_reset: Optional[Callable[[], None]] = None,
    ) -> None:
        self._state = state
        self._store = store
        self._draft_key, self._backup_key = storage_keys(session_id)
        self._reset_delay = reset_delay
        self._on_reset = on_reset
        self._reset_task: Optional[asyncio.Task[None]] = None
        # Awaited after the post-submission reset has cleared the session.
        self.on_completed: Optional[Callable[[], Awaitable[None]]] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pending_reset(self) -> Optional[asyncio.Task[None]]:
        return self._reset_task

    async def start(self) -> None:
        """Restore the persisted draft; a crash-recovery snapshot wins and is consumed."""
        step = WizardStep.PERSONAL_DATA
        draft = ReservationDraft()
        pending_form_id: Optional[str] = None
        source: Optional[str] = None

        document = await self._store.get(self._draft_key)
        if document is not None:
            try:
                step = WizardStep(int(document["step"]))
                draft = ReservationDraft.model_validate(document["draft"])
                pending_form_id = document.get("pendingFormId")
                source = "storage"
            except (AttributeError, KeyError, TypeError, ValueError, PydanticValidationError) as exc:
                logger.warning("ignoring unreadable persisted draft: %s", exc)
                step, draft, pending_form_id = WizardStep.PERSONAL_DATA, ReservationDraft(), None

        backup = await self._store.get(self._backup_key)
        if backup is not None:
            try:
                draft = ReservationDraft.model_validate(backup)
                source = "backup"
            except PydanticValidationError as exc:
                logger.warning("ignoring unreadable draft snapshot: %s", exc)

        self._state.draft = draft
        self._state.step = step
        self._state.pending_form_id = pending_form_id
        if pending_form_id is not None:
            self._state.submission = SubmissionStatus.QUEUED
        if source == "backup":
            await self.save()
        if backup is not None:
            await self._store.remove(self._backup_key)
        if source is not None:
            emit_flow_event(action="draft.restored", step=step, extra={"source": source})

    async def update(self, changes: Mapping[str, Any]) -> set[str]:
        """Apply field changes; returns the names of fields whose value changed."""
        current = self._state.draft
        updated = current.apply(changes)
        changed = {name for name in type(updated).model_fields if getattr(updated, name) != getattr(current, name)}
        if changed:
            self._state.draft = updated
            await self.save()
        return changed

    async def advance(self) -> WizardStep:
        target = WizardStep(min(self._state.step + 1, WizardStep.SUMMARY))
        return await self._move_to(target)

    async def retreat(self) -> WizardStep:
        target = WizardStep(max(self._state.step - 1, WizardStep.PERSONAL_DATA))
        return await self._move_to(target)

    async def snapshot_for_exit(self) -> None:
        await self._store.set(self._backup_key, self._state.draft.model_dump(mode="json"))

    def schedule_reset(self) -> asyncio.Task[None]:
        self.cancel_pending_reset()
        self._reset_task = asyncio.get_running_loop().create_task(self._reset_later())
        return self._reset_task

    def cancel_pending_reset(self) -> None:
        if self._reset_task is not None and not self._reset_task.done():
            self._reset_task.cancel()
        self._reset_task = None

    async def reset(self) -> None:
        self.cancel_pending_reset()
        await self._clear()

    async def _reset_later(self) -> None:
        await asyncio.sleep(self._reset_delay)
        await self._clear()
        if self.on_completed is not None:
            await self.on_completed()

    async def _clear(self) -> None:
        self._state.draft = ReservationDraft()
        self._state.step = WizardStep.PERSONAL_DATA
        self._state.availability = None
        self._state.panel = PanelState()
        self._state.submission = SubmissionStatus.IDLE
        self._state.submission_error = None
        self._state.pending_form_id = None
        if self._on_reset is not None:
            self._on_reset()
        await self._store.remove(self._draft_key)
        await self._store.remove(self._backup_key)
        emit_flow_event(action="draft.reset", step=WizardStep.PERSONAL_DATA)

    async def _move_to(self, target: WizardStep) -> WizardStep:
        if target != self._state.step:
            self._state.step = target
            await self.save()
        return self._state.step

    async def save(self) -> None:
        """Write the whole session document in one store call."""
        await self._store.set(
            self._draft_key,
            {
                "step": int(self._state.step),
                "draft": self._state.draft.model_dump(mode="json"),
                "pendingFormId": self._state.pending_form_id,
            },
        )

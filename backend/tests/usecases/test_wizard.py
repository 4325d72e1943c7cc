import asyncio
from typing import Any

import pytest
from reservation_flow.domain.errors import InvalidDraftError
from reservation_flow.models import SubmissionStatus, WizardStep
from reservation_flow.usecases.state import SessionState
from reservation_flow.usecases.wizard import BACKUP_KEY, DRAFT_KEY, WizardStateMachine, storage_keys


class InMemoryStore:
    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(data or {})
        self.writes: list[str] = []

    async def get(self, key: str) -> Any | None:
        return self.data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.writes.append(key)
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


class UnwritableStore(InMemoryStore):
    async def set(self, key: str, value: Any) -> None:
        raise ConnectionError("store went away")


def _wizard(store: InMemoryStore, **kwargs: Any) -> WizardStateMachine:
    return WizardStateMachine(SessionState(), store, **kwargs)


def test_storage_keys_are_scoped_by_session() -> None:
    assert storage_keys(None) == (DRAFT_KEY, BACKUP_KEY)
    assert storage_keys("abc") == ("abc:reservation-storage", "abc:reservation-form-backup")


@pytest.mark.asyncio
async def test_start_on_empty_store_gives_blank_draft() -> None:
    store = InMemoryStore()
    wizard = _wizard(store)
    await wizard.start()
    assert wizard.state.step == WizardStep.PERSONAL_DATA
    assert wizard.state.draft.name == ""
    assert store.writes == []


@pytest.mark.asyncio
async def test_update_writes_whole_document_through() -> None:
    store = InMemoryStore()
    wizard = _wizard(store)
    await wizard.start()
    changed = await wizard.update({"name": "Ana Souza", "party_size": 4})
    assert changed == {"name", "party_size"}
    document = store.data[DRAFT_KEY]
    assert document["step"] == 1
    assert document["draft"]["name"] == "Ana Souza"
    assert document["draft"]["party_size"] == 4
    assert document["pendingFormId"] is None


@pytest.mark.asyncio
async def test_update_without_changes_does_not_write() -> None:
    store = InMemoryStore()
    wizard = _wizard(store)
    await wizard.update({"name": "Ana"})
    store.writes.clear()
    assert await wizard.update({"name": "Ana"}) == set()
    assert store.writes == []


@pytest.mark.asyncio
async def test_invalid_update_leaves_draft_untouched() -> None:
    store = InMemoryStore()
    wizard = _wizard(store)
    await wizard.update({"party_size": 5})
    with pytest.raises(InvalidDraftError):
        await wizard.update({"party_size": 0})
    assert wizard.state.draft.party_size == 5
    assert store.data[DRAFT_KEY]["draft"]["party_size"] == 5


@pytest.mark.asyncio
async def test_steps_are_clamped() -> None:
    store = InMemoryStore()
    wizard = _wizard(store)
    assert await wizard.retreat() == WizardStep.PERSONAL_DATA
    assert await wizard.advance() == WizardStep.RESERVATION_DETAILS
    assert await wizard.advance() == WizardStep.SUMMARY
    assert await wizard.advance() == WizardStep.SUMMARY
    assert store.data[DRAFT_KEY]["step"] == 3
    assert await wizard.retreat() == WizardStep.RESERVATION_DETAILS


@pytest.mark.asyncio
async def test_restart_restores_step_and_draft() -> None:
    store = InMemoryStore()
    first = _wizard(store)
    await first.update({"name": "Ana Souza"})
    await first.advance()

    second = _wizard(store)
    await second.start()
    assert second.state.step == WizardStep.RESERVATION_DETAILS
    assert second.state.draft.name == "Ana Souza"


@pytest.mark.asyncio
async def test_backup_wins_and_is_consumed() -> None:
    store = InMemoryStore()
    first = _wizard(store)
    await first.update({"name": "Stored"})
    await first.advance()
    first.state.draft = first.state.draft.apply({"name": "Unsaved edit"})
    await first.snapshot_for_exit()
    assert BACKUP_KEY in store.data

    second = _wizard(store)
    await second.start()
    assert second.state.draft.name == "Unsaved edit"
    assert second.state.step == WizardStep.RESERVATION_DETAILS
    assert BACKUP_KEY not in store.data
    assert store.data[DRAFT_KEY]["draft"]["name"] == "Unsaved edit"


@pytest.mark.asyncio
async def test_backup_is_kept_when_restore_cannot_write_through() -> None:
    store = InMemoryStore()
    first = _wizard(store)
    await first.update({"name": "Stored"})
    first.state.draft = first.state.draft.apply({"name": "Unsaved edit"})
    await first.snapshot_for_exit()

    broken = UnwritableStore(store.data)
    with pytest.raises(ConnectionError):
        await _wizard(broken).start()
    assert broken.data[BACKUP_KEY]["name"] == "Unsaved edit"

    recovered = _wizard(InMemoryStore(broken.data))
    await recovered.start()
    assert recovered.state.draft.name == "Unsaved edit"


@pytest.mark.asyncio
async def test_unreadable_document_is_ignored() -> None:
    store = InMemoryStore({DRAFT_KEY: {"step": 7, "draft": "garbage"}})
    wizard = _wizard(store)
    await wizard.start()
    assert wizard.state.step == WizardStep.PERSONAL_DATA
    assert wizard.state.draft.name == ""


@pytest.mark.asyncio
async def test_pending_form_id_restores_queued_status() -> None:
    store = InMemoryStore()
    first = _wizard(store)
    first.state.pending_form_id = "form-1"
    await first.save()

    second = _wizard(store)
    await second.start()
    assert second.state.pending_form_id == "form-1"
    assert second.state.submission == SubmissionStatus.QUEUED


@pytest.mark.asyncio
async def test_scheduled_reset_clears_state_and_storage() -> None:
    store = InMemoryStore()
    resets: list[bool] = []
    wizard = _wizard(store, reset_delay=0, on_reset=lambda: resets.append(True))
    await wizard.update({"name": "Ana Souza"})
    await wizard.advance()
    wizard.state.submission = SubmissionStatus.SUCCEEDED

    await wizard.schedule_reset()
    assert wizard.state.step == WizardStep.PERSONAL_DATA
    assert wizard.state.draft.name == ""
    assert wizard.state.submission == SubmissionStatus.IDLE
    assert DRAFT_KEY not in store.data
    assert resets == [True]


@pytest.mark.asyncio
async def test_manual_reset_cancels_scheduled_one() -> None:
    store = InMemoryStore()
    resets: list[bool] = []
    wizard = _wizard(store, reset_delay=60, on_reset=lambda: resets.append(True))
    task = wizard.schedule_reset()
    await wizard.reset()
    assert wizard.pending_reset is None
    assert resets == [True]
    await asyncio.sleep(0)
    assert task.cancelled()

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, List

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain.repositories import KeyValueStore, OfflineQueue
from ..models import QueuedSubmission, StoredEntry
from ..schemas import SubmissionRecord


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Dialects with INSERT .. ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


class SqlAlchemyKeyValueStore(KeyValueStore):
    """JSON values under string keys; each call runs in its own transaction."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self.sessionmaker = sessionmaker

    async def get(self, key: str) -> Any | None:
        async with self.sessionmaker() as session:
            entry = await session.get(StoredEntry, key)
            if entry is None:
                return None
            return json.loads(entry.value)

    async def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, ensure_ascii=False)
        now = _utc_now_naive()
        async with self.sessionmaker() as session, session.begin():
            dialect = session.get_bind().dialect.name
            if dialect not in _UPSERT_INSERTS:
                raise NotImplementedError(f"no upsert for the {dialect} dialect")
            stmt = _UPSERT_INSERTS[dialect](StoredEntry).values(key=key, value=encoded, updated_at=now)
            stmt = stmt.on_conflict_do_update(
                index_elements=[StoredEntry.key],
                set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
            )
            await session.execute(stmt)

    async def remove(self, key: str) -> None:
        async with self.sessionmaker() as session, session.begin():
            await session.execute(delete(StoredEntry).where(StoredEntry.key == key))


class SqlAlchemyOfflineQueue(OfflineQueue):
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self.sessionmaker = sessionmaker

    async def enqueue(self, record: SubmissionRecord) -> None:
        async with self.sessionmaker() as session, session.begin():
            session.add(
                QueuedSubmission(
                    form_id=record.form_id,
                    payload=json.dumps(record.to_wire(), ensure_ascii=False),
                    enqueued_at=_utc_now_naive(),
                )
            )

    async def peek(self) -> List[SubmissionRecord]:
        async with self.sessionmaker() as session:
            rows = await session.scalars(select(QueuedSubmission).order_by(QueuedSubmission.id))
            return [SubmissionRecord.model_validate(json.loads(row.payload)) for row in rows]

    async def dequeue(self, form_id: str) -> None:
        async with self.sessionmaker() as session, session.begin():
            await session.execute(delete(QueuedSubmission).where(QueuedSubmission.form_id == form_id))

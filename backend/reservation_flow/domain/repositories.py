from __future__ import annotations

from datetime import date
from typing import Any, Protocol

from ..models import Location
from ..schemas import AvailabilityConfig, PanelAvailabilityResult, SubmissionRecord, SubmissionResult


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


class OfflineQueue(Protocol):
    async def enqueue(self, record: SubmissionRecord) -> None: ...

    async def peek(self) -> list[SubmissionRecord]: ...

    async def dequeue(self, form_id: str) -> None: ...


class AvailabilityConfigSource(Protocol):
    async def load(self) -> AvailabilityConfig: ...


class PanelCapacityChecker(Protocol):
    async def check_capacity(self, day: date, party_size: int, location: Location) -> PanelAvailabilityResult: ...


class SubmissionGateway(Protocol):
    async def submit(self, record: SubmissionRecord) -> SubmissionResult: ...


class ConnectivityProbe(Protocol):
    async def is_online(self) -> bool: ...

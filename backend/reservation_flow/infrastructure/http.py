from __future__ import annotations

from datetime import date
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..domain.errors import AvailabilityConfigError, EligibilityError, SubmissionError
from ..domain.repositories import (
    AvailabilityConfigSource,
    ConnectivityProbe,
    PanelCapacityChecker,
    SubmissionGateway,
)
from ..models import Location
from ..schemas import AvailabilityConfig, PanelAvailabilityResult, SubmissionRecord, SubmissionResult

SUBMISSION_FAILED_MESSAGE = "Error sending reservation"


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return default


class HttpAvailabilityConfigSource(AvailabilityConfigSource):
    def __init__(self, client: httpx.AsyncClient, path: str = "/availability-config") -> None:
        self.client = client
        self.path = path

    async def load(self) -> AvailabilityConfig:
        try:
            response = await self.client.get(self.path)
            response.raise_for_status()
            return AvailabilityConfig.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            # pydantic's ValidationError is a ValueError too
            raise AvailabilityConfigError(str(exc)) from exc


class HttpPanelCapacityChecker(PanelCapacityChecker):
    def __init__(self, client: httpx.AsyncClient, path: str = "/panel-availability") -> None:
        self.client = client
        self.path = path

    async def check_capacity(self, day: date, party_size: int, location: Location) -> PanelAvailabilityResult:
        params = {"date": day.isoformat(), "partySize": party_size, "location": location.value}
        try:
            response = await self.client.get(self.path, params=params)
        except httpx.HTTPError as exc:
            raise EligibilityError(f"panel capacity check failed: {exc}") from exc
        if response.is_error:
            raise EligibilityError(_error_message(response, f"panel capacity check returned {response.status_code}"))
        try:
            return PanelAvailabilityResult.model_validate(response.json())
        except (PydanticValidationError, ValueError) as exc:
            raise EligibilityError("unexpected panel capacity response") from exc


class HttpSubmissionGateway(SubmissionGateway):
    def __init__(self, client: httpx.AsyncClient, path: str = "/reservations") -> None:
        self.client = client
        self.path = path

    async def submit(self, record: SubmissionRecord) -> SubmissionResult:
        try:
            response = await self.client.post(self.path, json=record.to_wire())
        except httpx.HTTPError as exc:
            raise SubmissionError(SUBMISSION_FAILED_MESSAGE) from exc
        if response.is_error:
            raise SubmissionError(_error_message(response, SUBMISSION_FAILED_MESSAGE))
        try:
            return SubmissionResult.model_validate(response.json())
        except (PydanticValidationError, ValueError) as exc:
            raise SubmissionError("unexpected response from reservation service") from exc


class HttpConnectivityProbe(ConnectivityProbe):
    """Online means the collaborator host answers at all, whatever the status."""

    def __init__(self, client: httpx.AsyncClient, path: str = "/") -> None:
        self.client = client
        self.path = path

    async def is_online(self) -> bool:
        try:
            await self.client.head(self.path)
        except httpx.TransportError:
            return False
        return True


class StaticConnectivity(ConnectivityProbe):
    def __init__(self, online: bool = True) -> None:
        self.online = online

    async def is_online(self) -> bool:
        return self.online


def build_client(base_url: str, *, timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url, timeout=timeout)

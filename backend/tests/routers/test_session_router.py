import json
from datetime import date, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from reservation_flow.config import Settings
from reservation_flow.database import create_tables
from reservation_flow.infrastructure.http import HttpAvailabilityConfigSource
from reservation_flow.main import build_registry
from reservation_flow.routers import availability, offline, sessions
from reservation_flow.schemas import AvailabilityConfig
from reservation_flow.usecases.availability import AvailabilityConfigStore
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

NOW = datetime(2030, 6, 3, 9, 0)

PERSONAL = {
    "name": "Ana Souza",
    "email": "ana@example.com",
    "phone": "(11) 98765-4321",
    "birth_date": "1990-05-20",
}
MEETING = {
    "reservation_type": "meeting",
    "party_size": 4,
    "reservation_date": "2030-06-04",
    "desired_time": "18:00",
    "desired_location": "near_play",
}


class Collaborator:
    """Stands in for the remote booking service behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.online = True
        self.received: list[dict[str, Any]] = []
        self.config = {"defaultTimeSlots": ["18:00", "19:00"], "blockedWeekdays": [0]}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("offline", request=request)
        if request.method == "HEAD":
            return httpx.Response(200)
        if request.url.path == "/availability-config":
            return httpx.Response(200, json=self.config)
        if request.url.path == "/panel-availability":
            return httpx.Response(200, json={"available": True, "slotsUsed": 0})
        if request.url.path == "/reservations":
            self.received.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404)


class NeverLoadedSource:
    async def load(self) -> AvailabilityConfig:  # pragma: no cover
        raise AssertionError("not expected to load")


class App:
    def __init__(self, tmp_path: Path) -> None:
        self.tmp_path = tmp_path
        self.collaborator = Collaborator()

    async def __aenter__(self) -> AsyncClient:
        self.engine = create_async_engine(f"sqlite+aiosqlite:///{self.tmp_path / 'flow.db'}")
        await create_tables(bind=self.engine)
        sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)
        self.http = httpx.AsyncClient(
            transport=httpx.MockTransport(self.collaborator),
            base_url="http://collaborator.test",
        )
        store = AvailabilityConfigStore(HttpAvailabilityConfigSource(self.http))
        await store.load()
        settings = Settings(panel_debounce_ms=10, reset_delay_seconds=0)
        self.registry = build_registry(
            settings,
            sessionmaker=sessionmaker,
            client=self.http,
            availability=store,
            clock=lambda: NOW,
        )

        app = FastAPI()
        app.state.availability = store
        app.state.registry = self.registry
        app.include_router(sessions.router)
        app.include_router(availability.router)
        app.include_router(offline.router)
        self.client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        return self.client

    async def __aexit__(self, *exc: object) -> None:
        await self.client.aclose()
        await self.registry.shutdown()
        await self.http.aclose()
        await self.engine.dispose()


def _headers(session_id: str) -> dict[str, str]:
    return {"X-Session-Id": session_id}


@pytest.mark.asyncio
async def test_create_session_returns_blank_snapshot(tmp_path: Path) -> None:
    async with App(tmp_path) as client:
        resp = await client.post("/sessions")
    assert resp.status_code == 201
    body = resp.json()
    assert body["session_id"]
    assert body["step"] == 1
    assert body["submission"]["status"] == "idle"
    assert body["panel"]["status"] == "idle"


@pytest.mark.asyncio
async def test_session_header_is_required_and_checked(tmp_path: Path) -> None:
    async with App(tmp_path) as client:
        missing = await client.get("/session")
        bad = await client.get("/session", headers=_headers("not a valid id!"))
    assert missing.status_code == 401
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_invalid_draft_change_is_422_with_field_errors(tmp_path: Path) -> None:
    async with App(tmp_path) as client:
        resp = await client.patch("/session/draft", json={"party_size": 99}, headers=_headers("s1"))
        snapshot = await client.get("/session", headers=_headers("s1"))
    assert resp.status_code == 422
    assert [e["field"] for e in resp.json()["detail"]] == ["party_size"]
    assert snapshot.json()["draft"]["party_size"] == 1


@pytest.mark.asyncio
async def test_advance_reports_gate_errors(tmp_path: Path) -> None:
    async with App(tmp_path) as client:
        resp = await client.post("/session/advance", headers=_headers("s1"))
    assert resp.status_code == 422
    assert {e["field"] for e in resp.json()["detail"]} == {"name", "email", "phone", "birth_date"}


@pytest.mark.asyncio
async def test_submit_before_summary_is_conflict(tmp_path: Path) -> None:
    async with App(tmp_path) as client:
        resp = await client.post("/session/submit", headers=_headers("s1"))
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_full_flow_submits_to_collaborator(tmp_path: Path) -> None:
    app = App(tmp_path)
    async with app as client:
        h = _headers("s1")
        assert (await client.patch("/session/draft", json=PERSONAL, headers=h)).status_code == 200
        assert (await client.post("/session/advance", headers=h)).json()["step"] == 2
        details = await client.patch("/session/draft", json=MEETING, headers=h)
        assert details.json()["availability"]["available"] is True
        assert (await client.post("/session/advance", headers=h)).json()["step"] == 3

        resp = await client.post("/session/submit", headers=h)
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "submitted"
    assert [body["formId"] for body in app.collaborator.received] == [resp.json()["form_id"]]
    assert app.collaborator.received[0]["personalData"]["name"] == "Ana Souza"


@pytest.mark.asyncio
async def test_offline_submission_is_queued_then_replayed(tmp_path: Path) -> None:
    app = App(tmp_path)
    async with app as client:
        h = _headers("s1")
        await client.patch("/session/draft", json=PERSONAL, headers=h)
        await client.post("/session/advance", headers=h)
        await client.patch("/session/draft", json=MEETING, headers=h)
        await client.post("/session/advance", headers=h)

        app.collaborator.online = False
        queued = await client.post("/session/submit", headers=h)
        assert queued.status_code == 202
        assert queued.json()["outcome"] == "queued"
        snapshot = (await client.get("/session", headers=h)).json()
        assert snapshot["submission"]["status"] == "queued"
        assert snapshot["submission"]["pending_form_id"] == queued.json()["form_id"]

        app.collaborator.online = True
        replay = await client.post("/offline/replay")
        assert replay.json() == {"sent": 1, "remaining": 0}
        snapshot = (await client.get("/session", headers=h)).json()
        assert snapshot["submission"]["status"] in {"succeeded", "idle"}
    assert [body["formId"] for body in app.collaborator.received] == [queued.json()["form_id"]]


@pytest.mark.asyncio
async def test_availability_endpoint_resolves_dates(tmp_path: Path) -> None:
    blocked = date(2099, 12, 31)
    app = App(tmp_path)
    app.collaborator.config = {"defaultTimeSlots": ["18:00"], "blockedDates": [blocked.isoformat()]}
    async with app as client:
        closed = await client.get(f"/availability/{blocked.isoformat()}")
        past = await client.get("/availability/2000-01-03")
    assert closed.json() == {"available": False, "timeSlots": [], "message": "Date unavailable for bookings"}
    assert past.json()["available"] is False


@pytest.mark.asyncio
async def test_availability_endpoint_is_503_until_loaded() -> None:
    store = AvailabilityConfigStore(NeverLoadedSource())
    app = FastAPI()
    app.state.availability = store
    app.include_router(availability.router)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.get("/availability/2099-12-31")
    assert resp.status_code == 503


def test_replay_route_belongs_to_the_offline_router() -> None:
    assert {route.path for route in offline.router.routes} == {"/offline/replay"}
    assert offline.router.tags == ["offline"]
    assert not any(route.path.startswith("/offline") for route in availability.router.routes)

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable

import httpx
from fastapi import FastAPI, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings, get_settings
from .database import async_session, create_tables
from .infrastructure.http import (
    HttpAvailabilityConfigSource,
    HttpConnectivityProbe,
    HttpPanelCapacityChecker,
    HttpSubmissionGateway,
    build_client,
)
from .infrastructure.repositories import SqlAlchemyKeyValueStore, SqlAlchemyOfflineQueue
from .routers import availability, offline, sessions
from .usecases.availability import AvailabilityConfigStore
from .usecases.session import ReservationSession, SessionRegistry
from .usecases.submission import OfflineReplayer
from .utils.request_id import generate_request_id, set_request_id
from .utils.time import local_now

logger = logging.getLogger(__name__)


def build_registry(
    settings: Settings,
    *,
    sessionmaker: async_sessionmaker[AsyncSession],
    client: httpx.AsyncClient,
    availability: AvailabilityConfigStore,
    clock: Callable[[], datetime] = local_now,
) -> SessionRegistry:
    store = SqlAlchemyKeyValueStore(sessionmaker)
    queue = SqlAlchemyOfflineQueue(sessionmaker)
    checker = HttpPanelCapacityChecker(client)
    gateway = HttpSubmissionGateway(client)
    connectivity = HttpConnectivityProbe(client)
    replayer = OfflineReplayer(gateway, queue, connectivity)

    def factory(session_id: str) -> ReservationSession:
        return ReservationSession.build(
            session_id,
            settings=settings,
            availability=availability,
            store=store,
            queue=queue,
            checker=checker,
            gateway=gateway,
            connectivity=connectivity,
            replayer=replayer,
            clock=clock,
        )

    return SessionRegistry(factory, replayer, max_sessions=settings.max_live_sessions)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    await create_tables()
    client = build_client(settings.collaborator_base_url, timeout=settings.http_timeout_seconds)
    availability_store = AvailabilityConfigStore(
        HttpAvailabilityConfigSource(client),
        cutoff_hour=settings.same_day_cutoff_hour,
    )
    await availability_store.load()
    registry = build_registry(settings, sessionmaker=async_session, client=client, availability=availability_store)
    app.state.availability = availability_store
    app.state.registry = registry

    sent, remaining = await registry.replay_offline_queue()
    if sent or remaining:
        logger.info("offline queue replay on start: sent=%d remaining=%d", sent, remaining)
    try:
        yield
    finally:
        await registry.shutdown()
        await client.aclose()


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get("X-Request-ID") or generate_request_id()
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers["X-Request-ID"] = request_id
    return response


app = FastAPI(title="Reservation Flow API", lifespan=lifespan)
app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(sessions.router)
app.include_router(availability.router)
app.include_router(offline.router)

import re

from fastapi import Depends, Header, HTTPException, Request, status

from .usecases.availability import AvailabilityConfigStore
from .usecases.session import ReservationSession, SessionRegistry
from .utils.request_id import set_session_id

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_availability_store(request: Request) -> AvailabilityConfigStore:
    return request.app.state.availability


async def get_session_id(x_session_id: str | None = Header(default=None)) -> str:
    if x_session_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Session-Id header required")
    if not _SESSION_ID_RE.match(x_session_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid X-Session-Id")
    set_session_id(x_session_id)
    return x_session_id


async def get_reservation_session(
    session_id: str = Depends(get_session_id),
    registry: SessionRegistry = Depends(get_registry),
) -> ReservationSession:
    return await registry.get_or_start(session_id)

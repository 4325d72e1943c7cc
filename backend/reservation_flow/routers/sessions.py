from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Response, status

from ..deps import get_registry, get_reservation_session
from ..domain.errors import InvalidDraftError, StepNotAllowedError, SubmissionError
from ..schemas import SessionSnapshot, SubmitResponse
from ..usecases.session import ReservationSession, SessionRegistry
from ..usecases.submission import SubmissionOutcome
from ..utils.request_id import set_session_id

router = APIRouter(prefix="", tags=["sessions"])


def _field_errors(exc: InvalidDraftError) -> list[dict[str, str]]:
    return [err.as_dict() for err in exc.errors]


@router.post("/sessions", response_model=SessionSnapshot, status_code=status.HTTP_201_CREATED)
async def create_session(registry: SessionRegistry = Depends(get_registry)) -> SessionSnapshot:
    session = await registry.create()
    set_session_id(session.session_id)
    return session.snapshot()


@router.get("/session", response_model=SessionSnapshot)
async def get_session_snapshot(session: ReservationSession = Depends(get_reservation_session)) -> SessionSnapshot:
    return session.snapshot()


@router.patch("/session/draft", response_model=SessionSnapshot)
async def update_draft(
    changes: Dict[str, Any] = Body(...),
    session: ReservationSession = Depends(get_reservation_session),
) -> SessionSnapshot:
    try:
        await session.update_draft(changes)
    except InvalidDraftError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=_field_errors(exc))
    return session.snapshot()


@router.post("/session/advance", response_model=SessionSnapshot)
async def advance(session: ReservationSession = Depends(get_reservation_session)) -> SessionSnapshot:
    errors = await session.try_advance()
    if errors:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[err.as_dict() for err in errors],
        )
    return session.snapshot()


@router.post("/session/retreat", response_model=SessionSnapshot)
async def retreat(session: ReservationSession = Depends(get_reservation_session)) -> SessionSnapshot:
    await session.retreat()
    return session.snapshot()


@router.post("/session/reset", response_model=SessionSnapshot)
async def reset(session: ReservationSession = Depends(get_reservation_session)) -> SessionSnapshot:
    await session.reset()
    return session.snapshot()


@router.post("/session/submit", response_model=SubmitResponse)
async def submit(
    response: Response,
    session: ReservationSession = Depends(get_reservation_session),
) -> SubmitResponse:
    try:
        outcome, record = await session.submit()
    except StepNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except InvalidDraftError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=_field_errors(exc))
    except SubmissionError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)

    if outcome == SubmissionOutcome.QUEUED:
        response.status_code = status.HTTP_202_ACCEPTED
    return SubmitResponse(outcome=outcome.value, form_id=record.form_id)

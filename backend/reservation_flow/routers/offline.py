from fastapi import APIRouter, Depends

from ..deps import get_registry
from ..schemas import ReplayResponse
from ..usecases.session import SessionRegistry

router = APIRouter(prefix="/offline", tags=["offline"])


@router.post("/replay", response_model=ReplayResponse)
async def replay_offline_queue(registry: SessionRegistry = Depends(get_registry)) -> ReplayResponse:
    """Deliver queued submissions in order and settle the live sessions waiting on them."""
    sent, remaining = await registry.replay_offline_queue()
    return ReplayResponse(sent=sent, remaining=remaining)

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status

from ..deps import get_availability_store
from ..domain.errors import AvailabilityUnresolved
from ..schemas import AvailabilityDecision
from ..usecases.availability import AvailabilityConfigStore
from ..utils.time import local_now

router = APIRouter(prefix="", tags=["availability"])


@router.get("/availability/{day}", response_model=AvailabilityDecision)
async def get_availability(
    day: date,
    store: AvailabilityConfigStore = Depends(get_availability_store),
) -> AvailabilityDecision:
    try:
        return store.resolve_for(day, local_now())
    except AvailabilityUnresolved:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="availability is loading")

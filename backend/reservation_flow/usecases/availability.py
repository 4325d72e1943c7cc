import asyncio
import logging
from datetime import date, datetime
from typing import Optional

from ..domain.availability import resolve
from ..domain.errors import AvailabilityConfigError, AvailabilityUnresolved
from ..domain.repositories import AvailabilityConfigSource
from ..schemas import DEFAULT_AVAILABILITY_CONFIG, AvailabilityConfig, AvailabilityDecision

logger = logging.getLogger(__name__)


class AvailabilityConfigStore:
    """Holds the availability config for the session, loaded once."""

    def __init__(self, source: AvailabilityConfigSource, *, cutoff_hour: int = 12) -> None:
        self._source = source
        self._cutoff_hour = cutoff_hour
        self._config: Optional[AvailabilityConfig] = None
        self._used_fallback = False
        self._lock = asyncio.Lock()
        self._memo: dict[tuple[date, date, bool], AvailabilityDecision] = {}

    @property
    def loaded(self) -> bool:
        return self._config is not None

    @property
    def used_fallback(self) -> bool:
        return self._used_fallback

    @property
    def config(self) -> AvailabilityConfig:
        if self._config is None:
            raise AvailabilityUnresolved("availability config not loaded")
        return self._config

    async def load(self) -> AvailabilityConfig:
        async with self._lock:
            if self._config is not None:
                return self._config
            try:
                config = await self._source.load()
            except AvailabilityConfigError as exc:
                logger.warning("availability config unavailable, using defaults: %s", exc)
                config = DEFAULT_AVAILABILITY_CONFIG
                self._used_fallback = True
            self._config = config
            self._memo.clear()
            return config

    def replace(self, config: AvailabilityConfig) -> None:
        self._config = config
        self._used_fallback = False
        self._memo.clear()

    def resolve_for(self, day: date, now: datetime) -> AvailabilityDecision:
        config = self.config
        key = (day, now.date(), now.hour >= self._cutoff_hour)
        decision = self._memo.get(key)
        if decision is None:
            decision = resolve(day, now, config, cutoff_hour=self._cutoff_hour)
            self._memo[key] = decision
        return decision

from functools import lru_cache
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


class Settings(BaseModel):
    database_url: str = Field(default="sqlite+aiosqlite:///./reservation_flow.db")
    echo_sql: bool = Field(default=False)
    collaborator_base_url: str = Field(default="http://127.0.0.1:5678/webhook")
    http_timeout_seconds: float = Field(default=10.0, gt=0)
    timezone: str = Field(default="America/Sao_Paulo")
    same_day_cutoff_hour: int = Field(default=12, ge=0, le=23)
    panel_debounce_ms: int = Field(default=500, ge=0)
    panel_min_party_size: int = Field(default=10, ge=1)
    panel_max_concurrent: int = Field(default=2, ge=1)
    panel_allowed_locations: tuple[str, ...] = Field(default=("near_stage", "outdoor_area"))
    reset_delay_seconds: float = Field(default=3.0, ge=0)
    max_live_sessions: int = Field(default=1000, ge=1)


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache
def get_settings() -> Settings:
    defaults = Settings.model_fields
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults["database_url"].default),
        echo_sql=bool(int(os.getenv("ECHO_SQL", "0"))),
        collaborator_base_url=os.getenv("COLLABORATOR_BASE_URL", defaults["collaborator_base_url"].default),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "10")),
        timezone=os.getenv("APP_TIMEZONE", defaults["timezone"].default),
        same_day_cutoff_hour=int(os.getenv("SAME_DAY_CUTOFF_HOUR", "12")),
        panel_debounce_ms=int(os.getenv("PANEL_DEBOUNCE_MS", "500")),
        panel_min_party_size=int(os.getenv("PANEL_MIN_PARTY_SIZE", "10")),
        panel_max_concurrent=int(os.getenv("PANEL_MAX_CONCURRENT", "2")),
        panel_allowed_locations=_split_csv(os.getenv("PANEL_ALLOWED_LOCATIONS", "near_stage,outdoor_area")),
        reset_delay_seconds=float(os.getenv("RESET_DELAY_SECONDS", "3")),
        max_live_sessions=int(os.getenv("MAX_LIVE_SESSIONS", "1000")),
    )

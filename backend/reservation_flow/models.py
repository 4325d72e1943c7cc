from __future__ import annotations

from datetime import datetime
from enum import IntEnum, StrEnum

from sqlalchemy import Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import DateTime, Integer, String, Text


class Base(DeclarativeBase):
    pass


class ReservationType(StrEnum):
    BIRTHDAY = "birthday"
    PARTY = "party"
    MEETING = "meeting"


class MenuType(StrEnum):
    STANDARD = "standard"
    FIXED_PACKAGE = "fixed_package"


class Location(StrEnum):
    NEAR_STAGE = "near_stage"
    NEAR_PLAY = "near_play"
    OUTDOOR_AREA = "outdoor_area"


class WizardStep(IntEnum):
    PERSONAL_DATA = 1
    RESERVATION_DETAILS = 2
    SUMMARY = 3


class SubmissionStatus(StrEnum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    QUEUED = "queued"


class PanelStatus(StrEnum):
    IDLE = "idle"
    INELIGIBLE = "ineligible"
    DATE_UNAVAILABLE = "date_unavailable"
    CHECKING = "checking"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


class StoredEntry(Base):
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class QueuedSubmission(Base):
    __tablename__ = "offline_submissions"
    __table_args__ = (
        UniqueConstraint("form_id", name="uq_offline_form_id"),
        Index("idx_offline_enqueued", "enqueued_at"),
    )

    # INTEGER primary key so SQLite hands out increasing rowids; FIFO order follows it.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    form_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

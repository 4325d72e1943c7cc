from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Optional

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
_session_id_ctx: ContextVar[str | None] = ContextVar("session_id", default=None)


def generate_request_id() -> str:
    """Generate a random request id."""
    return uuid.uuid4().hex


def set_request_id(request_id: str | None) -> None:
    """Store request id in context (None to clear)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def generate_session_id() -> str:
    return uuid.uuid4().hex


def set_session_id(session_id: str | None) -> None:
    """Bind the wizard session handled by the current task (None to clear)."""
    _session_id_ctx.set(session_id)


def get_session_id() -> Optional[str]:
    return _session_id_ctx.get()

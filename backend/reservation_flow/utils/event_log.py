from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id, get_session_id

FlowAction = Literal[
    "submission.sent",
    "submission.queued",
    "submission.failed",
    "submission.replayed",
    "draft.restored",
    "draft.reset",
]

_event_logger = logging.getLogger("flow_events")
_event_logger.setLevel(logging.INFO)
if not _event_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _event_logger.addHandler(handler)
_event_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def emit_flow_event(
    *,
    action: FlowAction,
    form_id: Optional[str] = None,
    step: Any = None,
    status: Any = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit one structured JSON line for a draft or submission event. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "session_id": get_session_id(),
        "request_id": get_request_id(),
        "form_id": form_id,
        "step": int(step) if step is not None else None,
        "status": _enum_to_str(status),
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _event_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit flow event") from exc

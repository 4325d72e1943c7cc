from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..domain.eligibility import PanelReason
from ..domain.services import PanelGate
from ..models import PanelStatus, SubmissionStatus, WizardStep
from ..schemas import AvailabilityDecision, PanelQuery, PanelView, ReservationDraft, SubmissionView


@dataclass(frozen=True)
class PanelState:
    status: PanelStatus = PanelStatus.IDLE
    reason: Optional[PanelReason] = None
    message: str = ""
    slots_used: Optional[int] = None
    query: Optional[PanelQuery] = None

    @property
    def blocks_submission(self) -> bool:
        # Anything short of a confirmed "available" blocks, including unknown/error.
        return self.status != PanelStatus.AVAILABLE


@dataclass
class SessionState:
    """Shared mutable state of one wizard session; components hold a reference to it."""

    draft: ReservationDraft = field(default_factory=ReservationDraft)
    step: WizardStep = WizardStep.PERSONAL_DATA
    availability: Optional[AvailabilityDecision] = None
    panel: PanelState = field(default_factory=PanelState)
    submission: SubmissionStatus = SubmissionStatus.IDLE
    submission_error: Optional[str] = None
    pending_form_id: Optional[str] = None

    def panel_gate(self) -> PanelGate:
        return PanelGate(
            requested=self.draft.panel_requested,
            blocks=self.panel.blocks_submission,
            message=self.panel.message,
        )

    def panel_view(self, *, max_concurrent: int) -> PanelView:
        used = self.panel.slots_used
        return PanelView(
            status=self.panel.status,
            reason=self.panel.reason.value if self.panel.reason is not None else None,
            message=self.panel.message,
            slots_used=used,
            slots_left=max(max_concurrent - used, 0) if used is not None else None,
        )

    def submission_view(self) -> SubmissionView:
        return SubmissionView(
            status=self.submission,
            error=self.submission_error,
            pending_form_id=self.pending_form_id,
        )

"""
Partner approval workflow.

A submitted partner moves through the fiscal, purchasing and master data
review stages. Approving the last stage finalizes the record and pushes it
to SAP; rejecting any stage sends it back to the requester and cancels
the integration.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from config_manager import SapConfig
from database.models import ApprovalAction, ApprovalStage, Partner, PartnerStatus
from database.repositories import PartnerRepository
from partners.errors import NotFoundError, PermissionDeniedError, ValidationError
from partners.integration import IntegrationResult, SegmentIntegrationEngine
from partners.segments import SapSegment, SegmentStatus, load_states, timestamp

logger = logging.getLogger(__name__)

WORKFLOW_STAGES = [ApprovalStage.FISCAL, ApprovalStage.PURCHASING, ApprovalStage.MASTER_DATA]

STAGE_CAPABILITIES = {
    ApprovalStage.FISCAL: "partners.approval.fiscal",
    ApprovalStage.PURCHASING: "partners.approval.purchasing",
    ApprovalStage.MASTER_DATA: "partners.approval.master_data",
    ApprovalStage.FINALIZED: None,
}

SUBMITTABLE_STATUSES = (PartnerStatus.DRAFT, PartnerStatus.REJECTED)


@dataclass
class Actor:
    """Authenticated user performing a workflow action"""
    id: str
    email: str = ""
    name: Optional[str] = None
    responsibilities: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return (self.name or "").strip() or self.email


def parse_stage(value: Any) -> ApprovalStage:
    try:
        return ApprovalStage(str(getattr(value, 'value', value)).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown approval stage: {value}", field="stage")


def next_stage(current: ApprovalStage) -> ApprovalStage:
    index = WORKFLOW_STAGES.index(current)
    if index + 1 < len(WORKFLOW_STAGES):
        return WORKFLOW_STAGES[index + 1]
    return ApprovalStage.FINALIZED


def is_fully_integrated(raw_segments) -> bool:
    states = load_states(raw_segments)
    return all(state.status == SegmentStatus.SUCCESS for state in states.values())


class ApprovalWorkflow:
    """State machine over (status, approval_stage) gated by reviewer capability"""

    def __init__(
        self,
        session: Session,
        config: SapConfig,
        engine: Optional[SegmentIntegrationEngine] = None
    ):
        self.session = session
        self.partners = PartnerRepository(session)
        self.engine = engine or SegmentIntegrationEngine(config)

    def _load(self, partner_id: Union[str, UUID]) -> Partner:
        partner = self.partners.get_by_id(partner_id)
        if partner is None:
            raise NotFoundError("Partner not found")
        return partner

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_partner_stage(partner: Partner, stage: ApprovalStage) -> None:
        if stage == ApprovalStage.FINALIZED:
            raise ValidationError("The final stage does not accept direct actions.", field="stage")
        if partner.approval_stage != stage:
            raise ValidationError("Partner is not at the given stage.", field="stage")
        if partner.status != PartnerStatus.IN_REVIEW:
            raise ValidationError("Partner is not under review.", field="status")

    @staticmethod
    def _ensure_actor_can_handle(stage: ApprovalStage, actor: Actor) -> None:
        capability = STAGE_CAPABILITIES.get(stage)
        if capability is None:
            return
        if capability not in (actor.responsibilities or []):
            raise PermissionDeniedError("User is not allowed to act on this stage.")

    @staticmethod
    def _ensure_finalized(partner: Partner, message: str) -> None:
        if partner.approval_stage != ApprovalStage.FINALIZED:
            raise ValidationError(message, field="approval_stage")

    @staticmethod
    def _append_history(
        partner: Partner,
        stage: ApprovalStage,
        action: ApprovalAction,
        actor: Actor,
        notes: Optional[str] = None
    ) -> None:
        entry = {
            'stage': stage.value,
            'action': action.value,
            'performed_by': actor.id,
            'performed_by_name': actor.display_name,
            'performed_at': timestamp(),
        }
        if notes:
            entry['notes'] = notes
        partner.approval_history = list(partner.approval_history or []) + [entry]

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def _persist_segments(self, partner: Partner, segments: List[dict]) -> None:
        self.partners.update_segments(partner, segments)
        self.session.commit()

    def _run_integration(
        self,
        partner: Partner,
        segments: Optional[List[SapSegment]] = None,
        use_retry: bool = False,
        update_status: bool = False
    ) -> Partner:
        def on_transition(states: List[dict]) -> None:
            self._persist_segments(partner, states)

        runner = self.engine.retry if use_retry else self.engine.integrate
        result: IntegrationResult = runner(partner, segments, on_transition)

        partner.sap_segments = result.segments
        for key, value in result.updates.items():
            if value is not None:
                setattr(partner, key, value)

        if update_status:
            partner.status = (
                PartnerStatus.INTEGRATED if is_fully_integrated(partner.sap_segments) else PartnerStatus.APPROVED
            )

        self.partners.save(partner)
        self.session.commit()
        logger.info(
            f"Partner {partner.id} integration run finished (completed={result.completed}, status={partner.status.value})"
        )
        return partner

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(self, partner_id: Union[str, UUID], actor: Actor) -> Partner:
        """Send a draft or rejected partner to review and push its primary record"""
        partner = self._load(partner_id)
        if partner.status not in SUBMITTABLE_STATUSES:
            raise ValidationError("Only draft or rejected partners can be submitted for review.", field="status")

        partner.status = PartnerStatus.IN_REVIEW
        partner.approval_stage = ApprovalStage.FISCAL
        self._append_history(partner, ApprovalStage.FISCAL, ApprovalAction.SUBMITTED, actor)
        return self._run_integration(partner, [SapSegment.PRIMARY_RECORD])

    def approve_stage(self, partner_id: Union[str, UUID], stage: Any, actor: Actor) -> Partner:
        """Approve the current review stage; approving master data finalizes and integrates"""
        stage = parse_stage(stage)
        partner = self._load(partner_id)
        self._ensure_partner_stage(partner, stage)
        self._ensure_actor_can_handle(stage, actor)
        self._append_history(partner, stage, ApprovalAction.APPROVED, actor)

        following = next_stage(stage)
        if following == ApprovalStage.FINALIZED:
            partner.approval_stage = ApprovalStage.FINALIZED
            partner.status = PartnerStatus.APPROVED
            self.partners.save(partner)
            self.session.commit()
            return self.approve(partner.id)

        partner.approval_stage = following
        partner.status = PartnerStatus.IN_REVIEW
        self.partners.save(partner)
        self.session.commit()
        return partner

    def approve(self, partner_id: Union[str, UUID]) -> Partner:
        """Integrate every pending segment of a finalized partner"""
        partner = self._load(partner_id)
        self._ensure_finalized(partner, "Partner is not at the final stage for approval.")
        return self._run_integration(partner, use_retry=True, update_status=True)

    def retry_sap_integration(self, partner_id: Union[str, UUID]) -> Partner:
        partner = self._load(partner_id)
        self._ensure_finalized(partner, "Only finalized partners can be sent to SAP again.")
        return self._run_integration(partner, use_retry=True, update_status=True)

    def trigger_segment(self, partner_id: Union[str, UUID], segment: Any) -> Partner:
        partner = self._load(partner_id)
        self._ensure_finalized(partner, "Only finalized partners can be sent to SAP again.")
        parsed = SapSegment.parse(str(getattr(segment, 'value', segment) or '').strip().lower())
        if parsed is None:
            raise ValidationError("Invalid SAP segment.", field="segment")
        return self._run_integration(partner, [parsed], use_retry=True, update_status=True)

    def reject_stage(
        self,
        partner_id: Union[str, UUID],
        stage: Any,
        actor: Actor,
        reason: Optional[str] = None
    ) -> Partner:
        """Reject the current stage and cancel the SAP integration"""
        stage = parse_stage(stage)
        partner = self._load(partner_id)
        self._ensure_partner_stage(partner, stage)
        self._ensure_actor_can_handle(stage, actor)

        reason = (reason or '').strip() or None
        partner.status = PartnerStatus.REJECTED
        partner.approval_stage = stage
        self._append_history(partner, stage, ApprovalAction.REJECTED, actor, reason)

        if reason:
            message = f"Integration cancelled: partner rejected ({reason})"
        else:
            message = "Integration cancelled: partner rejected in the approval workflow."
        partner.sap_segments = self.engine.mark_as_error(partner, message)

        self.partners.save(partner)
        self.session.commit()
        logger.info(f"Partner {partner.id} rejected at stage {stage.value} by {actor.id}")
        return partner

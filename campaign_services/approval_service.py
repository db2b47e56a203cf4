"""
ApprovalService -- talent approval requests and campaign approvals.

Responsibility:
    Persistence side of the two approval flows.  Gate decisions live in
    ``campaign_engines.transition_gates``; this service only loads the
    counts and flags those gates take, and records decisions.

Invariants enforced:
    - At most one open talent request per (campaign, show, talent): an
      unexpired pending request or an approved one.
    - At most one open campaign approval per campaign: pending or approved.
    - A pending talent request past its expiry is marked ``expired`` when
      read and no longer counts as pending.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from campaign_config.schema import ApprovalSettings
from campaign_engines.rate_card import RateCardAssessment
from campaign_engines.talent import TalentGroup
from campaign_engines.transition_gates import TalentApprovalCounts
from campaign_kernel.domain.clock import Clock
from campaign_kernel.exceptions import EntityNotFoundError, InvalidTransitionError
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models import (
    CampaignApproval,
    CampaignApprovalStatus,
    TalentApprovalRequest,
    TalentApprovalStatus,
)

logger = get_logger("services.approval")

_OPEN_CAMPAIGN_APPROVAL = (
    CampaignApprovalStatus.PENDING.value,
    CampaignApprovalStatus.APPROVED.value,
)


class ApprovalService:
    def __init__(self, session: Session, clock: Clock, settings: ApprovalSettings | None = None):
        self._session = session
        self._clock = clock
        self._settings = settings or ApprovalSettings()

    # =========================================================================
    # Talent approvals
    # =========================================================================

    def _talent_requests(self, tenant_id: UUID, campaign_id: UUID) -> list[TalentApprovalRequest]:
        requests = list(
            self._session.scalars(
                select(TalentApprovalRequest).where(
                    TalentApprovalRequest.organization_id == tenant_id,
                    TalentApprovalRequest.campaign_id == campaign_id,
                )
            )
        )
        now = self._clock.now()
        for request in requests:
            if request.status == TalentApprovalStatus.PENDING.value and request.expires_at <= now:
                request.status = TalentApprovalStatus.EXPIRED.value
                logger.info(
                    "talent_approval_expired",
                    extra={"request_id": str(request.id), "campaign_id": str(campaign_id)},
                )
        return requests

    def find_open_talent_request(
        self,
        tenant_id: UUID,
        campaign_id: UUID,
        show_id: UUID,
        talent_id: UUID,
    ) -> TalentApprovalRequest | None:
        for request in self._talent_requests(tenant_id, campaign_id):
            if (
                request.show_id == show_id
                and request.talent_id == talent_id
                and request.status in (
                    TalentApprovalStatus.PENDING.value,
                    TalentApprovalStatus.APPROVED.value,
                )
            ):
                return request
        return None

    def create_talent_request(
        self,
        tenant_id: UUID,
        campaign_id: UUID,
        group: TalentGroup,
        requested_by_id: UUID | None,
    ) -> TalentApprovalRequest:
        now = self._clock.now()
        request = TalentApprovalRequest(
            organization_id=tenant_id,
            campaign_id=campaign_id,
            show_id=group.show_id,
            talent_id=group.talent_id,
            spot_type=group.spot_type,
            status=TalentApprovalStatus.PENDING.value,
            requested_by_id=requested_by_id,
            requested_at=now,
            expires_at=now + timedelta(days=self._settings.talent_request_expiry_days),
            summary_data=group.summary_data(),
        )
        self._session.add(request)
        self._session.flush()
        logger.info(
            "talent_approval_requested",
            extra={
                "request_id": str(request.id),
                "campaign_id": str(campaign_id),
                "show_id": str(group.show_id),
                "talent_id": str(group.talent_id),
                "spot_count": len(group.spots),
            },
        )
        return request

    def talent_counts(self, tenant_id: UUID, campaign_id: UUID) -> TalentApprovalCounts:
        pending = approved = denied = 0
        for request in self._talent_requests(tenant_id, campaign_id):
            if request.status == TalentApprovalStatus.PENDING.value:
                pending += 1
            elif request.status == TalentApprovalStatus.APPROVED.value:
                approved += 1
            elif request.status == TalentApprovalStatus.DENIED.value:
                denied += 1
        self._session.flush()
        return TalentApprovalCounts(pending=pending, approved=approved, denied=denied)

    def respond_to_talent_request(
        self,
        tenant_id: UUID,
        request_id: UUID,
        approved: bool,
    ) -> TalentApprovalRequest:
        """Record the talent's answer to a pending request."""
        request = self._session.scalars(
            select(TalentApprovalRequest).where(
                TalentApprovalRequest.organization_id == tenant_id,
                TalentApprovalRequest.id == request_id,
            )
        ).first()
        if request is None:
            raise EntityNotFoundError("talent_approval_request", str(request_id))
        if request.status != TalentApprovalStatus.PENDING.value:
            raise InvalidTransitionError(
                str(request_id), request.status, "approve" if approved else "deny",
            )
        request.status = (
            TalentApprovalStatus.APPROVED.value if approved else TalentApprovalStatus.DENIED.value
        )
        request.responded_at = self._clock.now()
        self._session.flush()
        logger.info(
            "talent_approval_responded",
            extra={"request_id": str(request_id), "approval_status": request.status},
        )
        return request

    # =========================================================================
    # Campaign approvals
    # =========================================================================

    def find_open_campaign_approval(self, tenant_id: UUID, campaign_id: UUID) -> CampaignApproval | None:
        return self._session.scalars(
            select(CampaignApproval)
            .where(
                CampaignApproval.organization_id == tenant_id,
                CampaignApproval.campaign_id == campaign_id,
                CampaignApproval.status.in_(_OPEN_CAMPAIGN_APPROVAL),
            )
            .order_by(CampaignApproval.requested_at.desc())
        ).first()

    def has_approved_campaign_approval(self, tenant_id: UUID, campaign_id: UUID) -> bool:
        approval = self.find_open_campaign_approval(tenant_id, campaign_id)
        return approval is not None and approval.status == CampaignApprovalStatus.APPROVED.value

    def create_campaign_approval(
        self,
        tenant_id: UUID,
        campaign_id: UUID,
        assessment: RateCardAssessment,
        requested_by_id: UUID | None,
    ) -> CampaignApproval:
        approval = CampaignApproval(
            organization_id=tenant_id,
            campaign_id=campaign_id,
            status=CampaignApprovalStatus.PENDING.value,
            required_roles=list(self._settings.approval_roles),
            requested_by_id=requested_by_id,
            requested_at=self._clock.now(),
            rate_card_variance=assessment.variance_percent,
            has_rate_card_variance=assessment.exceeds_threshold,
        )
        self._session.add(approval)
        self._session.flush()
        logger.info(
            "campaign_approval_requested",
            extra={
                "approval_id": str(approval.id),
                "campaign_id": str(campaign_id),
                "rate_card_variance": assessment.variance_percent,
                "has_rate_card_variance": assessment.exceeds_threshold,
            },
        )
        return approval

    def _decide(
        self,
        tenant_id: UUID,
        campaign_id: UUID,
        status: CampaignApprovalStatus,
        decided_by_id: UUID,
        reason: str | None,
    ) -> CampaignApproval | None:
        approval = self._session.scalars(
            select(CampaignApproval).where(
                CampaignApproval.organization_id == tenant_id,
                CampaignApproval.campaign_id == campaign_id,
                CampaignApproval.status == CampaignApprovalStatus.PENDING.value,
            )
        ).first()
        if approval is None:
            return None
        approval.status = status.value
        approval.decided_by_id = decided_by_id
        approval.decided_at = self._clock.now()
        approval.decision_reason = reason
        self._session.flush()
        logger.info(
            "campaign_approval_decided",
            extra={
                "approval_id": str(approval.id),
                "campaign_id": str(campaign_id),
                "decision": status.value,
            },
        )
        return approval

    def approve_campaign_approval(
        self,
        tenant_id: UUID,
        campaign_id: UUID,
        decided_by_id: UUID,
        reason: str | None = None,
    ) -> CampaignApproval:
        approval = self._decide(
            tenant_id, campaign_id, CampaignApprovalStatus.APPROVED, decided_by_id, reason,
        )
        if approval is None:
            raise InvalidTransitionError(str(campaign_id), "no pending approval", "approve")
        return approval

    def reject_campaign_approval(
        self,
        tenant_id: UUID,
        campaign_id: UUID,
        decided_by_id: UUID,
        reason: str | None = None,
    ) -> CampaignApproval | None:
        """Reject the pending approval, if any."""
        return self._decide(
            tenant_id, campaign_id, CampaignApprovalStatus.REJECTED, decided_by_id, reason,
        )

"""
Module: campaign_kernel.models.approval
Responsibility: ORM persistence for talent approval requests and campaign
    (admin) approvals.

Invariants enforced:
    - Status values are constrained by check constraints.
    - Idempotency is enforced by the executors' existence checks on the
      natural key: (campaign, show, talent) for talent requests, campaign
      for campaign approvals.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from campaign_kernel.db.base import TenantBase, UUIDString


class TalentApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


class CampaignApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TalentApprovalRequest(TenantBase):
    """Request for a show's talent to approve host-read/endorsement spots."""

    __tablename__ = "talent_approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'denied', 'expired')",
            name="ck_talent_approval_valid_status",
        ),
        Index(
            "idx_talent_approval_natural_key",
            "campaign_id", "show_id", "talent_id", "status",
        ),
    )

    campaign_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("campaigns.id"), nullable=False,
    )
    show_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shows.id"), nullable=False,
    )
    talent_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    spot_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TalentApprovalStatus.PENDING.value,
    )
    requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    summary_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class CampaignApproval(TenantBase):
    """Admin sign-off gating the order-creation milestone."""

    __tablename__ = "campaign_approvals"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_campaign_approval_valid_status",
        ),
        Index("idx_campaign_approval_campaign_status", "campaign_id", "status"),
    )

    campaign_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("campaigns.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CampaignApprovalStatus.PENDING.value,
    )
    required_roles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    rate_card_variance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    has_rate_card_variance: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

"""
Module: campaign_kernel.models.campaign
Responsibility: ORM persistence for campaigns, their scheduled spots, and the
    milestone ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - probability is an integer in [0, 100] (check constraint).
    - A milestone appears at most once in a campaign's ledger
      (uq_campaign_milestone).  The ledger is what keeps a milestone crossed
      in a prior transition from firing again.

Failure modes:
    - IntegrityError on a duplicate ledger entry.  The workflow service
      reads the ledger under the campaign lock, so this only fires on a
      bypass of the service.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campaign_kernel.db.base import TenantBase, UUIDString


class PlacementType(str, Enum):
    PRE_ROLL = "pre_roll"
    MID_ROLL = "mid_roll"
    POST_ROLL = "post_roll"


class SpotType(str, Enum):
    STANDARD = "standard"
    HOST_READ = "host_read"
    ENDORSEMENT = "endorsement"
    PRODUCED = "produced"


class Campaign(TenantBase):
    """
    A sales opportunity whose probability drives the workflow.

    Contract:
        ``status`` is a display projection of ``probability`` and is only
        written together with it by the workflow service.
    """

    __tablename__ = "campaigns"

    __table_args__ = (
        CheckConstraint(
            "probability >= 0 AND probability <= 100",
            name="ck_campaign_probability_range",
        ),
        Index("idx_campaign_org_status", "organization_id", "status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="prospect")
    advertiser_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    agency_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    budget: Mapped[Decimal | None] = mapped_column(nullable=True)
    created_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )

    schedule_builder_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    schedule_validated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    rate_card_tracking: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    reservation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approval_request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    spots: Mapped[list[ScheduledSpot]] = relationship(
        back_populates="campaign",
        order_by="ScheduledSpot.air_date",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Campaign {self.name} {self.probability}% ({self.status})>"


class CampaignMilestone(TenantBase):
    """Ledger entry: the campaign has crossed ``milestone``."""

    __tablename__ = "campaign_milestones"

    __table_args__ = (
        UniqueConstraint("campaign_id", "milestone", name="uq_campaign_milestone"),
    )

    campaign_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("campaigns.id"), nullable=False, index=True,
    )
    milestone: Mapped[str] = mapped_column(String(50), nullable=False)
    probability: Mapped[int] = mapped_column(Integer, nullable=False)
    crossed_at: Mapped[datetime] = mapped_column(nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class ScheduledSpot(TenantBase):
    """A spot placed on a campaign's schedule."""

    __tablename__ = "scheduled_spots"

    campaign_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("campaigns.id"), nullable=False, index=True,
    )
    show_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shows.id"), nullable=False,
    )
    episode_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("episodes.id"), nullable=True,
    )
    air_date: Mapped[date] = mapped_column(Date, nullable=False)
    placement_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PlacementType.MID_ROLL.value,
    )
    spot_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=SpotType.STANDARD.value,
    )
    length: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    default_rate: Mapped[Decimal | None] = mapped_column(
        nullable=True, doc="Rate-card price; falls back to the show's default rate",
    )
    negotiated_rate: Mapped[Decimal | None] = mapped_column(nullable=True)

    campaign: Mapped[Campaign] = relationship(back_populates="spots")

"""
Module: campaign_kernel.models.reservation
Responsibility: Inventory holds created at the auto-reserve milestone.

Lifecycle: held -> confirmed (order created) | released (campaign rejected)
    | expired (hold deadline passed; marked lazily on read).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campaign_kernel.db.base import TenantBase, UUIDString


class ReservationStatus(str, Enum):
    HELD = "held"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


class Reservation(TenantBase):
    __tablename__ = "reservations"

    __table_args__ = (
        CheckConstraint(
            "status IN ('held', 'confirmed', 'released', 'expired')",
            name="ck_reservation_valid_status",
        ),
        Index("idx_reservation_campaign_status", "campaign_id", "status"),
    )

    reservation_number: Mapped[str] = mapped_column(String(50), nullable=False)
    campaign_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("campaigns.id"), nullable=False,
    )
    advertiser_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    agency_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    estimated_revenue: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReservationStatus.HELD.value,
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list[ReservationItem]] = relationship(
        back_populates="reservation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def is_active_at(self, now: datetime) -> bool:
        """Held and unexpired, or confirmed."""
        if self.status == ReservationStatus.CONFIRMED.value:
            return True
        return self.status == ReservationStatus.HELD.value and self.expires_at > now


class ReservationItem(TenantBase):
    __tablename__ = "reservation_items"

    reservation_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("reservations.id"), nullable=False, index=True,
    )
    show_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    episode_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    air_date: Mapped[date] = mapped_column(Date, nullable=False)
    placement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    spot_type: Mapped[str] = mapped_column(String(30), nullable=False)
    length: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    rate: Mapped[Decimal] = mapped_column(nullable=False)

    reservation: Mapped[Reservation] = relationship(back_populates="items")

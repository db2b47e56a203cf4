"""
Module: campaign_kernel.models.order
Responsibility: Insertion orders created from won campaigns, and their items.

Invariants enforced:
    - total_amount equals the sum of item rates at creation.
    - An order item is invoiced at most once: ``invoiced`` and
      ``invoice_item_id`` are set together by the billing service and never
      cleared.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campaign_kernel.db.base import TenantBase, UUIDString


class OrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    READY_FOR_PRODUCTION = "ready_for_production"
    CANCELLED = "cancelled"


class Order(TenantBase):
    __tablename__ = "orders"

    __table_args__ = (
        Index("idx_order_campaign", "campaign_id"),
        Index("idx_order_org_status", "organization_id", "status"),
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    campaign_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("campaigns.id"), nullable=True,
    )
    advertiser_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    agency_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=OrderStatus.DRAFT.value,
    )
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.air_date",
        lazy="selectin",
    )


class OrderItem(TenantBase):
    __tablename__ = "order_items"

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False, index=True,
    )
    show_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    episode_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True, index=True,
    )
    air_date: Mapped[date] = mapped_column(Date, nullable=False)
    placement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    spot_type: Mapped[str] = mapped_column(String(30), nullable=False)
    length: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    invoiced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invoice_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    order: Mapped[Order] = relationship(back_populates="items")

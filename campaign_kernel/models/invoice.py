"""
Module: campaign_kernel.models.invoice
Responsibility: Invoices, invoice items, recurring invoice schedules, and the
    pre-bill advertiser register.

Invariants enforced:
    - invoice_number is unique per tenant (uq_invoice_org_number).  The
      billing service also serializes numbering per (tenant, prefix), so the
      constraint only backs up the scan.
    - total_amount equals the sum of item amounts.
    - One schedule per order (uq_invoice_schedule_order).
    - One pre-bill flag per advertiser (uq_prebill_org_advertiser).
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
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campaign_kernel.db.base import TenantBase, UUIDString


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    VOID = "void"


class ScheduleType(str, Enum):
    MONTHLY = "monthly"
    MILESTONE = "milestone"
    CUSTOM = "custom"


class Invoice(TenantBase):
    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("organization_id", "invoice_number", name="uq_invoice_org_number"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    advertiser_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=True, index=True,
    )
    episode_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.DRAFT.value,
    )
    is_prebill: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    billing_period: Mapped[str] = mapped_column(String(7), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_terms: Mapped[str] = mapped_column(String(30), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list[InvoiceItem]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class InvoiceItem(TenantBase):
    __tablename__ = "invoice_items"

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=False, index=True,
    )
    order_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    air_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    invoice: Mapped[Invoice] = relationship(back_populates="items")


class InvoiceSchedule(TenantBase):
    __tablename__ = "invoice_schedules"

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_invoice_schedule_order"),
        CheckConstraint(
            "schedule_type IN ('monthly', 'milestone', 'custom')",
            name="ck_invoice_schedule_type",
        ),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month >= 1 AND day_of_month <= 28)",
            name="ck_invoice_schedule_day",
        ),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )
    schedule_type: Mapped[str] = mapped_column(String(20), nullable=False)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_send: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PreBillAdvertiser(TenantBase):
    """Advertiser that must be invoiced before delivery."""

    __tablename__ = "prebill_advertisers"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "advertiser_id", name="uq_prebill_org_advertiser",
        ),
    )

    advertiser_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    flagged_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    flagged_at: Mapped[datetime] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

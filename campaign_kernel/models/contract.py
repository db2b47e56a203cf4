"""
Module: campaign_kernel.models.contract
Responsibility: Advertiser contracts generated from approved orders.

Invariants enforced:
    - One line per order item; total_amount equals the sum of line totals.
    - At most one non-void contract per order (executor existence check).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campaign_kernel.db.base import TenantBase, UUIDString


class ContractStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    SIGNED = "signed"
    VOID = "void"


class Contract(TenantBase):
    __tablename__ = "contracts"

    __table_args__ = (
        Index("idx_contract_order_status", "order_id", "status"),
    )

    contract_number: Mapped[str] = mapped_column(String(50), nullable=False)
    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )
    campaign_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    advertiser_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContractStatus.DRAFT.value,
    )
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    line_items: Mapped[list[ContractLineItem]] = relationship(
        back_populates="contract",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ContractLineItem(TenantBase):
    __tablename__ = "contract_line_items"

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False, index=True,
    )
    order_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)

    contract: Mapped[Contract] = relationship(back_populates="line_items")

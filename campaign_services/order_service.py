"""
OrderService -- orders from won campaigns, and contracts from approved orders.

Invariants enforced:
    - At most one non-cancelled order per campaign.
    - At most one non-void contract per order.
    - Contract total equals the sum of its line totals.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from campaign_kernel.domain.clock import Clock
from campaign_kernel.domain.schedule import SpotLine
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models import (
    Campaign,
    Contract,
    ContractLineItem,
    ContractStatus,
    Order,
    OrderItem,
    OrderStatus,
)

logger = get_logger("services.order")


def _number(prefix: str, clock: Clock) -> str:
    return f"{prefix}-{clock.now():%Y%m%d}-{uuid4().hex[:8].upper()}"


class OrderService:
    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    # =========================================================================
    # Orders
    # =========================================================================

    def find_open_order(self, tenant_id: UUID, campaign_id: UUID) -> Order | None:
        return self._session.scalars(
            select(Order)
            .where(
                Order.organization_id == tenant_id,
                Order.campaign_id == campaign_id,
                Order.status != OrderStatus.CANCELLED.value,
            )
            .order_by(Order.created_at)
        ).first()

    def create_from_campaign(
        self,
        tenant_id: UUID,
        campaign: Campaign,
        spots: Sequence[SpotLine],
        created_by_id: UUID | None,
        status: str = OrderStatus.DRAFT.value,
    ) -> Order:
        """One order item per scheduled spot; total is the sum of spot rates."""
        order = Order(
            organization_id=tenant_id,
            order_number=_number("ORD", self._clock),
            campaign_id=campaign.id,
            advertiser_id=campaign.advertiser_id,
            agency_id=campaign.agency_id,
            status=OrderStatus(status).value,
            total_amount=sum((spot.rate for spot in spots), Decimal("0")),
            created_by_id=created_by_id,
        )
        for spot in spots:
            order.items.append(
                OrderItem(
                    organization_id=tenant_id,
                    show_id=spot.show_id,
                    episode_id=spot.episode_id,
                    air_date=spot.air_date,
                    placement_type=spot.placement_type,
                    spot_type=spot.spot_type,
                    length=spot.length,
                    rate=spot.rate,
                )
            )
        self._session.add(order)
        self._session.flush()
        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "campaign_id": str(campaign.id),
                "item_count": len(order.items),
                "total_amount": order.total_amount,
            },
        )
        return order

    # =========================================================================
    # Contracts
    # =========================================================================

    def contracts_for_order(self, tenant_id: UUID, order_id: UUID) -> list[Contract]:
        return list(
            self._session.scalars(
                select(Contract)
                .where(
                    Contract.organization_id == tenant_id,
                    Contract.order_id == order_id,
                )
                .order_by(Contract.created_at)
            )
        )

    def find_open_contract(self, tenant_id: UUID, order_id: UUID) -> Contract | None:
        for contract in self.contracts_for_order(tenant_id, order_id):
            if contract.status != ContractStatus.VOID.value:
                return contract
        return None

    def all_contracts_signed(self, tenant_id: UUID, order_id: UUID) -> bool:
        """True when the order has live contracts and every one is signed."""
        live = [
            c for c in self.contracts_for_order(tenant_id, order_id)
            if c.status != ContractStatus.VOID.value
        ]
        return bool(live) and all(c.status == ContractStatus.SIGNED.value for c in live)

    def create_contract(
        self,
        tenant_id: UUID,
        order: Order,
        created_by_id: UUID | None,
        template: str = "standard",
    ) -> Contract:
        contract = Contract(
            organization_id=tenant_id,
            contract_number=_number("CTR", self._clock),
            order_id=order.id,
            campaign_id=order.campaign_id,
            advertiser_id=order.advertiser_id,
            status=ContractStatus.DRAFT.value,
            created_by_id=created_by_id,
        )
        for item in order.items:
            contract.line_items.append(
                ContractLineItem(
                    organization_id=tenant_id,
                    order_item_id=item.id,
                    description=f"{item.spot_type} {item.placement_type} spot, {item.air_date:%Y-%m-%d}",
                    quantity=1,
                    unit_price=item.rate,
                    total=item.rate,
                )
            )
        contract.total_amount = sum((line.total for line in contract.line_items), Decimal("0"))
        self._session.add(contract)
        self._session.flush()

        if contract.total_amount != order.total_amount:
            logger.warning(
                "contract_total_mismatch",
                extra={
                    "contract_id": str(contract.id),
                    "order_id": str(order.id),
                    "contract_total": contract.total_amount,
                    "order_total": order.total_amount,
                },
            )
        logger.info(
            "contract_created",
            extra={
                "contract_id": str(contract.id),
                "contract_number": contract.contract_number,
                "order_id": str(order.id),
                "template": template,
                "line_count": len(contract.line_items),
            },
        )
        return contract

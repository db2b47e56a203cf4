"""
ReservationService -- inventory holds for campaigns.

A campaign holds at most one active reservation: held and unexpired, or
confirmed.  Expired holds are marked ``expired`` when they are next read
rather than by a background sweep.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from campaign_config.schema import ReservationSettings
from campaign_kernel.domain.clock import Clock
from campaign_kernel.domain.schedule import SpotLine
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models import Campaign, Reservation, ReservationItem, ReservationStatus

logger = get_logger("services.reservation")

_LIVE_STATUSES = (ReservationStatus.HELD.value, ReservationStatus.CONFIRMED.value)


class ReservationService:
    def __init__(self, session: Session, clock: Clock, settings: ReservationSettings | None = None):
        self._session = session
        self._clock = clock
        self._settings = settings or ReservationSettings()

    def find_active(self, tenant_id: UUID, campaign_id: UUID) -> Reservation | None:
        """The campaign's live reservation, marking lapsed holds expired on the way."""
        now = self._clock.now()
        rows = self._session.scalars(
            select(Reservation)
            .where(
                Reservation.organization_id == tenant_id,
                Reservation.campaign_id == campaign_id,
                Reservation.status.in_(_LIVE_STATUSES),
            )
            .order_by(Reservation.created_at)
        ).all()

        active = None
        for reservation in rows:
            if reservation.is_active_at(now):
                if active is None:
                    active = reservation
                continue
            reservation.status = ReservationStatus.EXPIRED.value
            logger.info(
                "reservation_expired",
                extra={
                    "reservation_id": str(reservation.id),
                    "campaign_id": str(campaign_id),
                    "expires_at": reservation.expires_at,
                },
            )
        self._session.flush()
        return active

    def create_for_campaign(
        self,
        tenant_id: UUID,
        campaign: Campaign,
        spots: Sequence[SpotLine],
        estimated_revenue: Decimal,
        created_by_id: UUID | None,
    ) -> Reservation:
        """Hold every scheduled spot for ``hold_days``."""
        now = self._clock.now()
        reservation = Reservation(
            organization_id=tenant_id,
            reservation_number=f"RES-{now:%Y%m%d}-{uuid4().hex[:8].upper()}",
            campaign_id=campaign.id,
            advertiser_id=campaign.advertiser_id,
            agency_id=campaign.agency_id,
            total_amount=sum((spot.rate for spot in spots), Decimal("0")),
            estimated_revenue=estimated_revenue,
            status=ReservationStatus.HELD.value,
            expires_at=now + timedelta(days=self._settings.hold_days),
            created_by_id=created_by_id,
            notes=f"Automatic hold for campaign {campaign.name}",
        )
        for spot in spots:
            reservation.items.append(
                ReservationItem(
                    organization_id=tenant_id,
                    show_id=spot.show_id,
                    episode_id=spot.episode_id,
                    air_date=spot.air_date,
                    placement_type=spot.placement_type or self._settings.default_placement_type,
                    spot_type=spot.spot_type,
                    length=spot.length or self._settings.default_length,
                    rate=spot.rate,
                )
            )
        self._session.add(reservation)
        self._session.flush()

        logger.info(
            "reservation_created",
            extra={
                "reservation_id": str(reservation.id),
                "reservation_number": reservation.reservation_number,
                "campaign_id": str(campaign.id),
                "item_count": len(reservation.items),
                "estimated_revenue": estimated_revenue,
            },
        )
        return reservation

    def release_held(self, tenant_id: UUID, campaign_id: UUID) -> list[Reservation]:
        """Release every ``held`` reservation of the campaign, expired or not."""
        now = self._clock.now()
        released = list(
            self._session.scalars(
                select(Reservation).where(
                    Reservation.organization_id == tenant_id,
                    Reservation.campaign_id == campaign_id,
                    Reservation.status == ReservationStatus.HELD.value,
                )
            )
        )
        for reservation in released:
            reservation.status = ReservationStatus.RELEASED.value
            reservation.released_at = now
        self._session.flush()
        if released:
            logger.info(
                "reservations_released",
                extra={
                    "campaign_id": str(campaign_id),
                    "reservation_ids": [str(r.id) for r in released],
                },
            )
        return released

    def confirm(self, reservation: Reservation) -> Reservation:
        if reservation.status == ReservationStatus.CONFIRMED.value:
            return reservation
        reservation.status = ReservationStatus.CONFIRMED.value
        reservation.confirmed_at = self._clock.now()
        self._session.flush()
        logger.info(
            "reservation_confirmed",
            extra={"reservation_id": str(reservation.id)},
        )
        return reservation

"""
Tenant-scoped entity loading shared by the workflow services.

Every read filters on ``organization_id``; a row belonging to another
tenant is reported exactly like a missing row.
"""

from __future__ import annotations

from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from campaign_kernel.db.base import TenantBase
from campaign_kernel.domain.schedule import SpotLine
from campaign_kernel.exceptions import EntityNotFoundError
from campaign_kernel.models import Campaign, Contract, Episode, Order, Show

T = TypeVar("T", bound=TenantBase)


def load_entity(
    session: Session,
    model: type[T],
    tenant_id: UUID,
    entity_id: UUID,
    *,
    for_update: bool = False,
) -> T:
    """
    Load one tenant-owned row.

    Raises:
        EntityNotFoundError: no row with that id for the tenant.
    """
    stmt = select(model).where(
        model.id == entity_id,
        model.organization_id == tenant_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    row = session.scalars(stmt).first()
    if row is None:
        raise EntityNotFoundError(model.__name__.lower(), str(entity_id))
    return row


def load_campaign(session: Session, tenant_id: UUID, campaign_id: UUID, *, for_update: bool = False) -> Campaign:
    return load_entity(session, Campaign, tenant_id, campaign_id, for_update=for_update)


def load_order(session: Session, tenant_id: UUID, order_id: UUID, *, for_update: bool = False) -> Order:
    return load_entity(session, Order, tenant_id, order_id, for_update=for_update)


def load_contract(session: Session, tenant_id: UUID, contract_id: UUID) -> Contract:
    return load_entity(session, Contract, tenant_id, contract_id)


def load_episode(session: Session, tenant_id: UUID, episode_id: UUID) -> Episode:
    return load_entity(session, Episode, tenant_id, episode_id)


def campaign_spot_lines(session: Session, tenant_id: UUID, campaign: Campaign) -> tuple[SpotLine, ...]:
    """
    Snapshot a campaign's scheduled spots with show details attached.

    A spot without its own default rate takes the show's default rate.
    """
    spots = [spot for spot in campaign.spots if spot.organization_id == tenant_id]
    show_ids = {spot.show_id for spot in spots}
    shows: dict[UUID, Show] = {}
    if show_ids:
        shows = {
            show.id: show
            for show in session.scalars(
                select(Show).where(
                    Show.organization_id == tenant_id,
                    Show.id.in_(show_ids),
                )
            )
        }

    lines = []
    for spot in spots:
        show = shows.get(spot.show_id)
        lines.append(
            SpotLine(
                spot_id=spot.id,
                show_id=spot.show_id,
                air_date=spot.air_date,
                placement_type=spot.placement_type,
                spot_type=spot.spot_type,
                rate=spot.rate,
                length=spot.length,
                episode_id=spot.episode_id,
                talent_id=show.talent_id if show else None,
                show_name=show.name if show else None,
                default_rate=spot.default_rate if spot.default_rate is not None
                else (show.default_rate if show else None),
                negotiated_rate=spot.negotiated_rate,
            )
        )
    return tuple(lines)

"""
campaign_engines.talent -- group scheduled spots into talent approval requests.

One request per unique (show, talent) among spots whose type is in the
tenant's allow-list.  Spots without a talent are skipped.  Groups keep the
order in which their first spot appears.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from campaign_kernel.domain.schedule import SpotLine


@dataclass(frozen=True)
class TalentGroup:
    show_id: UUID
    talent_id: UUID
    spots: tuple[SpotLine, ...]

    @property
    def spot_type(self) -> str:
        return self.spots[0].spot_type

    @property
    def spot_types(self) -> tuple[str, ...]:
        return tuple(sorted({s.spot_type for s in self.spots}))

    def summary_data(self) -> dict[str, Any]:
        """JSON-safe snapshot stored on the request."""
        return {
            "show_name": self.spots[0].show_name,
            "spot_count": len(self.spots),
            "spot_types": list(self.spot_types),
            "air_dates": sorted({s.air_date.isoformat() for s in self.spots}),
            "total_value": str(sum((s.rate for s in self.spots), Decimal("0"))),
            "spot_ids": [str(s.spot_id) for s in self.spots],
        }


def group_spots_for_talent_approval(
    spots: Iterable[SpotLine],
    allowed_spot_types: Iterable[str],
) -> tuple[TalentGroup, ...]:
    allowed = set(allowed_spot_types)
    groups: dict[tuple[UUID, UUID], list[SpotLine]] = {}
    for spot in spots:
        if spot.talent_id is None or spot.spot_type not in allowed:
            continue
        groups.setdefault((spot.show_id, spot.talent_id), []).append(spot)
    return tuple(
        TalentGroup(show_id=show_id, talent_id=talent_id, spots=tuple(members))
        for (show_id, talent_id), members in groups.items()
    )

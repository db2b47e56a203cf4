"""
Schedule snapshots -- ORM-free views of scheduled spots.

Engines take these instead of ORM rows so grouping, variance and line
derivation stay pure.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class SpotLine:
    spot_id: UUID
    show_id: UUID
    air_date: date
    placement_type: str
    spot_type: str
    rate: Decimal
    length: int = 30
    episode_id: UUID | None = None
    talent_id: UUID | None = None
    show_name: str | None = None
    default_rate: Decimal | None = None
    negotiated_rate: Decimal | None = None

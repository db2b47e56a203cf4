"""
campaign_engines.rate_card -- rate-card variance.

Variance is the average percentage delta between each spot's negotiated
rate and its rate-card (default) rate, over the spots where both rates are
positive.  A campaign with no comparable spot has zero variance.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from campaign_kernel.domain.schedule import SpotLine

_HUNDRED = Decimal("100")
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class RateCardAssessment:
    variance_percent: Decimal
    compared_spots: int
    exceeds_threshold: bool
    requires_approval: bool


def spot_variance_percent(negotiated: Decimal | None, default: Decimal | None) -> Decimal | None:
    if negotiated is None or default is None or negotiated <= 0 or default <= 0:
        return None
    return (negotiated - default) / default * _HUNDRED


def compute_rate_card_variance(spots: Iterable[SpotLine]) -> tuple[Decimal, int]:
    """``(average variance percent, number of spots compared)``."""
    deltas = [
        delta for delta in (
            spot_variance_percent(s.negotiated_rate, s.default_rate) for s in spots
        )
        if delta is not None
    ]
    if not deltas:
        return Decimal("0.00"), 0
    average = sum(deltas, Decimal("0")) / len(deltas)
    return average.quantize(_CENTS, rounding=ROUND_HALF_UP), len(deltas)


def assess_rate_card(
    spots: Iterable[SpotLine],
    variance_threshold_percent: Decimal,
    require_approval_above_percent: Decimal,
) -> RateCardAssessment:
    """Variance plus whether it crosses the flag and approval thresholds (by magnitude)."""
    variance, compared = compute_rate_card_variance(spots)
    magnitude = abs(variance)
    return RateCardAssessment(
        variance_percent=variance,
        compared_spots=compared,
        exceeds_threshold=magnitude > variance_threshold_percent,
        requires_approval=magnitude > require_approval_above_percent,
    )

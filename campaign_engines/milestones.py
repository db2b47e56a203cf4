"""
campaign_engines.milestones -- crossing detection and status projection.

Responsibility:
    Decide which milestones a probability change crosses and what a
    probability looks like as a status label.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import campaign_kernel.domain types.

Invariants enforced:
    - Edge trigger: a milestone is crossed iff ``old < value <= new``.
      Equal or decreasing probabilities cross nothing.
    - Crossings are ordered by threshold value (ladder order, since the
      ladder is strictly increasing).
"""

from __future__ import annotations

from collections.abc import Iterable

from campaign_engines.tracer import traced_engine
from campaign_kernel.domain.milestones import (
    STATUS_LABELS,
    MilestoneName,
    ThresholdSet,
)


@traced_engine("milestones", "1.0", fingerprint_fields=("old_probability", "new_probability"))
def compute_crossings(
    old_probability: int,
    new_probability: int,
    thresholds: ThresholdSet,
) -> tuple[MilestoneName, ...]:
    """Milestones crossed moving from ``old_probability`` to ``new_probability``."""
    if new_probability <= old_probability:
        return ()
    crossed = [
        m for m in thresholds.milestones
        if m.is_crossed(old_probability, new_probability)
    ]
    crossed.sort(key=lambda m: m.value)
    return tuple(m.name for m in crossed)


def status_label_for(probability: int, thresholds: ThresholdSet) -> str:
    """Display label: the highest milestone reached, projected to a label."""
    return STATUS_LABELS[thresholds.highest_reached(probability)]


def previous_state_for(probability: int, thresholds: ThresholdSet) -> str:
    """Workflow state a campaign at ``probability`` is in before crossing further."""
    return thresholds.highest_reached(probability)


def milestones_above(value: int, thresholds: ThresholdSet) -> tuple[MilestoneName, ...]:
    """Milestones strictly above ``value``; cleared from the ledger on rejection."""
    return tuple(m.name for m in thresholds.milestones if m.value > value)


def pending_crossings(
    crossings: Iterable[MilestoneName],
    already_crossed: Iterable[str],
) -> tuple[MilestoneName, ...]:
    """Drop milestones already recorded for the campaign, preserving order."""
    seen = {MilestoneName(name) for name in already_crossed}
    return tuple(m for m in crossings if m not in seen)

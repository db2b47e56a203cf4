"""
Milestones -- named probability thresholds and their validated ladder.

Responsibility:
    Value types for the probability milestones that drive a campaign's sales
    lifecycle.  A ``ThresholdSet`` is constructed once per evaluation from
    tenant configuration and rejects invalid ladders at construction, so a
    bad configuration surfaces at load time and never at transition time.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Every threshold is an integer in [0, 100].
    - pre_sale_active < schedule_valid < talent_approval < admin_approval
      < order_creation (strict).
    - auto_reserve coincides with one of the ladder milestones.
    - 0 <= rejection_fallback < admin_approval.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from campaign_kernel.exceptions import (
    InvalidThresholdError,
    NonMonotonicThresholdError,
)


class MilestoneName(str, Enum):
    """Forward milestones of the campaign ladder, in ladder order."""

    PRE_SALE_ACTIVE = "pre_sale_active"
    SCHEDULE_VALID = "schedule_valid"
    TALENT_APPROVAL = "talent_approval"
    ADMIN_APPROVAL = "admin_approval"
    ORDER_CREATION = "order_creation"


LADDER: tuple[MilestoneName, ...] = tuple(MilestoneName)

# Workflow states outside the ladder.
INITIAL_STATE = "prospect"
REJECTED_STATE = "rejected"

# Registry keys that are not ladder milestones.
AUTO_RESERVE = "auto_reserve"
REJECTION_FALLBACK = "rejection_fallback"

THRESHOLD_KEYS: tuple[str, ...] = (
    *(m.value for m in LADDER),
    AUTO_RESERVE,
    REJECTION_FALLBACK,
)

STATUS_LABELS: dict[str, str] = {
    INITIAL_STATE: "prospect",
    MilestoneName.PRE_SALE_ACTIVE.value: "pre_sale",
    MilestoneName.SCHEDULE_VALID.value: "scheduled",
    MilestoneName.TALENT_APPROVAL.value: "talent_review",
    MilestoneName.ADMIN_APPROVAL.value: "pending_approval",
    MilestoneName.ORDER_CREATION.value: "won",
}


@dataclass(frozen=True)
class Milestone:
    """A named probability threshold."""

    name: MilestoneName
    value: int

    def is_crossed(self, old_probability: int, new_probability: int) -> bool:
        """Edge trigger: ``old < value <= new``."""
        return old_probability < self.value <= new_probability


def _check_value(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidThresholdError(name, value, "must be an integer")
    if not 0 <= value <= 100:
        raise InvalidThresholdError(name, value, "must be within [0, 100]")
    return value


@dataclass(frozen=True)
class ThresholdSet:
    """
    Validated threshold values for one tenant.

    Raises:
        InvalidThresholdError: value missing, not an int, or out of range.
        NonMonotonicThresholdError: ladder not strictly increasing.
    """

    pre_sale_active: int
    schedule_valid: int
    talent_approval: int
    admin_approval: int
    order_creation: int
    auto_reserve: int
    rejection_fallback: int

    def __post_init__(self) -> None:
        for key in THRESHOLD_KEYS:
            _check_value(key, getattr(self, key))

        for lower, upper in zip(LADDER, LADDER[1:]):
            lower_value = getattr(self, lower.value)
            upper_value = getattr(self, upper.value)
            if lower_value >= upper_value:
                raise NonMonotonicThresholdError(
                    lower.value, lower_value, upper.value, upper_value,
                )

        if self.auto_reserve not in {getattr(self, m.value) for m in LADDER}:
            raise InvalidThresholdError(
                AUTO_RESERVE,
                self.auto_reserve,
                "must coincide with one of the milestone thresholds",
            )

        if self.rejection_fallback >= self.admin_approval:
            raise NonMonotonicThresholdError(
                REJECTION_FALLBACK,
                self.rejection_fallback,
                MilestoneName.ADMIN_APPROVAL.value,
                self.admin_approval,
            )

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> ThresholdSet:
        """Build from a ``{name: value}`` mapping; unknown keys are rejected."""
        unknown = sorted(set(values) - set(THRESHOLD_KEYS))
        if unknown:
            raise InvalidThresholdError(unknown[0], values[unknown[0]], "unknown threshold")
        missing = [key for key in THRESHOLD_KEYS if key not in values]
        if missing:
            raise InvalidThresholdError(missing[0], None, "missing threshold")
        return cls(**{key: values[key] for key in THRESHOLD_KEYS})

    def as_dict(self) -> dict[str, int]:
        return {key: getattr(self, key) for key in THRESHOLD_KEYS}

    def value_of(self, name: MilestoneName | str) -> int:
        return getattr(self, MilestoneName(name).value)

    @property
    def milestones(self) -> tuple[Milestone, ...]:
        """Ladder milestones in ladder order."""
        return tuple(Milestone(name, self.value_of(name)) for name in LADDER)

    @property
    def auto_reserve_milestone(self) -> MilestoneName:
        """The ladder milestone at which inventory is reserved."""
        for milestone in self.milestones:
            if milestone.value == self.auto_reserve:
                return milestone.name
        # Unreachable once __post_init__ has run.
        raise InvalidThresholdError(AUTO_RESERVE, self.auto_reserve, "no matching milestone")

    def highest_reached(self, probability: int) -> str:
        """Highest milestone at or below ``probability``, else the initial state."""
        reached = INITIAL_STATE
        for milestone in self.milestones:
            if milestone.value <= probability:
                reached = milestone.name.value
        return reached

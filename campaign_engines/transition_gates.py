"""
campaign_engines.transition_gates -- role and precondition gates.

Responsibility:
    Decide whether a milestone transition may proceed, before any side
    effect runs.  Every gate either returns (possibly with warnings) or
    raises a ``TransitionError`` subclass the caller reports as a rejected
    transition.

Architecture position:
    Engines -- pure, zero I/O.  Callers load counts and flags and pass them in.

Gates:
    - Admin approval: denied talent approvals block unless the actor holds
      an override role.  Pending approvals warn, and block only when the
      tenant sets ``block_on_pending_talent_approvals`` and the actor lacks
      override.
    - Order creation: a non-privileged actor needs an approved campaign
      approval when the tenant requires one.
    - Rejection / approval: actor role must be an approval role and the
      campaign must sit in the admin-approval state (at or above admin
      approval, below order creation).
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from campaign_kernel.domain.milestones import MilestoneName, ThresholdSet
from campaign_kernel.exceptions import (
    CampaignApprovalRequiredError,
    DeniedTalentApprovalError,
    InvalidTransitionError,
    PendingTalentApprovalError,
    UnauthorizedTransitionError,
)


@dataclass(frozen=True)
class TalentApprovalCounts:
    pending: int = 0
    approved: int = 0
    denied: int = 0


@dataclass(frozen=True)
class GateResult:
    milestone: MilestoneName
    warnings: tuple[str, ...] = ()
    overridden: bool = False


def check_admin_approval_gate(
    campaign_id: UUID,
    actor_role: str,
    counts: TalentApprovalCounts,
    override_roles: tuple[str, ...],
    block_on_pending: bool = False,
) -> GateResult:
    milestone = MilestoneName.ADMIN_APPROVAL
    can_override = actor_role in override_roles
    warnings: list[str] = []
    overridden = False

    if counts.denied:
        if not can_override:
            raise DeniedTalentApprovalError(str(campaign_id), milestone.value, counts.denied)
        overridden = True
        warnings.append(
            f"{counts.denied} denied talent approval(s) overridden by role '{actor_role}'"
        )

    if counts.pending:
        if block_on_pending and not can_override:
            raise PendingTalentApprovalError(str(campaign_id), milestone.value, counts.pending)
        warnings.append(f"{counts.pending} talent approval(s) still pending")

    return GateResult(milestone, tuple(warnings), overridden)


def check_order_creation_gate(
    campaign_id: UUID,
    actor_role: str,
    privileged_roles: tuple[str, ...],
    require_campaign_approval: bool,
    has_approved_campaign_approval: bool,
) -> GateResult:
    milestone = MilestoneName.ORDER_CREATION
    if actor_role in privileged_roles or not require_campaign_approval:
        return GateResult(milestone)
    if not has_approved_campaign_approval:
        raise CampaignApprovalRequiredError(str(campaign_id), milestone.value)
    return GateResult(milestone)


def check_decision_gate(
    campaign_id: UUID,
    actor_role: str,
    approval_roles: tuple[str, ...],
    probability: int,
    thresholds: ThresholdSet,
    decision: str,
) -> None:
    """Gate for ``reject`` and ``approve`` decisions on an admin approval."""
    if actor_role not in approval_roles:
        raise UnauthorizedTransitionError(actor_role, decision, approval_roles)
    if not thresholds.admin_approval <= probability < thresholds.order_creation:
        raise InvalidTransitionError(
            str(campaign_id),
            f"{probability}%",
            decision,
        )

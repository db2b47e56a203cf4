"""
campaign_services.campaign_workflow -- the campaign milestone state machine.

Responsibility:
    Entry point for probability changes, explicit rejection and approval.
    Computes milestone crossings, validates every gate before any side
    effect, persists the probability and status label, records crossed
    milestones in the ledger, and runs one workflow evaluation per crossing.

Architecture position:
    Services layer -- the imperative shell over the milestone, gate and rule
    engines.  Owns the transaction: one ``session_scope`` per call, held
    under the campaign's entity lock from read to commit.

Invariants enforced:
    - Edge-triggered: a milestone fires only when crossed upward, and only
      once per campaign (the ledger); rejection clears entries above the
      fallback so the campaign can cross them again.
    - Gate failures raise before anything is written; the transaction rolls
      back and the probability change is not committed.
    - A fatal action failure rolls back the whole transition.
    - Configuration is read at the start of every call; nothing is cached
      across transitions.

Failure modes:
    - InvalidProbabilityError for a value outside [0, 100].
    - EntityNotFoundError for an unknown campaign (or another tenant's).
    - PreconditionViolationError / UnauthorizedTransitionError /
      InvalidTransitionError from the gates.
    - FatalActionError from the workflow engine.
    - EntityLockTimeoutError when the campaign lock cannot be acquired.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from campaign_config.defaults import default_rule_set
from campaign_config.registry import ThresholdRegistry
from campaign_config.schema import TenantWorkflowConfig
from campaign_engines.milestones import (
    compute_crossings,
    milestones_above,
    pending_crossings,
    previous_state_for,
    status_label_for,
)
from campaign_engines.transition_gates import (
    check_admin_approval_gate,
    check_decision_gate,
    check_order_creation_gate,
)
from campaign_kernel.db.engine import session_scope
from campaign_kernel.domain.clock import Clock, SystemClock
from campaign_kernel.domain.context import Actor, EntityType, WorkflowContext
from campaign_kernel.domain.milestones import REJECTED_STATE, MilestoneName
from campaign_kernel.domain.rules import ActionKind, RuleSet
from campaign_kernel.exceptions import InvalidProbabilityError, TransitionError
from campaign_kernel.logging_config import LogContext, get_logger
from campaign_kernel.models import Campaign, CampaignMilestone
from campaign_services.action_executors import ActionExecutors
from campaign_services.entity_lock import EntityLockRegistry
from campaign_services.lookups import load_campaign
from campaign_services.notification_service import NotificationDelivery
from campaign_services.workflow_engine import EvaluationResult, WorkflowEngine

logger = get_logger("services.campaign_workflow")

ADMIN_APPROVAL_NOTIFICATION = "admin_approval_required"


@dataclass(frozen=True)
class TransitionResult:
    campaign_id: UUID
    old_probability: int
    new_probability: int
    status: str
    crossed: tuple[MilestoneName, ...]
    warnings: tuple[str, ...]
    evaluations: tuple[EvaluationResult, ...]

    @property
    def success(self) -> bool:
        return all(evaluation.success for evaluation in self.evaluations)

    def created(self, kind: ActionKind) -> tuple[UUID, ...]:
        return tuple(
            record_id
            for evaluation in self.evaluations
            for record_id in evaluation.created(kind)
        )


@dataclass(frozen=True)
class RejectionResult:
    campaign_id: UUID
    probability: int
    status: str
    released_reservations: tuple[UUID, ...]
    cleared_notifications: int
    evaluation: EvaluationResult


def _check_probability(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise InvalidProbabilityError(value)
    return value


class CampaignWorkflowService:
    """
    Campaign state machine service.

    Args:
        session_factory: Factory for the per-call transaction.
        registry: Tenant configuration registry, read on every call.
        engine: Shared workflow engine (owns telemetry).
        locks: Per-entity lock registry shared by every service instance
            in the process.
        clock: Time source for ledger entries and created records.
        rule_set: Base rule set; defaults to the built-in rules for the
            tenant's thresholds.  Tenant rule overrides apply on top.
        delivery: External notification sink.
        lock_timeout: Seconds to wait for a campaign lock.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: ThresholdRegistry,
        engine: WorkflowEngine | None = None,
        locks: EntityLockRegistry | None = None,
        clock: Clock | None = None,
        rule_set: RuleSet | None = None,
        delivery: NotificationDelivery | None = None,
        lock_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._engine = engine or WorkflowEngine()
        self._locks = locks or EntityLockRegistry()
        self._clock = clock or SystemClock()
        self._rule_set = rule_set
        self._delivery = delivery
        self._lock_timeout = lock_timeout

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    @contextmanager
    def _transaction(self, tenant_id: UUID, entity_id: UUID, actor: Actor) -> Iterator[Session]:
        with (
            self._locks.hold(tenant_id, entity_id, self._lock_timeout),
            LogContext.bind(tenant_id=tenant_id, actor_id=actor.id, entity_id=entity_id),
            session_scope(self._session_factory) as session,
        ):
            yield session

    def _rules_for(self, config: TenantWorkflowConfig) -> RuleSet:
        base = self._rule_set if self._rule_set is not None else default_rule_set(config.thresholds)
        return config.rule_overrides.apply(base)

    def _executors(self, session: Session, config: TenantWorkflowConfig) -> ActionExecutors:
        return ActionExecutors(session, self._clock, config, self._locks, self._delivery)

    # =========================================================================
    # Probability updates
    # =========================================================================

    def update_probability(
        self,
        tenant_id: UUID,
        campaign_id: UUID,
        new_probability: int,
        actor: Actor,
    ) -> TransitionResult:
        """Set a campaign's probability and fire every milestone it crosses."""
        new_probability = _check_probability(new_probability)
        try:
            with self._transaction(tenant_id, campaign_id, actor) as session:
                config = self._registry.get_config(tenant_id, session)
                campaign = load_campaign(session, tenant_id, campaign_id, for_update=True)
                return self._advance(
                    session, config, campaign, campaign.probability, new_probability, actor,
                )
        except TransitionError as exc:
            logger.warning(
                "transition_rejected",
                extra={
                    "campaign_id": str(campaign_id),
                    "requested_probability": new_probability,
                    "error_code": exc.code,
                    "error": str(exc),
                },
            )
            raise

    def _advance(
        self,
        session: Session,
        config: TenantWorkflowConfig,
        campaign: Campaign,
        old_probability: int,
        new_probability: int,
        actor: Actor,
    ) -> TransitionResult:
        thresholds = config.thresholds
        tenant_id = campaign.organization_id

        crossings = compute_crossings(old_probability, new_probability, thresholds)
        ledger = session.scalars(
            select(CampaignMilestone.milestone).where(
                CampaignMilestone.organization_id == tenant_id,
                CampaignMilestone.campaign_id == campaign.id,
            )
        ).all()
        pending = pending_crossings(crossings, ledger)
        if len(pending) < len(crossings):
            logger.info(
                "milestones_already_crossed",
                extra={
                    "campaign_id": str(campaign.id),
                    "skipped": [m.value for m in crossings if m not in pending],
                },
            )

        executors = self._executors(session, config)
        warnings = self._check_gates(executors, config, campaign, pending, actor)

        campaign.probability = new_probability
        campaign.status = status_label_for(new_probability, thresholds)
        session.flush()
        logger.info(
            "campaign_probability_updated",
            extra={
                "campaign_id": str(campaign.id),
                "old_probability": old_probability,
                "new_probability": new_probability,
                "campaign_status": campaign.status,
                "crossed": [m.value for m in pending],
            },
        )

        evaluations: list[EvaluationResult] = []
        if pending:
            rule_set = self._rules_for(config)
            dispatcher = executors.dispatcher()
            now = self._clock.now()
            for milestone in pending:
                session.add(
                    CampaignMilestone(
                        organization_id=tenant_id,
                        campaign_id=campaign.id,
                        milestone=milestone.value,
                        probability=new_probability,
                        crossed_at=now,
                        actor_id=actor.id,
                    )
                )
                session.flush()
                context = WorkflowContext.for_actor(
                    entity_id=campaign.id,
                    entity_type=EntityType.CAMPAIGN,
                    previous_state=previous_state_for(thresholds.value_of(milestone) - 1, thresholds),
                    new_state=milestone.value,
                    actor=actor,
                    tenant_id=tenant_id,
                    metadata=self._campaign_metadata(campaign, old_probability, new_probability, milestone),
                )
                evaluations.append(self._engine.evaluate(session, context, rule_set, dispatcher))

        return TransitionResult(
            campaign_id=campaign.id,
            old_probability=old_probability,
            new_probability=new_probability,
            status=campaign.status,
            crossed=pending,
            warnings=warnings,
            evaluations=tuple(evaluations),
        )

    def _check_gates(
        self,
        executors: ActionExecutors,
        config: TenantWorkflowConfig,
        campaign: Campaign,
        pending: tuple[MilestoneName, ...],
        actor: Actor,
    ) -> tuple[str, ...]:
        approvals = config.approvals
        warnings: list[str] = []

        if MilestoneName.ADMIN_APPROVAL in pending:
            counts = executors.approvals.talent_counts(campaign.organization_id, campaign.id)
            gate = check_admin_approval_gate(
                campaign.id,
                actor.role,
                counts,
                approvals.override_roles,
                approvals.block_on_pending_talent_approvals,
            )
            warnings.extend(gate.warnings)
            if gate.overridden:
                logger.warning(
                    "talent_denial_overridden",
                    extra={"campaign_id": str(campaign.id), "actor_role": actor.role},
                )

        if MilestoneName.ORDER_CREATION in pending:
            check_order_creation_gate(
                campaign.id,
                actor.role,
                approvals.approval_roles,
                approvals.require_campaign_approval,
                executors.approvals.has_approved_campaign_approval(
                    campaign.organization_id, campaign.id,
                ),
            )

        for warning in warnings:
            logger.warning(
                "transition_warning",
                extra={"campaign_id": str(campaign.id), "warning": warning},
            )
        return tuple(warnings)

    @staticmethod
    def _campaign_metadata(
        campaign: Campaign,
        old_probability: int,
        new_probability: int,
        milestone: MilestoneName,
    ) -> dict[str, Any]:
        return {
            "old_probability": old_probability,
            "new_probability": new_probability,
            "probability": new_probability,
            "milestone": milestone.value,
            "has_scheduled_spots": bool(campaign.spots),
            "spot_count": len(campaign.spots),
            "budget": campaign.budget,
            "advertiser_id": campaign.advertiser_id,
            "created_by_id": campaign.created_by_id,
            "campaign_name": campaign.name,
        }

    # =========================================================================
    # Inbound transitions
    # =========================================================================

    def evaluate_transition(self, context: WorkflowContext) -> TransitionResult | EvaluationResult:
        """
        Evaluate a transition a mutation handler has already persisted.

        Campaign contexts carrying ``old_probability``/``new_probability``
        take the milestone path and return a ``TransitionResult``; every
        other context is matched against the rules directly.
        """
        metadata = context.metadata
        actor = context.actor
        if (
            context.entity_type is EntityType.CAMPAIGN
            and "old_probability" in metadata
            and "new_probability" in metadata
        ):
            old_probability = _check_probability(metadata["old_probability"])
            new_probability = _check_probability(metadata["new_probability"])
            with self._transaction(context.tenant_id, context.entity_id, actor) as session:
                config = self._registry.get_config(context.tenant_id, session)
                campaign = load_campaign(session, context.tenant_id, context.entity_id, for_update=True)
                return self._advance(session, config, campaign, old_probability, new_probability, actor)

        with self._transaction(context.tenant_id, context.entity_id, actor) as session:
            config = self._registry.get_config(context.tenant_id, session)
            executors = self._executors(session, config)
            if context.entity_type is EntityType.EPISODE and "has_active_orders" not in metadata:
                context = context.transition(
                    context.previous_state,
                    context.new_state,
                    has_active_orders=executors.billing.has_active_orders(
                        context.tenant_id, context.entity_id,
                    ),
                )
            return self._engine.evaluate(session, context, self._rules_for(config), executors.dispatcher())

    # =========================================================================
    # Decisions on an admin approval
    # =========================================================================

    def reject_campaign(
        self,
        tenant_id: UUID,
        campaign_id: UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> RejectionResult:
        """
        Reject a campaign awaiting admin approval.

        Returns the campaign to the rejection fallback probability without
        crossing detection, and runs the ``admin_approval -> rejected`` rules.
        """
        with self._transaction(tenant_id, campaign_id, actor) as session:
            config = self._registry.get_config(tenant_id, session)
            thresholds = config.thresholds
            campaign = load_campaign(session, tenant_id, campaign_id, for_update=True)
            check_decision_gate(
                campaign.id,
                actor.role,
                config.approvals.approval_roles,
                campaign.probability,
                thresholds,
                "reject",
            )

            executors = self._executors(session, config)
            released = executors.reservations.release_held(tenant_id, campaign.id)
            executors.approvals.reject_campaign_approval(tenant_id, campaign.id, actor.id, reason)
            cleared = executors.notifications.clear(tenant_id, campaign.id, ADMIN_APPROVAL_NOTIFICATION)

            reopened = [m.value for m in milestones_above(thresholds.rejection_fallback, thresholds)]
            session.execute(
                delete(CampaignMilestone).where(
                    CampaignMilestone.organization_id == tenant_id,
                    CampaignMilestone.campaign_id == campaign.id,
                    CampaignMilestone.milestone.in_(reopened),
                )
            )

            previous_probability = campaign.probability
            campaign.probability = thresholds.rejection_fallback
            campaign.status = status_label_for(thresholds.rejection_fallback, thresholds)
            if campaign.reservation_id in {r.id for r in released}:
                campaign.reservation_id = None
            session.flush()
            logger.info(
                "campaign_rejected",
                extra={
                    "campaign_id": str(campaign.id),
                    "previous_probability": previous_probability,
                    "fallback_probability": campaign.probability,
                    "released_reservations": len(released),
                    "cleared_notifications": cleared,
                    "reopened_milestones": reopened,
                },
            )

            context = WorkflowContext.for_actor(
                entity_id=campaign.id,
                entity_type=EntityType.CAMPAIGN,
                previous_state=MilestoneName.ADMIN_APPROVAL.value,
                new_state=REJECTED_STATE,
                actor=actor,
                tenant_id=tenant_id,
                metadata={
                    "previous_probability": previous_probability,
                    "probability": campaign.probability,
                    "reason": reason,
                    "created_by_id": campaign.created_by_id,
                    "campaign_name": campaign.name,
                },
            )
            evaluation = self._engine.evaluate(
                session, context, self._rules_for(config), executors.dispatcher(),
            )
            return RejectionResult(
                campaign_id=campaign.id,
                probability=campaign.probability,
                status=campaign.status,
                released_reservations=tuple(r.id for r in released),
                cleared_notifications=cleared,
                evaluation=evaluation,
            )

    def approve_campaign(self, tenant_id: UUID, campaign_id: UUID, actor: Actor) -> TransitionResult:
        """Approve the pending campaign approval and advance to order creation."""
        with self._transaction(tenant_id, campaign_id, actor) as session:
            config = self._registry.get_config(tenant_id, session)
            campaign = load_campaign(session, tenant_id, campaign_id, for_update=True)
            check_decision_gate(
                campaign.id,
                actor.role,
                config.approvals.approval_roles,
                campaign.probability,
                config.thresholds,
                "approve",
            )
            self._executors(session, config).approvals.approve_campaign_approval(
                tenant_id, campaign.id, actor.id,
            )
            return self._advance(
                session,
                config,
                campaign,
                campaign.probability,
                config.thresholds.order_creation,
                actor,
            )

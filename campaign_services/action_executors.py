"""
campaign_services.action_executors -- the nine side-effect executors.

Responsibility:
    Map every ``ActionKind`` to an executor that performs one side effect
    for one ``WorkflowContext``.  Each executor checks the natural business
    key first, so re-running a rule after a crash or a racing request skips
    instead of duplicating.

Architecture position:
    Services layer.  Executors call the domain services for I/O and the
    engines for calculation.  The workflow engine owns failure isolation;
    executors raise on failure and return an ``ActionResult`` otherwise.

Invariants enforced:
    - ``ActionDispatcher`` refuses to construct unless every kind is mapped.
    - Every record written carries the evaluating tenant's id.
    - An executor never acts on an entity type it does not understand; it
      raises ``ActionExecutionError`` instead.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from campaign_config.schema import TenantWorkflowConfig
from campaign_engines.rate_card import RateCardAssessment, assess_rate_card
from campaign_engines.talent import group_spots_for_talent_approval
from campaign_kernel.domain.clock import Clock
from campaign_kernel.domain.context import EntityType, WorkflowContext
from campaign_kernel.domain.rules import ActionKind, ActionSpec
from campaign_kernel.exceptions import (
    ActionExecutionError,
    ConfigurationError,
    NoBillableItemsError,
)
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models import (
    Campaign,
    ContractStatus,
    Order,
    OrderStatus,
    ReservationStatus,
)
from campaign_services.approval_service import ApprovalService
from campaign_services.billing_service import BillingService
from campaign_services.entity_lock import EntityLockRegistry
from campaign_services.lookups import (
    campaign_spot_lines,
    load_campaign,
    load_contract,
    load_order,
)
from campaign_services.notification_service import NotificationDelivery, NotificationService
from campaign_services.order_service import OrderService
from campaign_services.reservation_service import ReservationService
from campaign_services.task_service import TaskService

logger = get_logger("services.action_executors")

CAMPAIGN_FLAGS = ("schedule_builder_enabled", "schedule_validated", "rate_card_tracking")

_HUNDRED = Decimal("100")


class ActionStatus(str, Enum):
    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one action: what was created, or why nothing was."""

    kind: ActionKind
    status: ActionStatus
    record_ids: tuple[UUID, ...] = ()
    reason: str | None = None
    rule_id: str | None = None

    @classmethod
    def executed(cls, kind: ActionKind, *record_ids: UUID, reason: str | None = None) -> ActionResult:
        return cls(kind, ActionStatus.EXECUTED, tuple(record_ids), reason)

    @classmethod
    def skipped(cls, kind: ActionKind, reason: str) -> ActionResult:
        return cls(kind, ActionStatus.SKIPPED, (), reason)

    @classmethod
    def failed(cls, kind: ActionKind, reason: str, rule_id: str | None = None) -> ActionResult:
        return cls(kind, ActionStatus.FAILED, (), reason, rule_id)

    def for_rule(self, rule_id: str) -> ActionResult:
        return replace(self, rule_id=rule_id)


ActionHandler = Callable[[Mapping[str, Any], WorkflowContext], ActionResult]


class ActionDispatcher:
    """Routes an ``ActionSpec`` to the executor for its kind."""

    def __init__(self, handlers: Mapping[ActionKind, ActionHandler]):
        missing = [kind.value for kind in ActionKind if kind not in handlers]
        if missing:
            raise ConfigurationError(
                f"No executor registered for action kind(s): {', '.join(missing)}"
            )
        self._handlers = dict(handlers)

    def dispatch(self, spec: ActionSpec, context: WorkflowContext) -> ActionResult:
        return self._handlers[spec.kind](spec.config, context)


def _required(config: Mapping[str, Any], key: str, kind: ActionKind) -> Any:
    if config.get(key) is None:
        raise ActionExecutionError(kind.value, f"'{key}' is required")
    return config[key]


def _require_entity(kind: ActionKind, context: WorkflowContext, *allowed: EntityType) -> None:
    if context.entity_type not in allowed:
        raise ActionExecutionError(
            kind.value,
            f"not applicable to {context.entity_type.value} transitions",
        )


class ActionExecutors:
    """
    Executors bound to one session and one tenant configuration.

    Built per evaluation: the configuration is read fresh for every
    transition, and the session is the evaluation's transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: TenantWorkflowConfig,
        locks: EntityLockRegistry,
        delivery: NotificationDelivery | None = None,
    ):
        self._session = session
        self._clock = clock
        self._config = config
        self.reservations = ReservationService(session, clock, config.reservations)
        self.approvals = ApprovalService(session, clock, config.approvals)
        self.orders = OrderService(session, clock)
        self.billing = BillingService(session, clock, locks, config.billing)
        self.notifications = NotificationService(session, clock, config.notifications, delivery)
        self.tasks = TaskService(session, clock)

    def as_handlers(self) -> dict[ActionKind, ActionHandler]:
        return {
            ActionKind.CREATE_RESERVATION: self.create_reservation,
            ActionKind.CREATE_TALENT_APPROVAL: self.create_talent_approval,
            ActionKind.CREATE_ADMIN_APPROVAL: self.create_admin_approval,
            ActionKind.CREATE_CONTRACT: self.create_contract,
            ActionKind.CREATE_ORDER: self.create_order,
            ActionKind.CREATE_INVOICE: self.create_invoice,
            ActionKind.SEND_NOTIFICATION: self.send_notification,
            ActionKind.ASSIGN_TASK: self.assign_task,
            ActionKind.UPDATE_STATUS: self.update_status,
        }

    def dispatcher(self) -> ActionDispatcher:
        return ActionDispatcher(self.as_handlers())

    def _campaign(self, context: WorkflowContext) -> Campaign:
        return load_campaign(self._session, context.tenant_id, context.entity_id)

    def _notify(
        self,
        notification_type: str,
        recipients: list[Any],
        context: WorkflowContext,
        fields: Mapping[str, Any] | None = None,
    ) -> None:
        """Send a notification alongside another action; failures never undo that action."""
        try:
            with self._session.begin_nested():
                self.notifications.send(
                    context.tenant_id, notification_type, recipients, context, fields=fields,
                )
        except Exception:
            logger.warning(
                "embedded_notification_failed",
                extra={
                    "notification_type": notification_type,
                    "rule_entity_id": str(context.entity_id),
                },
                exc_info=True,
            )

    # =========================================================================
    # Campaign milestone actions
    # =========================================================================

    def create_reservation(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.CREATE_RESERVATION
        _require_entity(kind, context, EntityType.CAMPAIGN)
        campaign = self._campaign(context)

        existing = self.reservations.find_active(context.tenant_id, campaign.id)
        if existing is not None:
            campaign.reservation_id = existing.id
            return ActionResult.skipped(kind, f"active reservation {existing.reservation_number} exists")

        # A campaign without spots still gets an empty hold.
        spots = campaign_spot_lines(self._session, context.tenant_id, campaign)
        auto_reserve = Decimal(self._config.thresholds.auto_reserve)
        estimated = (campaign.budget or Decimal("0")) * auto_reserve / _HUNDRED
        reservation = self.reservations.create_for_campaign(
            context.tenant_id, campaign, spots, estimated, context.actor_id,
        )
        campaign.reservation_id = reservation.id
        self._session.flush()
        return ActionResult.executed(kind, reservation.id)

    def create_talent_approval(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.CREATE_TALENT_APPROVAL
        _require_entity(kind, context, EntityType.CAMPAIGN)
        campaign = self._campaign(context)
        spot_types = config.get("spot_types") or self._config.approvals.talent_spot_types
        groups = group_spots_for_talent_approval(
            campaign_spot_lines(self._session, context.tenant_id, campaign),
            spot_types,
        )
        if not groups:
            return ActionResult.skipped(kind, "no spots require talent approval")

        created = []
        for group in groups:
            if self.approvals.find_open_talent_request(
                context.tenant_id, campaign.id, group.show_id, group.talent_id,
            ):
                continue
            request = self.approvals.create_talent_request(
                context.tenant_id, campaign.id, group, context.actor_id,
            )
            created.append(request.id)
            summary = group.summary_data()
            self._notify(
                "talent_approval_required",
                [group.talent_id],
                context,
                fields={
                    "request_id": request.id,
                    "show_name": summary["show_name"],
                    "spot_count": summary["spot_count"],
                    "spot_types": ", ".join(summary["spot_types"]),
                },
            )

        if not created:
            return ActionResult.skipped(kind, "talent approval requests already open")
        return ActionResult.executed(kind, *created)

    def create_admin_approval(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.CREATE_ADMIN_APPROVAL
        _require_entity(kind, context, EntityType.CAMPAIGN)
        campaign = self._campaign(context)

        existing = self.approvals.find_open_campaign_approval(context.tenant_id, campaign.id)
        if existing is not None:
            campaign.approval_request_id = existing.id
            return ActionResult.skipped(kind, f"campaign approval already {existing.status}")

        rate_card = self._config.rate_card
        if rate_card.enabled:
            assessment = assess_rate_card(
                campaign_spot_lines(self._session, context.tenant_id, campaign),
                rate_card.variance_threshold_percent,
                rate_card.require_approval_above_percent,
            )
        else:
            assessment = RateCardAssessment(Decimal("0.00"), 0, False, False)

        approval = self.approvals.create_campaign_approval(
            context.tenant_id, campaign.id, assessment, context.actor_id,
        )
        campaign.approval_request_id = approval.id
        self._session.flush()

        self._notify(
            "admin_approval_required",
            config.get("recipients") or ["admin_users"],
            context,
            fields={
                "approval_id": approval.id,
                "rate_card_variance": assessment.variance_percent,
                "has_rate_card_variance": assessment.exceeds_threshold,
                "requires_rate_card_approval": assessment.requires_approval,
            },
        )
        return ActionResult.executed(kind, approval.id)

    def create_order(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.CREATE_ORDER
        _require_entity(kind, context, EntityType.CAMPAIGN)
        campaign = self._campaign(context)

        existing = self.orders.find_open_order(context.tenant_id, campaign.id)
        if existing is not None:
            return ActionResult.skipped(kind, f"order {existing.order_number} exists")

        order = self.orders.create_from_campaign(
            context.tenant_id,
            campaign,
            campaign_spot_lines(self._session, context.tenant_id, campaign),
            context.actor_id,
            status=config.get("status", OrderStatus.DRAFT.value),
        )
        return ActionResult.executed(kind, order.id)

    # =========================================================================
    # Post-sale actions
    # =========================================================================

    def create_contract(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.CREATE_CONTRACT
        _require_entity(kind, context, EntityType.ORDER)
        order = load_order(self._session, context.tenant_id, context.entity_id)

        existing = self.orders.find_open_contract(context.tenant_id, order.id)
        if existing is not None:
            return ActionResult.skipped(kind, f"contract {existing.contract_number} exists")

        contract = self.orders.create_contract(
            context.tenant_id,
            order,
            context.actor_id,
            template=config.get("template", "standard"),
        )
        return ActionResult.executed(kind, contract.id)

    def create_invoice(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.CREATE_INVOICE
        source = config.get("source") or context.entity_type.value
        try:
            if source == EntityType.ORDER.value:
                _require_entity(kind, context, EntityType.ORDER)
                invoices = [
                    self.billing.generate_invoice_for_order(
                        context.tenant_id,
                        context.entity_id,
                        payment_terms=config.get("payment_terms"),
                        created_by_id=context.actor_id,
                    )
                ]
            elif source == EntityType.EPISODE.value:
                _require_entity(kind, context, EntityType.EPISODE)
                invoices = self.billing.generate_episode_invoices(
                    context.tenant_id,
                    context.entity_id,
                    group_by_advertiser=config.get("group_by_advertiser"),
                    payment_terms=config.get("payment_terms"),
                    created_by_id=context.actor_id,
                )
            else:
                raise ActionExecutionError(kind.value, f"unknown invoice source '{source}'")
        except NoBillableItemsError as exc:
            return ActionResult.skipped(kind, str(exc))
        return ActionResult.executed(kind, *(invoice.id for invoice in invoices))

    # =========================================================================
    # Notifications and tasks
    # =========================================================================

    def send_notification(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.SEND_NOTIFICATION
        notification_type = config.get("type")
        if not notification_type:
            raise ActionExecutionError(kind.value, "notification type is required")
        recipients = config.get("recipients") or ["entity_creator"]

        rows = self.notifications.send(
            context.tenant_id,
            notification_type,
            recipients,
            context,
            fields=config.get("fields"),
            title=config.get("title"),
            message=config.get("message"),
        )
        if not rows:
            return ActionResult.skipped(kind, "no in-app notifications written")
        return ActionResult.executed(kind, *(row.id for row in rows))

    def assign_task(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.ASSIGN_TASK
        task_type = config.get("task_type")
        if not task_type:
            raise ActionExecutionError(kind.value, "task_type is required")

        existing = self.tasks.find_open_task(context.tenant_id, context.entity_id, task_type)
        if existing is not None:
            return ActionResult.skipped(kind, f"open {task_type} task exists")

        role = config.get("role", "producer")
        assignee = self.tasks.pick_assignee(context.tenant_id, role)
        if assignee is None:
            raise ActionExecutionError(kind.value, f"no active user with role '{role}'")

        title = config.get("title") or task_type.replace("_", " ").capitalize()
        task = self.tasks.create_task(
            context.tenant_id,
            assigned_to_id=assignee,
            entity_type=context.entity_type.value,
            entity_id=context.entity_id,
            task_type=task_type,
            title=title,
            description=config.get("description"),
            priority=config.get("priority", "medium"),
            due_in_days=int(config.get("due_in_days", 7)),
            created_by_id=context.actor_id,
        )
        self._notify(
            "task_assigned", [assignee], context,
            fields={"task_id": task.id, "title": title},
        )
        return ActionResult.executed(kind, task.id)

    # =========================================================================
    # Status updates
    # =========================================================================

    def update_status(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.UPDATE_STATUS
        target = config.get("target") or context.entity_type.value

        condition = config.get("condition")
        if condition and not self._condition_holds(condition, context):
            return ActionResult.skipped(kind, f"condition {condition} not met")

        if target == "campaign":
            return self._update_campaign_flags(config, context)
        if target == "order":
            return self._update_order(config, context)
        if target == "reservation":
            return self._update_reservation(config, context)
        if target == "contract":
            return self._update_contract(config, context)
        raise ActionExecutionError(kind.value, f"unknown update target '{target}'")

    def _order_id_for(self, context: WorkflowContext) -> UUID | None:
        if context.entity_type is EntityType.ORDER:
            return context.entity_id
        if context.entity_type is EntityType.CONTRACT:
            return load_contract(self._session, context.tenant_id, context.entity_id).order_id
        if context.entity_type is EntityType.CAMPAIGN:
            order = self.orders.find_open_order(context.tenant_id, context.entity_id)
            return order.id if order else None
        return None

    def _condition_holds(self, condition: str, context: WorkflowContext) -> bool:
        if condition == "all_contracts_signed":
            order_id = self._order_id_for(context)
            return order_id is not None and self.orders.all_contracts_signed(context.tenant_id, order_id)
        if condition == "has_scheduled_spots":
            _require_entity(ActionKind.UPDATE_STATUS, context, EntityType.CAMPAIGN)
            return bool(self._campaign(context).spots)
        raise ActionExecutionError(ActionKind.UPDATE_STATUS.value, f"unknown condition '{condition}'")

    def _update_campaign_flags(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.UPDATE_STATUS
        _require_entity(kind, context, EntityType.CAMPAIGN)
        flags = list(config.get("set_flags") or [])
        unknown = [flag for flag in flags if flag not in CAMPAIGN_FLAGS]
        if unknown:
            raise ActionExecutionError(kind.value, f"unknown campaign flag(s): {', '.join(unknown)}")

        campaign = self._campaign(context)
        changed = [flag for flag in flags if not getattr(campaign, flag)]
        if not changed:
            return ActionResult.skipped(kind, "campaign flags already set")
        for flag in changed:
            setattr(campaign, flag, True)
        self._session.flush()
        logger.info(
            "campaign_flags_set",
            extra={"campaign_id": str(campaign.id), "flags": changed},
        )
        return ActionResult.executed(kind, campaign.id)

    def _update_order(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.UPDATE_STATUS
        status = OrderStatus(_required(config, "status", kind)).value
        order_id = self._order_id_for(context)
        if order_id is None:
            return ActionResult.skipped(kind, "no order for entity")
        order: Order = load_order(self._session, context.tenant_id, order_id, for_update=True)
        if order.status == status:
            return ActionResult.skipped(kind, f"order already {status}")
        previous = order.status
        order.status = status
        self._session.flush()
        logger.info(
            "order_status_updated",
            extra={"order_id": str(order.id), "from_status": previous, "to_status": status},
        )
        return ActionResult.executed(kind, order.id)

    def _update_reservation(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.UPDATE_STATUS
        _require_entity(kind, context, EntityType.CAMPAIGN)
        status = ReservationStatus(config.get("status", ReservationStatus.CONFIRMED.value))
        if status is ReservationStatus.RELEASED:
            released = self.reservations.release_held(context.tenant_id, context.entity_id)
            if not released:
                return ActionResult.skipped(kind, "no held reservation")
            return ActionResult.executed(kind, *(r.id for r in released))
        if status is not ReservationStatus.CONFIRMED:
            raise ActionExecutionError(kind.value, f"cannot set reservation to '{status.value}'")

        reservation = self.reservations.find_active(context.tenant_id, context.entity_id)
        if reservation is None:
            return ActionResult.skipped(kind, "no active reservation")
        if reservation.status == ReservationStatus.CONFIRMED.value:
            return ActionResult.skipped(kind, "reservation already confirmed")
        self.reservations.confirm(reservation)
        return ActionResult.executed(kind, reservation.id)

    def _update_contract(self, config: Mapping[str, Any], context: WorkflowContext) -> ActionResult:
        kind = ActionKind.UPDATE_STATUS
        _require_entity(kind, context, EntityType.CONTRACT)
        status = ContractStatus(_required(config, "status", kind)).value
        contract = load_contract(self._session, context.tenant_id, context.entity_id)
        if contract.status == status:
            return ActionResult.skipped(kind, f"contract already {status}")
        contract.status = status
        if status == ContractStatus.SIGNED.value and contract.signed_at is None:
            contract.signed_at = self._clock.now()
        self._session.flush()
        return ActionResult.executed(kind, contract.id)

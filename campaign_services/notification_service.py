"""
NotificationService -- recipient resolution, in-app records, external delivery.

Responsibility:
    Turn a symbolic recipient list (``entity_creator``, ``admin_users``,
    ``role:producer``, explicit user ids, ...) into tenant users, write one
    in-app notification per recipient, and hand each notification to the
    external delivery sink.

Invariants enforced:
    - Recipients are de-duplicated and limited to active users of the
      evaluating tenant.
    - External delivery is fire-and-forget: a sink failure is logged and
      never propagates into the workflow.
    - No in-app rows are written when the tenant disables ``in_app``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from campaign_config.schema import NotificationSettings
from campaign_kernel.domain.clock import Clock
from campaign_kernel.domain.context import EntityType, WorkflowContext
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models import Campaign, Contract, Notification, Order, User, UserRole

logger = get_logger("services.notification")

ROLE_GROUPS: dict[str, tuple[str, ...]] = {
    "admin_users": (UserRole.ADMIN.value, UserRole.MASTER.value),
    "sales_team": (UserRole.SALES.value,),
    "billing_team": (UserRole.ADMIN.value, UserRole.MASTER.value),
    "account_manager": (UserRole.SALES.value,),
}

TEMPLATES: dict[str, tuple[str, str]] = {
    "campaign_won": (
        "Campaign won",
        "Campaign {entity_id} reached {probability}% and an order has been created.",
    ),
    "campaign_rejected": (
        "Campaign rejected",
        "Campaign {entity_id} was rejected and returned to {probability}%. {reason}",
    ),
    "talent_approval_required": (
        "Talent approval requested",
        "Please review {spot_count} {spot_types} spot(s) on {show_name}.",
    ),
    "admin_approval_required": (
        "Campaign approval required",
        "Campaign {entity_id} needs approval. Rate card variance: {rate_card_variance}%.",
    ),
    "contract_created": (
        "Contract created",
        "A contract was generated for order {entity_id}.",
    ),
    "contract_signed": (
        "Contract signed",
        "Contract {entity_id} has been signed.",
    ),
    "invoice_created": (
        "Invoice created",
        "An invoice was created for {entity_type} {entity_id}.",
    ),
    "task_assigned": (
        "New task",
        "{title}",
    ),
}


class NotificationDelivery(Protocol):
    """External channel sink (email, webhook)."""

    def deliver(self, channel: str, notification: Mapping[str, Any]) -> None: ...


class _SafeFormat(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render(notification_type: str, fields: Mapping[str, Any]) -> tuple[str, str]:
    """Title and message for ``notification_type``; unknown fields render empty."""
    title, message = TEMPLATES.get(
        notification_type,
        (notification_type.replace("_", " ").capitalize(), "{entity_type} {entity_id}: {new_state}"),
    )
    values = _SafeFormat({k: v for k, v in fields.items() if v is not None})
    return title.format_map(values), message.format_map(values).strip()


def _as_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class NotificationService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        settings: NotificationSettings | None = None,
        delivery: NotificationDelivery | None = None,
    ):
        self._session = session
        self._clock = clock
        self._settings = settings or NotificationSettings()
        self._delivery = delivery

    # =========================================================================
    # Recipient resolution
    # =========================================================================

    def resolve_recipients(
        self,
        tenant_id: UUID,
        recipients: Iterable[str | UUID],
        context: WorkflowContext,
    ) -> list[UUID]:
        candidates: list[UUID] = []
        for recipient in recipients:
            candidates.extend(self._expand(tenant_id, recipient, context))

        unique = list(dict.fromkeys(candidates))
        if not unique:
            return []
        active = set(
            self._session.scalars(
                select(User.id).where(
                    User.organization_id == tenant_id,
                    User.is_active.is_(True),
                    User.id.in_(unique),
                )
            )
        )
        return [user_id for user_id in unique if user_id in active]

    def _expand(self, tenant_id: UUID, recipient: str | UUID, context: WorkflowContext) -> list[UUID]:
        if isinstance(recipient, UUID):
            return [recipient]
        if recipient == "actor":
            return [context.actor_id]
        if recipient in ("entity_creator", "order_creator"):
            creator = self._creator_of(tenant_id, context, order_level=recipient == "order_creator")
            return [creator] if creator else []
        if recipient == "talent":
            talent = _as_uuid(context.metadata.get("talent_id"))
            return [talent] if talent else []
        if recipient in ROLE_GROUPS:
            return self._users_with_roles(tenant_id, ROLE_GROUPS[recipient])
        if recipient.startswith("role:"):
            return self._users_with_roles(tenant_id, (recipient.split(":", 1)[1],))

        user_id = _as_uuid(recipient)
        if user_id is None:
            logger.warning(
                "notification_recipient_unknown",
                extra={"recipient": recipient, "entity_type": context.entity_type.value},
            )
            return []
        return [user_id]

    def _users_with_roles(self, tenant_id: UUID, roles: tuple[str, ...]) -> list[UUID]:
        return list(
            self._session.scalars(
                select(User.id)
                .where(
                    User.organization_id == tenant_id,
                    User.is_active.is_(True),
                    User.role.in_(roles),
                )
                .order_by(User.created_at, User.email)
            )
        )

    def _creator_of(self, tenant_id: UUID, context: WorkflowContext, order_level: bool) -> UUID | None:
        created_by = _as_uuid(context.metadata.get("created_by_id")) if not order_level else None
        if created_by:
            return created_by

        entity_type = context.entity_type
        entity_id = context.entity_id
        if order_level and entity_type is EntityType.CONTRACT:
            entity_id = self._session.scalar(
                select(Contract.order_id).where(
                    Contract.organization_id == tenant_id, Contract.id == entity_id,
                )
            )
            entity_type = EntityType.ORDER

        model = {
            EntityType.CAMPAIGN: Campaign,
            EntityType.ORDER: Order,
            EntityType.CONTRACT: Contract,
        }.get(entity_type)
        if model is None or entity_id is None:
            return None
        return self._session.scalar(
            select(model.created_by_id).where(
                model.organization_id == tenant_id, model.id == entity_id,
            )
        )

    # =========================================================================
    # Sending
    # =========================================================================

    def send(
        self,
        tenant_id: UUID,
        notification_type: str,
        recipients: Iterable[str | UUID],
        context: WorkflowContext,
        fields: Mapping[str, Any] | None = None,
        title: str | None = None,
        message: str | None = None,
    ) -> list[Notification]:
        """Notify every resolved recipient; returns the in-app rows written."""
        user_ids = self.resolve_recipients(tenant_id, recipients, context)
        values = {
            **context.metadata,
            "entity_id": context.entity_id,
            "entity_type": context.entity_type.value,
            "new_state": context.new_state,
            **(fields or {}),
        }
        default_title, default_message = render(notification_type, values)
        title = title or default_title
        message = message or default_message
        payload = {k: v for k, v in (fields or {}).items() if v is not None}

        rows: list[Notification] = []
        if self._settings.in_app:
            for user_id in user_ids:
                row = Notification(
                    organization_id=tenant_id,
                    user_id=user_id,
                    type=notification_type,
                    title=title,
                    message=message,
                    entity_type=context.entity_type.value,
                    entity_id=context.entity_id,
                    payload=_json_safe(payload),
                )
                self._session.add(row)
                rows.append(row)
            self._session.flush()

        logger.info(
            "notifications_sent",
            extra={
                "notification_type": notification_type,
                "recipient_count": len(user_ids),
                "in_app": self._settings.in_app,
            },
        )

        for user_id in user_ids:
            self._deliver(
                {
                    "user_id": str(user_id),
                    "type": notification_type,
                    "title": title,
                    "message": message,
                    "metadata": _json_safe(payload),
                }
            )
        return rows

    def _deliver(self, notification: dict[str, Any]) -> None:
        if self._delivery is None:
            return
        for channel in self._settings.external_channels:
            try:
                self._delivery.deliver(channel, notification)
            except Exception:
                logger.warning(
                    "notification_delivery_failed",
                    extra={"channel": channel, "notification_type": notification["type"]},
                    exc_info=True,
                )

    def clear(self, tenant_id: UUID, entity_id: UUID, notification_type: str) -> int:
        """Withdraw pending notifications of one type for an entity."""
        rows = list(
            self._session.scalars(
                select(Notification).where(
                    Notification.organization_id == tenant_id,
                    Notification.entity_id == entity_id,
                    Notification.type == notification_type,
                    Notification.cleared_at.is_(None),
                )
            )
        )
        now = self._clock.now()
        for row in rows:
            row.cleared_at = now
        self._session.flush()
        if rows:
            logger.info(
                "notifications_cleared",
                extra={"notification_type": notification_type, "cleared": len(rows)},
            )
        return len(rows)


def _json_safe(values: Mapping[str, Any]) -> dict[str, Any]:
    safe: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, (str, int, float, bool)) or value is None:
            safe[key] = value
        elif isinstance(value, (list, tuple)):
            safe[key] = [v if isinstance(v, (str, int, float, bool)) else str(v) for v in value]
        else:
            safe[key] = str(value)
    return safe

"""
campaign_services.billing_service -- invoices, recurring schedules, pre-bill.

Responsibility:
    Imperative shell around ``campaign_engines.invoicing``: loads billable
    order items, allocates invoice numbers, writes invoices and items, marks
    order items invoiced, runs recurring schedules, and keeps the pre-bill
    advertiser register.

Architecture position:
    Services layer.  Numbering and line arithmetic are pure engine calls;
    this module only does I/O and sequencing.

Invariants enforced:
    - Invoice numbers ``{prefix}-{YYYY}{MM}-{NNNN}`` are allocated by scanning
      the tenant's numbers for the month while holding the
      (tenant, "invoice-number:<prefix>") lock until the transaction ends.
      PostgreSQL additionally takes a transaction-scoped advisory lock so
      separate processes serialize too.
    - An order item is invoiced at most once.
    - Invoice total equals the sum of its item amounts.

Failure modes:
    - NoBillableItemsError when a source has nothing left to invoice.
    - InvoiceSequenceExhaustedError past 9999 invoices in a month.
    - InvoiceScheduleError for an invalid schedule request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from campaign_config.schema import BillingSettings
from campaign_engines.invoicing import (
    BillableItem,
    InvoiceDraft,
    billing_period,
    build_invoice_draft,
    due_date_for,
    first_invoice_date,
    group_billable_items,
    next_invoice_date,
    next_invoice_number,
    requires_prebill,
)
from campaign_kernel.domain.clock import Clock
from campaign_kernel.exceptions import InvoiceScheduleError, NoBillableItemsError
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models import (
    Invoice,
    InvoiceItem,
    InvoiceSchedule,
    InvoiceStatus,
    Order,
    OrderItem,
    OrderStatus,
    PreBillAdvertiser,
    ScheduleType,
)
from campaign_services.entity_lock import EntityLockRegistry, hold_for_transaction
from campaign_services.lookups import load_order

logger = get_logger("services.billing")

# Orders whose items count as delivered when their episode airs.
_UNBILLABLE_ORDER_STATUSES = (OrderStatus.DRAFT.value, OrderStatus.CANCELLED.value)


@dataclass(frozen=True)
class PrebillCheck:
    requires_prebill: bool
    advertiser_flagged: bool
    threshold: Decimal | None
    reason: str | None = None


class BillingService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        locks: EntityLockRegistry,
        settings: BillingSettings | None = None,
    ):
        self._session = session
        self._clock = clock
        self._locks = locks
        self._settings = settings or BillingSettings()

    # =========================================================================
    # Numbering
    # =========================================================================

    def next_invoice_number(
        self,
        tenant_id: UUID,
        issue_date: date,
        prefix: str | None = None,
    ) -> str:
        """Allocate the next number; reserved until the session's transaction ends."""
        prefix = prefix or self._settings.invoice_prefix
        lock_name = f"invoice-number:{prefix}"
        hold_for_transaction(self._session, self._locks, tenant_id, lock_name)
        if self._session.get_bind().dialect.name == "postgresql":
            self._session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"{tenant_id}:{lock_name}"},
            )

        pattern = f"{prefix}-{issue_date.year:04d}{issue_date.month:02d}-%"
        existing = self._session.scalars(
            select(Invoice.invoice_number).where(
                Invoice.organization_id == tenant_id,
                Invoice.invoice_number.like(pattern),
            )
        ).all()
        return next_invoice_number(existing, prefix, issue_date)

    # =========================================================================
    # Pre-bill
    # =========================================================================

    def _prebill_flag(self, tenant_id: UUID, advertiser_id: UUID) -> PreBillAdvertiser | None:
        return self._session.scalars(
            select(PreBillAdvertiser).where(
                PreBillAdvertiser.organization_id == tenant_id,
                PreBillAdvertiser.advertiser_id == advertiser_id,
            )
        ).first()

    def flag_advertiser_for_prebill(
        self,
        tenant_id: UUID,
        advertiser_id: UUID,
        reason: str,
        flagged_by_id: UUID | None = None,
    ) -> PreBillAdvertiser:
        """Require pre-billing for every future invoice of the advertiser."""
        flag = self._prebill_flag(tenant_id, advertiser_id)
        now = self._clock.now()
        if flag is None:
            flag = PreBillAdvertiser(
                organization_id=tenant_id,
                advertiser_id=advertiser_id,
                reason=reason,
                flagged_by_id=flagged_by_id,
                flagged_at=now,
                is_active=True,
            )
            self._session.add(flag)
        else:
            flag.reason = reason
            flag.flagged_by_id = flagged_by_id
            flag.flagged_at = now
            flag.is_active = True
        self._session.flush()
        logger.info(
            "advertiser_flagged_for_prebill",
            extra={"advertiser_id": str(advertiser_id), "reason": reason},
        )
        return flag

    def check_prebill_requirements(
        self,
        tenant_id: UUID,
        advertiser_id: UUID | None,
        amount: Decimal,
    ) -> PrebillCheck:
        flag = self._prebill_flag(tenant_id, advertiser_id) if advertiser_id else None
        flagged = flag is not None and flag.is_active
        threshold = self._settings.prebill_threshold
        required = requires_prebill(flagged, amount, threshold)
        if flagged:
            reason = flag.reason
        elif required:
            reason = f"amount {amount} at or above pre-bill threshold {threshold}"
        else:
            reason = None
        return PrebillCheck(required, flagged, threshold, reason)

    # =========================================================================
    # Invoice creation
    # =========================================================================

    @staticmethod
    def _billable(order: Order, items: list[OrderItem]) -> list[BillableItem]:
        return [
            BillableItem(
                item_id=item.id,
                order_id=order.id,
                advertiser_id=order.advertiser_id,
                description=f"{item.spot_type} {item.placement_type} spot, {item.air_date:%Y-%m-%d}",
                unit_price=item.rate,
                air_date=item.air_date,
            )
            for item in items
        ]

    def _write_invoice(
        self,
        tenant_id: UUID,
        draft: InvoiceDraft,
        issue_date: date,
        payment_terms: str,
        created_by_id: UUID | None,
        episode_id: UUID | None = None,
    ) -> Invoice:
        total = draft.total
        prebill = self.check_prebill_requirements(tenant_id, draft.advertiser_id, total)
        invoice = Invoice(
            organization_id=tenant_id,
            invoice_number=self.next_invoice_number(tenant_id, issue_date),
            advertiser_id=draft.advertiser_id,
            order_id=draft.order_id,
            episode_id=episode_id,
            status=InvoiceStatus.DRAFT.value,
            is_prebill=prebill.requires_prebill,
            billing_period=billing_period(issue_date),
            issue_date=issue_date,
            due_date=due_date_for(issue_date, payment_terms),
            payment_terms=payment_terms,
            total_amount=total,
            created_by_id=created_by_id,
            notes=prebill.reason,
        )
        lines: list[tuple[BillableItem, InvoiceItem]] = []
        for billable in draft.items:
            line = InvoiceItem(
                organization_id=tenant_id,
                order_item_id=billable.item_id,
                description=billable.description,
                quantity=billable.quantity,
                unit_price=billable.unit_price,
                amount=billable.amount,
                air_date=billable.air_date,
            )
            invoice.items.append(line)
            lines.append((billable, line))
        self._session.add(invoice)
        self._session.flush()

        item_ids = [billable.item_id for billable, _ in lines]
        order_items = {
            item.id: item
            for item in self._session.scalars(
                select(OrderItem).where(
                    OrderItem.organization_id == tenant_id,
                    OrderItem.id.in_(item_ids),
                )
            )
        }
        for billable, line in lines:
            order_item = order_items[billable.item_id]
            order_item.invoiced = True
            order_item.invoice_item_id = line.id
        self._session.flush()

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "total_amount": total,
                "item_count": len(lines),
                "is_prebill": invoice.is_prebill,
            },
        )
        return invoice

    def generate_invoice_for_order(
        self,
        tenant_id: UUID,
        order_id: UUID,
        *,
        payment_terms: str | None = None,
        issue_date: date | None = None,
        created_by_id: UUID | None = None,
        until: date | None = None,
    ) -> Invoice:
        """
        One invoice covering the order's un-invoiced items.

        ``until`` limits the invoice to items airing on or before that date.
        """
        order = load_order(self._session, tenant_id, order_id, for_update=True)
        pending = [
            item for item in order.items
            if not item.invoiced and (until is None or item.air_date <= until)
        ]
        if not pending:
            raise NoBillableItemsError("order", str(order_id))
        return self._write_invoice(
            tenant_id,
            build_invoice_draft(self._billable(order, pending)),
            issue_date or self._clock.today(),
            payment_terms or self._settings.payment_terms,
            created_by_id,
        )

    def _episode_items(self, tenant_id: UUID, episode_id: UUID) -> list[tuple[Order, OrderItem]]:
        return list(
            self._session.execute(
                select(Order, OrderItem)
                .join(OrderItem, OrderItem.order_id == Order.id)
                .where(
                    Order.organization_id == tenant_id,
                    OrderItem.organization_id == tenant_id,
                    OrderItem.episode_id == episode_id,
                    OrderItem.invoiced.is_(False),
                    Order.status.not_in(_UNBILLABLE_ORDER_STATUSES),
                )
                .order_by(Order.created_at, OrderItem.air_date)
            )
        )

    def has_active_orders(self, tenant_id: UUID, episode_id: UUID) -> bool:
        """True when un-invoiced items of live orders are placed on the episode."""
        return bool(self._episode_items(tenant_id, episode_id))

    def generate_episode_invoices(
        self,
        tenant_id: UUID,
        episode_id: UUID,
        *,
        group_by_advertiser: bool | None = None,
        payment_terms: str | None = None,
        issue_date: date | None = None,
        created_by_id: UUID | None = None,
    ) -> list[Invoice]:
        """Delivery invoices for an aired episode: per advertiser, or per order."""
        if group_by_advertiser is None:
            group_by_advertiser = self._settings.group_episode_invoices_by_advertiser

        billable: list[BillableItem] = []
        for order, item in self._episode_items(tenant_id, episode_id):
            billable.extend(self._billable(order, [item]))
        if not billable:
            raise NoBillableItemsError("episode", str(episode_id))

        issue = issue_date or self._clock.today()
        terms = payment_terms or self._settings.payment_terms
        return [
            self._write_invoice(tenant_id, draft, issue, terms, created_by_id, episode_id=episode_id)
            for draft in group_billable_items(billable, by_advertiser=group_by_advertiser)
        ]

    # =========================================================================
    # Recurring schedules
    # =========================================================================

    def schedule_invoice_generation(
        self,
        tenant_id: UUID,
        order_id: UUID,
        schedule_type: str = ScheduleType.MONTHLY.value,
        day_of_month: int | None = None,
        auto_send: bool = False,
    ) -> InvoiceSchedule:
        """Create or replace the order's recurring invoice schedule."""
        try:
            kind = ScheduleType(schedule_type)
        except ValueError:
            raise InvoiceScheduleError(str(order_id), f"unknown schedule type '{schedule_type}'") from None
        day = day_of_month if day_of_month is not None else self._settings.default_invoice_day
        if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 28:
            raise InvoiceScheduleError(str(order_id), f"day_of_month must be 1-28, got {day!r}")

        order = load_order(self._session, tenant_id, order_id)
        if order.status == OrderStatus.CANCELLED.value:
            raise InvoiceScheduleError(str(order_id), "order is cancelled")

        schedule = self._session.scalars(
            select(InvoiceSchedule).where(
                InvoiceSchedule.organization_id == tenant_id,
                InvoiceSchedule.order_id == order_id,
            )
        ).first()
        if schedule is None:
            schedule = InvoiceSchedule(organization_id=tenant_id, order_id=order_id)
            self._session.add(schedule)

        schedule.schedule_type = kind.value
        schedule.day_of_month = day if kind is ScheduleType.MONTHLY else None
        schedule.next_invoice_date = first_invoice_date(self._clock.today(), kind.value, day)
        schedule.is_active = True
        schedule.auto_send = auto_send
        self._session.flush()

        logger.info(
            "invoice_schedule_saved",
            extra={
                "order_id": str(order_id),
                "schedule_type": kind.value,
                "next_invoice_date": schedule.next_invoice_date,
                "auto_send": auto_send,
            },
        )
        return schedule

    def process_scheduled_invoices(self, tenant_id: UUID, today: date | None = None) -> list[Invoice]:
        """
        Generate invoices for every due, active schedule of the tenant.

        Monthly schedules bill items aired by the run date and advance one
        month; other types bill everything outstanding once.  A schedule
        whose order has nothing left to invoice is deactivated.  One failing
        schedule does not stop the others.
        """
        today = today or self._clock.today()
        due = list(
            self._session.scalars(
                select(InvoiceSchedule)
                .where(
                    InvoiceSchedule.organization_id == tenant_id,
                    InvoiceSchedule.is_active.is_(True),
                    InvoiceSchedule.next_invoice_date <= today,
                )
                .order_by(InvoiceSchedule.next_invoice_date)
            )
        )

        invoices: list[Invoice] = []
        for schedule in due:
            try:
                with self._session.begin_nested():
                    invoice = self._run_schedule(tenant_id, schedule, today)
            except Exception:
                logger.error(
                    "scheduled_invoice_failed",
                    extra={"schedule_id": str(schedule.id), "order_id": str(schedule.order_id)},
                    exc_info=True,
                )
                continue
            if invoice is not None:
                invoices.append(invoice)

        logger.info(
            "scheduled_invoices_processed",
            extra={"due_schedules": len(due), "invoices_created": len(invoices)},
        )
        return invoices

    def _run_schedule(self, tenant_id: UUID, schedule: InvoiceSchedule, today: date) -> Invoice | None:
        order = load_order(self._session, tenant_id, schedule.order_id, for_update=True)
        monthly = schedule.schedule_type == ScheduleType.MONTHLY.value
        outstanding = [item for item in order.items if not item.invoiced]
        billable_now = [item for item in outstanding if not monthly or item.air_date <= today]

        invoice = None
        if billable_now:
            invoice = self._write_invoice(
                tenant_id,
                build_invoice_draft(self._billable(order, billable_now)),
                today,
                self._settings.payment_terms,
                None,
            )
            schedule.last_invoice_date = today
            if schedule.auto_send:
                invoice.status = InvoiceStatus.SENT.value
                logger.info(
                    "invoice_auto_sent",
                    extra={"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number},
                )
        elif outstanding:
            logger.info(
                "scheduled_invoice_skipped",
                extra={"schedule_id": str(schedule.id), "order_id": str(order.id)},
            )

        remaining = len(outstanding) - len(billable_now)
        if monthly and remaining:
            schedule.next_invoice_date = next_invoice_date(
                schedule.next_invoice_date, schedule.schedule_type, schedule.day_of_month,
            )
        else:
            schedule.is_active = False
            schedule.next_invoice_date = None
            logger.info(
                "invoice_schedule_completed",
                extra={"schedule_id": str(schedule.id), "order_id": str(order.id)},
            )
        self._session.flush()
        return invoice

"""
campaign_engines.invoicing -- invoice numbering, lines and schedule arithmetic.

Responsibility:
    Everything about invoices that can be computed without storage: number
    formatting and sequencing, line derivation and grouping, due dates from
    payment terms, recurring schedule dates, and the pre-bill rule.

Architecture position:
    Engines -- pure, zero I/O.  Dates are passed in; nothing reads a clock.

Invariants enforced:
    - Invoice numbers are ``{prefix}-{YYYY}{MM}-{NNNN}``; the next sequence
      is one above the highest existing sequence for that prefix and month,
      so numbers increase strictly with no gaps.  Past 9999 numbering fails
      with ``InvoiceSequenceExhaustedError``.
    - A draft's total is exactly the sum of its line amounts.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from campaign_engines.tracer import traced_engine
from campaign_kernel.exceptions import InvoiceSequenceExhaustedError

MAX_SEQUENCE = 9999

PAYMENT_TERMS_PATTERN = re.compile(r"^(?:Net (\d{1,3})|Due on receipt)$")


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


def invoice_period(year: int, month: int) -> str:
    return f"{year:04d}{month:02d}"


def format_invoice_number(prefix: str, year: int, month: int, sequence: int) -> str:
    return f"{prefix}-{invoice_period(year, month)}-{sequence:04d}"


def parse_invoice_sequence(number: str, prefix: str, year: int, month: int) -> int | None:
    """Sequence of ``number`` if it belongs to (prefix, year, month), else None."""
    head = f"{prefix}-{invoice_period(year, month)}-"
    if not number.startswith(head):
        return None
    tail = number[len(head):]
    if not tail.isdigit():
        return None
    return int(tail)


@traced_engine("invoice_numbering", "1.0", fingerprint_fields=("prefix", "year", "month"))
def next_invoice_sequence(
    existing_numbers: Iterable[str],
    prefix: str,
    year: int,
    month: int,
) -> int:
    sequences = [
        seq for seq in (
            parse_invoice_sequence(n, prefix, year, month) for n in existing_numbers
        )
        if seq is not None
    ]
    nxt = max(sequences, default=0) + 1
    if nxt > MAX_SEQUENCE:
        raise InvoiceSequenceExhaustedError(prefix, invoice_period(year, month))
    return nxt


def next_invoice_number(existing_numbers: Iterable[str], prefix: str, issue_date: date) -> str:
    seq = next_invoice_sequence(existing_numbers, prefix, issue_date.year, issue_date.month)
    return format_invoice_number(prefix, issue_date.year, issue_date.month, seq)


# ---------------------------------------------------------------------------
# Terms and periods
# ---------------------------------------------------------------------------


def payment_terms_days(terms: str) -> int:
    match = PAYMENT_TERMS_PATTERN.match(terms)
    if match is None:
        raise ValueError(f"Unrecognised payment terms: {terms!r}")
    return int(match.group(1)) if match.group(1) else 0


def due_date_for(issue_date: date, terms: str) -> date:
    return issue_date + timedelta(days=payment_terms_days(terms))


def billing_period(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BillableItem:
    """An order item that can be invoiced."""

    item_id: UUID
    order_id: UUID
    advertiser_id: UUID | None
    description: str
    unit_price: Decimal
    quantity: int = 1
    air_date: date | None = None

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class InvoiceDraft:
    advertiser_id: UUID | None
    order_ids: tuple[UUID, ...]
    items: tuple[BillableItem, ...]

    @property
    def total(self) -> Decimal:
        return invoice_total(item.amount for item in self.items)

    @property
    def order_id(self) -> UUID | None:
        """The source order when the draft covers exactly one."""
        return self.order_ids[0] if len(self.order_ids) == 1 else None


def invoice_total(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, Decimal("0"))


def build_invoice_draft(items: Iterable[BillableItem]) -> InvoiceDraft:
    lines = tuple(items)
    order_ids = tuple(dict.fromkeys(item.order_id for item in lines))
    advertisers = {item.advertiser_id for item in lines}
    advertiser_id = next(iter(advertisers)) if len(advertisers) == 1 else None
    return InvoiceDraft(advertiser_id=advertiser_id, order_ids=order_ids, items=lines)


def group_billable_items(
    items: Iterable[BillableItem],
    by_advertiser: bool,
) -> tuple[InvoiceDraft, ...]:
    """One draft per advertiser, or per order when not grouping by advertiser."""
    groups: dict[object, list[BillableItem]] = {}
    for item in items:
        key = item.advertiser_id if by_advertiser else item.order_id
        groups.setdefault(key, []).append(item)
    return tuple(build_invoice_draft(members) for members in groups.values())


# ---------------------------------------------------------------------------
# Recurring schedules
# ---------------------------------------------------------------------------


def add_months(d: date, months: int, day: int | None = None) -> date:
    """``d`` moved by ``months``; ``day`` (or d's day) clamped to month end."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day or d.day, last_day))


def first_invoice_date(today: date, schedule_type: str, day_of_month: int) -> date:
    """
    First generation date for a new schedule.

    Monthly schedules use this month's ``day_of_month`` if still ahead,
    else next month's.  Other schedule types are due immediately.
    """
    if schedule_type != "monthly":
        return today
    this_month = add_months(today, 0, day_of_month)
    if this_month > today:
        return this_month
    return add_months(today, 1, day_of_month)


def next_invoice_date(current: date, schedule_type: str, day_of_month: int | None) -> date | None:
    """Date after a successful generation; None when the schedule is done."""
    if schedule_type != "monthly":
        return None
    return add_months(current, 1, day_of_month)


# ---------------------------------------------------------------------------
# Pre-bill
# ---------------------------------------------------------------------------


def requires_prebill(
    advertiser_flagged: bool,
    amount: Decimal,
    threshold: Decimal | None,
) -> bool:
    """Flagged advertisers always pre-bill; otherwise only at/above the threshold."""
    if advertiser_flagged:
        return True
    return threshold is not None and amount >= threshold

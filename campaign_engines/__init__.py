"""
Module: campaign_engines
Responsibility:
    Pure calculation layer of the workflow engine: crossing detection, rule
    matching, transition gates, rate-card variance, talent grouping, and
    invoice arithmetic.

Architecture position:
    Engines -- zero I/O.  May only import campaign_kernel domain types and
    exceptions.  MUST NOT import campaign_services.

Invariants enforced:
    - Engines never read a clock; dates and times are parameters.
    - Monetary arithmetic is Decimal-only.
    - Identical inputs always produce identical outputs.
"""

from campaign_engines.invoicing import (
    BillableItem,
    InvoiceDraft,
    due_date_for,
    format_invoice_number,
    group_billable_items,
    next_invoice_number,
    next_invoice_sequence,
    requires_prebill,
)
from campaign_engines.milestones import compute_crossings, status_label_for
from campaign_engines.rate_card import RateCardAssessment, assess_rate_card, compute_rate_card_variance
from campaign_engines.rule_matcher import evaluate_condition, match_rules
from campaign_engines.talent import TalentGroup, group_spots_for_talent_approval
from campaign_engines.transition_gates import (
    GateResult,
    TalentApprovalCounts,
    check_admin_approval_gate,
    check_decision_gate,
    check_order_creation_gate,
)

__all__ = [
    "BillableItem",
    "GateResult",
    "InvoiceDraft",
    "RateCardAssessment",
    "TalentApprovalCounts",
    "TalentGroup",
    "assess_rate_card",
    "check_admin_approval_gate",
    "check_decision_gate",
    "check_order_creation_gate",
    "compute_crossings",
    "compute_rate_card_variance",
    "due_date_for",
    "evaluate_condition",
    "format_invoice_number",
    "group_billable_items",
    "group_spots_for_talent_approval",
    "match_rules",
    "next_invoice_number",
    "next_invoice_sequence",
    "requires_prebill",
    "status_label_for",
]

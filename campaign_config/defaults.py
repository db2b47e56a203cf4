"""
Compiled-in workflow defaults.

Used as-is for tenants without overrides, and as the base every tenant
override is deep-merged onto.  Rules are plain data parsed by the same
loader that reads tenant YAML, so defaults and overrides share one format.
"""

from __future__ import annotations

import copy
from typing import Any

from campaign_config.loader import parse_rule_set
from campaign_kernel.domain.milestones import MilestoneName, ThresholdSet
from campaign_kernel.domain.rules import RuleSet

DEFAULT_THRESHOLDS: dict[str, int] = {
    "pre_sale_active": 10,
    "schedule_valid": 35,
    "talent_approval": 65,
    "admin_approval": 90,
    "order_creation": 100,
    "auto_reserve": 90,
    "rejection_fallback": 65,
}

DEFAULT_SETTINGS: dict[str, Any] = {
    "thresholds": DEFAULT_THRESHOLDS,
    "approvals": {
        "approval_roles": ["admin", "master"],
        "override_roles": ["admin", "master"],
        "block_on_pending_talent_approvals": False,
        "require_campaign_approval": True,
        "talent_spot_types": ["host_read", "endorsement"],
        "talent_request_expiry_days": 7,
    },
    "rate_card": {
        "enabled": True,
        "variance_threshold_percent": 10,
        "require_approval_above_percent": 20,
    },
    "notifications": {
        "in_app": True,
        "email": True,
        "webhook": False,
    },
    "reservations": {
        "hold_days": 14,
        "default_placement_type": "mid_roll",
        "default_length": 30,
    },
    "billing": {
        "invoice_prefix": "INV",
        "payment_terms": "Net 30",
        "default_invoice_day": 1,
        "prebill_threshold": None,
        "group_episode_invoices_by_advertiser": True,
    },
    "rules": {
        "disabled": [],
        "enabled": [],
        "overrides": [],
    },
}


def default_settings() -> dict[str, Any]:
    """Deep copy of the defaults, safe to merge into."""
    return copy.deepcopy(DEFAULT_SETTINGS)


def _milestone_rules(thresholds: ThresholdSet) -> list[dict[str, Any]]:
    reserve_at = thresholds.auto_reserve_milestone
    return [
        {
            "id": "campaign_pre_sale_active",
            "name": "Enable schedule builder",
            "trigger": {"entity_type": "campaign", "to_state": "pre_sale_active"},
            "actions": [
                {
                    "type": "update_status",
                    "config": {"target": "campaign", "set_flags": ["schedule_builder_enabled"]},
                },
            ],
        },
        {
            "id": "campaign_schedule_valid",
            "name": "Validate schedule and track rate card",
            "trigger": {
                "entity_type": "campaign",
                "to_state": "schedule_valid",
                "conditions": [
                    {"field": "has_scheduled_spots", "operator": "equals", "value": True},
                ],
            },
            "actions": [
                {
                    "type": "update_status",
                    "config": {
                        "target": "campaign",
                        "set_flags": ["schedule_validated", "rate_card_tracking"],
                    },
                },
            ],
        },
        {
            "id": "campaign_talent_approval",
            "name": "Request talent approvals",
            "trigger": {"entity_type": "campaign", "to_state": "talent_approval"},
            "actions": [{"type": "create_talent_approval"}],
        },
        {
            "id": "campaign_auto_reserve",
            "name": "Reserve scheduled inventory",
            "trigger": {"entity_type": "campaign", "to_state": reserve_at.value},
            "actions": [
                {
                    "type": "create_reservation",
                    # An admin-approved campaign must never be left unreserved.
                    "fatal": reserve_at is MilestoneName.ADMIN_APPROVAL,
                },
            ],
        },
        {
            "id": "campaign_admin_approval",
            "name": "Request admin approval",
            "trigger": {"entity_type": "campaign", "to_state": "admin_approval"},
            "actions": [{"type": "create_admin_approval"}],
        },
        {
            "id": "campaign_order_creation",
            "name": "Create order from won campaign",
            "trigger": {"entity_type": "campaign", "to_state": "order_creation"},
            "actions": [
                {"type": "create_order"},
                {"type": "update_status", "config": {"target": "reservation", "status": "confirmed"}},
                {
                    "type": "send_notification",
                    "config": {
                        "type": "campaign_won",
                        "recipients": ["entity_creator", "sales_team", "admin_users"],
                    },
                },
            ],
        },
        {
            "id": "campaign_rejected",
            "name": "Notify owner of rejection",
            "trigger": {
                "entity_type": "campaign",
                "from_state": "admin_approval",
                "to_state": "rejected",
            },
            "actions": [
                {
                    "type": "send_notification",
                    "config": {"type": "campaign_rejected", "recipients": ["entity_creator"]},
                },
            ],
        },
    ]


POST_SALE_RULES: list[dict[str, Any]] = [
    {
        "id": "order_approved_contract",
        "name": "Order approved: generate contract",
        "trigger": {"entity_type": "order", "from_state": "pending_approval", "to_state": "approved"},
        "actions": [
            {"type": "create_contract", "config": {"template": "standard"}},
            {
                "type": "send_notification",
                "config": {"type": "contract_created", "recipients": ["order_creator", "admin_users"]},
            },
        ],
    },
    {
        "id": "order_booked_creative_task",
        "name": "Order booked: creative brief",
        "trigger": {"entity_type": "order", "from_state": "approved", "to_state": "booked"},
        "actions": [
            {
                "type": "assign_task",
                "config": {
                    "task_type": "creative_brief",
                    "role": "producer",
                    "title": "Prepare creative brief",
                    "due_in_days": 3,
                    "priority": "high",
                },
            },
        ],
    },
    {
        "id": "contract_signed_order_ready",
        "name": "Contract signed: order ready for production",
        "trigger": {"entity_type": "contract", "to_state": "signed"},
        "actions": [
            {
                "type": "update_status",
                "config": {
                    "target": "order",
                    "status": "ready_for_production",
                    "condition": "all_contracts_signed",
                },
            },
            {
                "type": "send_notification",
                "config": {"type": "contract_signed", "recipients": ["billing_team", "account_manager"]},
            },
        ],
    },
    {
        "id": "order_confirmed_invoice",
        "name": "Order confirmed: invoice",
        "trigger": {"entity_type": "order", "from_state": "booked", "to_state": "confirmed"},
        "actions": [
            {"type": "create_invoice", "config": {"source": "order", "payment_terms": "Net 30"}},
            {
                "type": "send_notification",
                "config": {"type": "invoice_created", "recipients": ["billing_team", "order_creator"]},
            },
        ],
    },
    {
        "id": "episode_aired_delivery_invoice",
        "name": "Episode aired: delivery invoices",
        "active": False,
        "trigger": {
            "entity_type": "episode",
            "to_state": "aired",
            "conditions": [
                {"field": "has_active_orders", "operator": "equals", "value": True},
            ],
        },
        "actions": [
            {"type": "create_invoice", "config": {"source": "episode", "group_by_advertiser": True}},
        ],
    },
]


def default_rule_definitions(thresholds: ThresholdSet) -> list[dict[str, Any]]:
    return _milestone_rules(thresholds) + copy.deepcopy(POST_SALE_RULES)


def default_rule_set(thresholds: ThresholdSet | None = None) -> RuleSet:
    """
    The built-in rule set.

    The reservation rule follows the tenant's auto-reserve milestone and is
    fatal only when that milestone is admin approval.
    """
    if thresholds is None:
        thresholds = ThresholdSet.from_mapping(DEFAULT_THRESHOLDS)
    return parse_rule_set(default_rule_definitions(thresholds))

"""
Configuration Loader (``campaign_config.loader``).

Responsibility
--------------
Loads YAML override files and parses raw dicts (defaults, YAML, database
JSON) into the typed ``campaign_config.schema`` dataclasses and automation
rules.  The registry is the only runtime caller; services never parse
configuration themselves.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown action kind  -> ``UnknownActionKindError``.
* Malformed rule (missing trigger, unknown operator, unknown entity type)
  -> ``InvalidRuleError``.
* Invalid thresholds  -> ``InvalidThresholdError`` /
  ``NonMonotonicThresholdError`` from ``ThresholdSet``.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from campaign_config.schema import (
    ApprovalSettings,
    BillingSettings,
    NotificationSettings,
    RateCardSettings,
    ReservationSettings,
    RuleOverrides,
    TenantWorkflowConfig,
)
from campaign_kernel.domain.context import EntityType
from campaign_kernel.domain.milestones import ThresholdSet
from campaign_kernel.domain.rules import (
    ActionKind,
    ActionSpec,
    AutomationRule,
    ConditionOperator,
    RuleCondition,
    RuleSet,
    RuleTrigger,
)
from campaign_kernel.exceptions import InvalidRuleError, UnknownActionKindError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    An empty file yields an empty dict.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` onto ``base``.  Lists and scalars replace."""
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_decimal(value: Any) -> Decimal:
    # str() first so floats from YAML keep their written precision
    return Decimal(str(value))


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def parse_condition(rule_id: str, data: Mapping[str, Any]) -> RuleCondition:
    try:
        operator = ConditionOperator(data["operator"])
    except KeyError as exc:
        raise InvalidRuleError(rule_id, f"condition missing {exc}") from exc
    except ValueError as exc:
        raise InvalidRuleError(rule_id, f"unknown operator {data['operator']!r}") from exc
    if "field" not in data:
        raise InvalidRuleError(rule_id, "condition missing 'field'")
    return RuleCondition(field=data["field"], operator=operator, value=data.get("value"))


def parse_action(rule_id: str, data: Mapping[str, Any]) -> ActionSpec:
    kind_raw = data.get("type", data.get("kind"))
    if kind_raw is None:
        raise InvalidRuleError(rule_id, "action missing 'type'")
    try:
        kind = ActionKind(kind_raw)
    except ValueError as exc:
        raise UnknownActionKindError(str(kind_raw)) from exc
    config = data.get("config") or {}
    if not isinstance(config, Mapping):
        raise InvalidRuleError(rule_id, f"config for {kind.value} must be a mapping")
    return ActionSpec(kind=kind, config=dict(config), fatal=bool(data.get("fatal", False)))


def parse_rule(data: Mapping[str, Any]) -> AutomationRule:
    """
    Parse an ``AutomationRule`` from a dict.

    Required: ``id``, ``trigger.entity_type``, ``trigger.to_state`` and at
    least one action.
    """
    rule_id = data.get("id")
    if not rule_id:
        raise InvalidRuleError("<unnamed>", "rule missing 'id'")

    trigger_data = data.get("trigger")
    if not isinstance(trigger_data, Mapping):
        raise InvalidRuleError(rule_id, "rule missing 'trigger'")
    if not trigger_data.get("to_state"):
        raise InvalidRuleError(rule_id, "trigger missing 'to_state'")
    try:
        entity_type = EntityType(trigger_data.get("entity_type"))
    except ValueError as exc:
        raise InvalidRuleError(
            rule_id, f"unknown entity type {trigger_data.get('entity_type')!r}"
        ) from exc

    trigger = RuleTrigger(
        entity_type=entity_type,
        to_state=trigger_data["to_state"],
        from_state=trigger_data.get("from_state"),
        conditions=tuple(
            parse_condition(rule_id, c) for c in trigger_data.get("conditions") or ()
        ),
    )

    actions = tuple(parse_action(rule_id, a) for a in data.get("actions") or ())
    if not actions:
        raise InvalidRuleError(rule_id, "rule has no actions")

    return AutomationRule(
        id=rule_id,
        name=data.get("name", rule_id),
        trigger=trigger,
        actions=actions,
        is_active=bool(data.get("active", data.get("is_active", True))),
        description=data.get("description", ""),
    )


def parse_rule_set(data: list[Mapping[str, Any]]) -> RuleSet:
    return RuleSet(parse_rule(item) for item in data)


def load_rule_set(path: Path) -> RuleSet:
    """Load a rule file: either a list of rules or ``{rules: [...]}``."""
    with open(path) as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, Mapping):
        data = data.get("rules", [])
    return parse_rule_set(data)


# ---------------------------------------------------------------------------
# Tenant configuration
# ---------------------------------------------------------------------------


def parse_threshold_set(data: Mapping[str, Any]) -> ThresholdSet:
    return ThresholdSet.from_mapping(data)


def parse_rule_overrides(data: Mapping[str, Any]) -> RuleOverrides:
    return RuleOverrides(
        disabled=tuple(data.get("disabled") or ()),
        enabled=tuple(data.get("enabled") or ()),
        rules=tuple(parse_rule(r) for r in data.get("overrides") or ()),
    )


def parse_tenant_config(
    tenant_id: UUID,
    data: Mapping[str, Any],
    sources: tuple[str, ...] = ("defaults",),
) -> TenantWorkflowConfig:
    """
    Parse a fully merged settings dict into a ``TenantWorkflowConfig``.

    ``data`` must already contain every section (defaults merged in).
    """
    approvals = data["approvals"]
    rate_card = data["rate_card"]
    notifications = data["notifications"]
    reservations = data["reservations"]
    billing = data["billing"]

    prebill = billing.get("prebill_threshold")

    return TenantWorkflowConfig(
        tenant_id=tenant_id,
        thresholds=parse_threshold_set(data["thresholds"]),
        approvals=ApprovalSettings(
            approval_roles=tuple(approvals["approval_roles"]),
            override_roles=tuple(approvals["override_roles"]),
            block_on_pending_talent_approvals=bool(approvals["block_on_pending_talent_approvals"]),
            require_campaign_approval=bool(approvals["require_campaign_approval"]),
            talent_spot_types=tuple(approvals["talent_spot_types"]),
            talent_request_expiry_days=int(approvals["talent_request_expiry_days"]),
        ),
        rate_card=RateCardSettings(
            enabled=bool(rate_card["enabled"]),
            variance_threshold_percent=parse_decimal(rate_card["variance_threshold_percent"]),
            require_approval_above_percent=parse_decimal(rate_card["require_approval_above_percent"]),
        ),
        notifications=NotificationSettings(
            in_app=bool(notifications["in_app"]),
            email=bool(notifications["email"]),
            webhook=bool(notifications["webhook"]),
        ),
        reservations=ReservationSettings(
            hold_days=int(reservations["hold_days"]),
            default_placement_type=reservations["default_placement_type"],
            default_length=int(reservations["default_length"]),
        ),
        billing=BillingSettings(
            invoice_prefix=billing["invoice_prefix"],
            payment_terms=billing["payment_terms"],
            default_invoice_day=int(billing["default_invoice_day"]),
            prebill_threshold=parse_decimal(prebill) if prebill is not None else None,
            group_episode_invoices_by_advertiser=bool(billing["group_episode_invoices_by_advertiser"]),
        ),
        rule_overrides=parse_rule_overrides(data.get("rules") or {}),
        sources=sources,
    )

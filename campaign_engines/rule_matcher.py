"""
campaign_engines.rule_matcher -- select the automation rules a transition fires.

A rule matches a ``WorkflowContext`` iff it is active, its entity type
equals the context's, its ``from_state`` is unset or equals the context's
previous state, its ``to_state`` equals the new state, and every condition
holds against ``context.metadata``.  Matches keep registration order.

Pure, zero I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from campaign_kernel.domain.context import WorkflowContext
from campaign_kernel.domain.rules import (
    AutomationRule,
    ConditionOperator,
    RuleCondition,
    RuleTrigger,
)

_MISSING = object()


def match_rules(
    rules: Iterable[AutomationRule],
    context: WorkflowContext,
) -> tuple[AutomationRule, ...]:
    """All rules matching ``context``, in registration order."""
    return tuple(rule for rule in rules if rule_matches(rule, context))


def rule_matches(rule: AutomationRule, context: WorkflowContext) -> bool:
    return rule.is_active and trigger_matches(rule.trigger, context)


def trigger_matches(trigger: RuleTrigger, context: WorkflowContext) -> bool:
    if trigger.entity_type != context.entity_type:
        return False
    if trigger.from_state is not None and trigger.from_state != context.previous_state:
        return False
    if trigger.to_state != context.new_state:
        return False
    return all(evaluate_condition(c, context.metadata) for c in trigger.conditions)


def evaluate_condition(condition: RuleCondition, metadata: Mapping[str, Any]) -> bool:
    """
    Evaluate one condition; a missing field never matches.

    ``greater_than``/``less_than`` need numbers on both sides.  ``contains``
    tests membership for collections and substring for strings.
    """
    actual = _resolve_field(condition.field, metadata)
    if actual is _MISSING:
        return False
    expected = condition.value

    if condition.operator is ConditionOperator.EQUALS:
        return actual == expected
    elif condition.operator is ConditionOperator.GREATER_THAN:
        return _is_number(actual) and _is_number(expected) and actual > expected
    elif condition.operator is ConditionOperator.LESS_THAN:
        return _is_number(actual) and _is_number(expected) and actual < expected
    elif condition.operator is ConditionOperator.CONTAINS:
        if isinstance(actual, str):
            return expected is not None and str(expected) in actual
        if isinstance(actual, (list, tuple, set, frozenset)):
            return expected in actual
        return False
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _resolve_field(field_path: str, metadata: Mapping[str, Any]) -> Any:
    """Resolve a dotted path (``order.total``) in nested mappings."""
    if field_path in metadata:
        return metadata[field_path]
    current: Any = metadata
    for part in field_path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current

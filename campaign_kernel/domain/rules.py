"""
Automation rules -- declarative triggers and ordered action lists.

Responsibility:
    Pure data describing which transitions fire which actions.  Rules are
    configuration, not code: they are parsed from YAML or dicts and held in
    an explicitly constructed ``RuleSet`` that is injected into the workflow
    engine.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - ``ActionKind`` is closed; the dispatcher maps every member.
    - ``RuleSet`` preserves registration order and rejects duplicate ids.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from campaign_kernel.domain.context import EntityType
from campaign_kernel.exceptions import InvalidRuleError


class ActionKind(str, Enum):
    """The nine side effects a rule can request."""

    CREATE_RESERVATION = "create_reservation"
    CREATE_TALENT_APPROVAL = "create_talent_approval"
    CREATE_ADMIN_APPROVAL = "create_admin_approval"
    CREATE_CONTRACT = "create_contract"
    CREATE_ORDER = "create_order"
    CREATE_INVOICE = "create_invoice"
    SEND_NOTIFICATION = "send_notification"
    ASSIGN_TASK = "assign_task"
    UPDATE_STATUS = "update_status"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


@dataclass(frozen=True)
class RuleCondition:
    """Predicate over one ``WorkflowContext.metadata`` field."""

    field: str
    operator: ConditionOperator
    value: Any


@dataclass(frozen=True)
class RuleTrigger:
    entity_type: EntityType
    to_state: str
    from_state: str | None = None
    conditions: tuple[RuleCondition, ...] = ()


@dataclass(frozen=True)
class ActionSpec:
    """
    One requested side effect.

    A ``fatal`` action failing fails the whole transition; any other
    failure is logged and execution continues.
    """

    kind: ActionKind
    config: Mapping[str, Any] = field(default_factory=dict)
    fatal: bool = False


@dataclass(frozen=True)
class AutomationRule:
    id: str
    name: str
    trigger: RuleTrigger
    actions: tuple[ActionSpec, ...]
    is_active: bool = True
    description: str = ""


class RuleSet:
    """
    Ordered, immutable collection of automation rules.

    Modifiers return new instances so a tenant override never leaks into
    another tenant's evaluation.
    """

    def __init__(self, rules: Iterable[AutomationRule] = ()):
        self._rules: tuple[AutomationRule, ...] = tuple(rules)
        seen: set[str] = set()
        for rule in self._rules:
            if rule.id in seen:
                raise InvalidRuleError(rule.id, "duplicate rule id")
            seen.add(rule.id)

    def __iter__(self) -> Iterator[AutomationRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return any(rule.id == rule_id for rule in self._rules)

    def __repr__(self) -> str:
        return f"RuleSet({[rule.id for rule in self._rules]!r})"

    @property
    def rules(self) -> tuple[AutomationRule, ...]:
        return self._rules

    def get(self, rule_id: str) -> AutomationRule | None:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    def active(self) -> tuple[AutomationRule, ...]:
        return tuple(rule for rule in self._rules if rule.is_active)

    def with_rule_status(self, rule_id: str, active: bool) -> RuleSet:
        """Copy with one rule enabled or disabled."""
        if rule_id not in self:
            raise InvalidRuleError(rule_id, "no such rule")
        return RuleSet(
            replace(rule, is_active=active) if rule.id == rule_id else rule
            for rule in self._rules
        )

    def with_rules(self, rules: Iterable[AutomationRule]) -> RuleSet:
        """
        Copy with ``rules`` merged in.

        A rule whose id already exists replaces the original in place;
        new rules are appended in the given order.
        """
        incoming = {rule.id: rule for rule in rules}
        merged = [incoming.pop(rule.id, rule) for rule in self._rules]
        merged.extend(incoming.values())
        return RuleSet(merged)

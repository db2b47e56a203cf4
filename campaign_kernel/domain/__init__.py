"""Pure domain value objects for the campaign workflow engine."""

from campaign_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from campaign_kernel.domain.context import Actor, EntityType, WorkflowContext
from campaign_kernel.domain.milestones import (
    INITIAL_STATE,
    LADDER,
    REJECTED_STATE,
    STATUS_LABELS,
    Milestone,
    MilestoneName,
    ThresholdSet,
)
from campaign_kernel.domain.rules import (
    ActionKind,
    ActionSpec,
    AutomationRule,
    ConditionOperator,
    RuleCondition,
    RuleSet,
    RuleTrigger,
)
from campaign_kernel.domain.schedule import SpotLine

__all__ = [
    "Actor",
    "ActionKind",
    "ActionSpec",
    "AutomationRule",
    "Clock",
    "ConditionOperator",
    "DeterministicClock",
    "EntityType",
    "INITIAL_STATE",
    "LADDER",
    "Milestone",
    "MilestoneName",
    "REJECTED_STATE",
    "RuleCondition",
    "RuleSet",
    "RuleTrigger",
    "STATUS_LABELS",
    "SpotLine",
    "SystemClock",
    "ThresholdSet",
    "WorkflowContext",
]

"""
Tenant workflow configuration schema.

Frozen dataclasses for everything a tenant can configure: milestone
thresholds, approval roles, rate-card variance settings, notification
channel toggles, reservation holds, billing defaults, and rule overrides.
YAML and database overrides are parsed into these types by the loader.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from campaign_kernel.domain.milestones import ThresholdSet
from campaign_kernel.domain.rules import AutomationRule, RuleSet


@dataclass(frozen=True)
class ApprovalSettings:
    """Who may approve, reject, and override approval gates."""

    approval_roles: tuple[str, ...] = ("admin", "master")
    override_roles: tuple[str, ...] = ("admin", "master")
    block_on_pending_talent_approvals: bool = False
    require_campaign_approval: bool = True
    talent_spot_types: tuple[str, ...] = ("host_read", "endorsement")
    talent_request_expiry_days: int = 7

    def can_approve(self, role: str) -> bool:
        return role in self.approval_roles

    def can_override(self, role: str) -> bool:
        return role in self.override_roles


@dataclass(frozen=True)
class RateCardSettings:
    enabled: bool = True
    variance_threshold_percent: Decimal = Decimal("10")
    require_approval_above_percent: Decimal = Decimal("20")


@dataclass(frozen=True)
class NotificationSettings:
    """Channel toggles.  ``in_app`` controls notification records."""

    in_app: bool = True
    email: bool = True
    webhook: bool = False

    @property
    def external_channels(self) -> tuple[str, ...]:
        return tuple(
            name for name, enabled in (("email", self.email), ("webhook", self.webhook))
            if enabled
        )


@dataclass(frozen=True)
class ReservationSettings:
    hold_days: int = 14
    default_placement_type: str = "mid_roll"
    default_length: int = 30


@dataclass(frozen=True)
class BillingSettings:
    invoice_prefix: str = "INV"
    payment_terms: str = "Net 30"
    default_invoice_day: int = 1
    prebill_threshold: Decimal | None = None
    group_episode_invoices_by_advertiser: bool = True


@dataclass(frozen=True)
class RuleOverrides:
    """Per-tenant changes applied on top of the base rule set."""

    disabled: tuple[str, ...] = ()
    enabled: tuple[str, ...] = ()
    rules: tuple[AutomationRule, ...] = ()

    def apply(self, base: RuleSet) -> RuleSet:
        rule_set = base.with_rules(self.rules) if self.rules else base
        for rule_id in self.enabled:
            rule_set = rule_set.with_rule_status(rule_id, True)
        for rule_id in self.disabled:
            rule_set = rule_set.with_rule_status(rule_id, False)
        return rule_set


@dataclass(frozen=True)
class TenantWorkflowConfig:
    """Complete, validated workflow configuration for one tenant."""

    tenant_id: UUID
    thresholds: ThresholdSet
    approvals: ApprovalSettings = ApprovalSettings()
    rate_card: RateCardSettings = RateCardSettings()
    notifications: NotificationSettings = NotificationSettings()
    reservations: ReservationSettings = ReservationSettings()
    billing: BillingSettings = BillingSettings()
    rule_overrides: RuleOverrides = RuleOverrides()
    sources: tuple[str, ...] = ("defaults",)

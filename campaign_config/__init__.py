"""
Tenant workflow configuration.

Single entry point for runtime configuration::

    from campaign_config import get_active_config
    config = get_active_config(tenant_id, config_dir=Path("config/tenants"))
"""

from __future__ import annotations

from pathlib import Path
from uuid import UUID

from sqlalchemy.orm import Session

from campaign_config.defaults import DEFAULT_SETTINGS, DEFAULT_THRESHOLDS, default_rule_set
from campaign_config.loader import load_rule_set, parse_rule, parse_rule_set
from campaign_config.registry import (
    ConfigSource,
    DatabaseConfigSource,
    InMemoryConfigSource,
    ThresholdRegistry,
    YamlDirectoryConfigSource,
)
from campaign_config.schema import (
    ApprovalSettings,
    BillingSettings,
    NotificationSettings,
    RateCardSettings,
    ReservationSettings,
    RuleOverrides,
    TenantWorkflowConfig,
)
from campaign_config.validator import ConfigValidationResult, validate_tenant_settings

__all__ = [
    "ApprovalSettings",
    "BillingSettings",
    "ConfigSource",
    "ConfigValidationResult",
    "DEFAULT_SETTINGS",
    "DEFAULT_THRESHOLDS",
    "DatabaseConfigSource",
    "InMemoryConfigSource",
    "NotificationSettings",
    "RateCardSettings",
    "ReservationSettings",
    "RuleOverrides",
    "TenantWorkflowConfig",
    "ThresholdRegistry",
    "YamlDirectoryConfigSource",
    "default_rule_set",
    "get_active_config",
    "load_rule_set",
    "parse_rule",
    "parse_rule_set",
    "validate_tenant_settings",
]


def get_active_config(
    tenant_id: UUID,
    *,
    config_dir: Path | None = None,
    session: Session | None = None,
) -> TenantWorkflowConfig:
    """
    Resolve the configuration for ``tenant_id``.

    Reads ``<config_dir>/<tenant_id>.yaml`` when a directory is given, then
    the tenant settings table when a session is given.
    """
    sources: list[ConfigSource] = []
    if config_dir is not None:
        sources.append(YamlDirectoryConfigSource(config_dir))
    if session is not None:
        sources.append(DatabaseConfigSource())
    return ThresholdRegistry(sources).get_config(tenant_id, session)

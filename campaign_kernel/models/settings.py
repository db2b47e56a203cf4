"""
Module: campaign_kernel.models.settings
Responsibility: Per-tenant workflow configuration overrides stored as JSON,
    one row per top-level settings key (thresholds, approvals, rate_card,
    notifications, billing, rules).
"""

from typing import Any

from sqlalchemy import JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from campaign_kernel.db.base import TenantBase


class TenantWorkflowSetting(TenantBase):
    __tablename__ = "tenant_workflow_settings"

    __table_args__ = (
        UniqueConstraint("organization_id", "key", name="uq_tenant_setting_key"),
    )

    key: Mapped[str] = mapped_column(String(50), nullable=False)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)

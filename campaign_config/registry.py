"""
Threshold Registry (``campaign_config.registry``).

Responsibility
--------------
Resolves the workflow configuration for a tenant: compiled-in defaults,
deep-merged with each configured source in order (YAML directory, database
settings table, in-memory overrides), validated and parsed into a
``TenantWorkflowConfig``.

Invariants enforced
-------------------
* Configuration is read on every call; nothing is cached across
  evaluations, since a tenant may change settings between campaigns.
* An invalid override raises a ``ConfigurationError`` subclass at load and
  is never replaced by defaults.
* ``set_override`` validates eagerly, so a bad override is rejected before
  it is stored.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from campaign_config.defaults import default_rule_set, default_settings
from campaign_config.loader import deep_merge, load_yaml_file, parse_tenant_config
from campaign_config.schema import TenantWorkflowConfig
from campaign_config.validator import validate_tenant_settings
from campaign_kernel.db.engine import session_scope
from campaign_kernel.exceptions import ConfigurationError, InvalidTenantConfigError
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models.settings import TenantWorkflowSetting

logger = get_logger("config.registry")


class ConfigSource(Protocol):
    """A place tenant overrides can come from."""

    name: str

    def load(self, tenant_id: UUID, session: Session | None = None) -> dict[str, Any] | None:
        ...


class InMemoryConfigSource:
    name = "memory"

    def __init__(self, overrides: Mapping[UUID, Mapping[str, Any]] | None = None):
        self._overrides: dict[str, dict[str, Any]] = {
            str(tenant): dict(data) for tenant, data in (overrides or {}).items()
        }

    def load(self, tenant_id: UUID, session: Session | None = None) -> dict[str, Any] | None:
        return self._overrides.get(str(tenant_id))

    def set(self, tenant_id: UUID, data: Mapping[str, Any]) -> None:
        self._overrides[str(tenant_id)] = dict(data)

    def clear(self, tenant_id: UUID) -> None:
        self._overrides.pop(str(tenant_id), None)


class YamlDirectoryConfigSource:
    """Reads ``<directory>/<tenant_id>.yaml`` when present."""

    name = "yaml"

    def __init__(self, directory: Path | str):
        self._directory = Path(directory)

    def load(self, tenant_id: UUID, session: Session | None = None) -> dict[str, Any] | None:
        path = self._directory / f"{tenant_id}.yaml"
        if not path.exists():
            return None
        return load_yaml_file(path)


class DatabaseConfigSource:
    """
    Reads ``tenant_workflow_settings`` rows, one per top-level section.

    Uses the caller's session when given, so the read joins the
    evaluation's transaction.
    """

    name = "database"

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory

    def load(self, tenant_id: UUID, session: Session | None = None) -> dict[str, Any] | None:
        if session is not None:
            return self._read(session, tenant_id)
        if self._session_factory is None:
            return None
        with session_scope(self._session_factory) as own_session:
            return self._read(own_session, tenant_id)

    @staticmethod
    def _read(session: Session, tenant_id: UUID) -> dict[str, Any] | None:
        rows = session.scalars(
            select(TenantWorkflowSetting).where(
                TenantWorkflowSetting.organization_id == tenant_id,
            )
        ).all()
        if not rows:
            return None
        return {row.key: row.value for row in rows}

    @staticmethod
    def save(session: Session, tenant_id: UUID, key: str, value: Any) -> TenantWorkflowSetting:
        """Insert or replace one settings section."""
        row = session.scalars(
            select(TenantWorkflowSetting).where(
                TenantWorkflowSetting.organization_id == tenant_id,
                TenantWorkflowSetting.key == key,
            )
        ).one_or_none()
        if row is None:
            row = TenantWorkflowSetting(organization_id=tenant_id, key=key, value=value)
            session.add(row)
        else:
            row.value = value
        session.flush()
        return row


class ThresholdRegistry:
    """
    Per-tenant workflow configuration.

    Sources are merged in the order given; in-memory overrides set through
    ``set_override`` are applied last.
    """

    def __init__(self, sources: Sequence[ConfigSource] = ()):
        self._memory = InMemoryConfigSource()
        self._sources: tuple[ConfigSource, ...] = (*sources, self._memory)

    def get_config(self, tenant_id: UUID, session: Session | None = None) -> TenantWorkflowConfig:
        merged = default_settings()
        names = ["defaults"]
        for source in self._sources:
            data = source.load(tenant_id, session)
            if data:
                merged = deep_merge(merged, data)
                names.append(source.name)
        return self._build(tenant_id, merged, tuple(names))

    def get_thresholds(self, tenant_id: UUID, session: Session | None = None) -> dict[str, int]:
        """``{name: value}`` for the tenant; defaults when no override exists."""
        return self.get_config(tenant_id, session).thresholds.as_dict()

    def set_override(
        self,
        tenant_id: UUID,
        overrides: Mapping[str, Any],
        session: Session | None = None,
    ) -> TenantWorkflowConfig:
        """Validate and store an in-memory override for ``tenant_id``."""
        merged = default_settings()
        names = ["defaults"]
        for source in self._sources[:-1]:
            data = source.load(tenant_id, session)
            if data:
                merged = deep_merge(merged, data)
                names.append(source.name)
        merged = deep_merge(merged, overrides)
        config = self._build(tenant_id, merged, (*names, self._memory.name))
        self._memory.set(tenant_id, overrides)
        logger.info(
            "tenant_config_override_set",
            extra={"tenant_id": str(tenant_id), "sections": sorted(overrides)},
        )
        return config

    def clear_override(self, tenant_id: UUID) -> None:
        self._memory.clear(tenant_id)

    def _build(
        self,
        tenant_id: UUID,
        merged: dict[str, Any],
        sources: tuple[str, ...],
    ) -> TenantWorkflowConfig:
        result = validate_tenant_settings(merged)
        for warning in result.warnings:
            logger.warning(
                "tenant_config_warning",
                extra={"tenant_id": str(tenant_id), "warning": warning},
            )
        if not result.is_valid:
            logger.error(
                "tenant_config_invalid",
                extra={"tenant_id": str(tenant_id), "errors": result.errors, "sources": sources},
            )
            raise InvalidTenantConfigError(str(tenant_id), result.errors)

        try:
            config = parse_tenant_config(tenant_id, merged, sources)
            # Disabled/enabled ids must name real rules.
            config.rule_overrides.apply(default_rule_set(config.thresholds))
        except ConfigurationError as exc:
            logger.error(
                "tenant_config_invalid",
                extra={"tenant_id": str(tenant_id), "error": str(exc), "sources": sources},
            )
            raise

        logger.debug(
            "tenant_config_loaded",
            extra={"tenant_id": str(tenant_id), "sources": sources},
        )
        return config

"""
Configuration Validator (``campaign_config.validator``).

Responsibility
--------------
Validates a merged tenant settings dict before it is parsed, so that an
invalid override is reported with every problem at once instead of the
first ``KeyError``.  Thresholds are validated by ``ThresholdSet`` itself,
which raises the typed threshold errors.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> the registry
  raises ``InvalidTenantConfigError``; the override is never defaulted.
* Validation warnings  -> logged; configuration is still used.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from campaign_config.defaults import DEFAULT_SETTINGS
from campaign_engines.invoicing import PAYMENT_TERMS_PATTERN

_PREFIX_PATTERN = re.compile(r"^[A-Z0-9]{1,10}$")


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_tenant_settings(data: Mapping[str, Any]) -> ConfigValidationResult:
    """Validate a merged settings dict (defaults plus overrides)."""
    result = ConfigValidationResult()

    _validate_known_keys(data, result)
    _validate_approvals(data.get("approvals", {}), result)
    _validate_rate_card(data.get("rate_card", {}), result)
    _validate_flags("notifications", data.get("notifications", {}), result)
    _validate_reservations(data.get("reservations", {}), result)
    _validate_billing(data.get("billing", {}), result)
    _validate_rules(data.get("rules", {}), result)

    return result


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _as_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _validate_known_keys(data: Mapping[str, Any], result: ConfigValidationResult) -> None:
    for section, value in data.items():
        if section not in DEFAULT_SETTINGS:
            result.add_error(f"unknown section '{section}'")
            continue
        if not isinstance(value, Mapping):
            result.add_error(f"section '{section}' must be a mapping")
            continue
        if section == "thresholds":
            continue
        for key in value:
            if key not in DEFAULT_SETTINGS[section]:
                result.add_error(f"unknown setting '{section}.{key}'")


def _validate_approvals(section: Mapping[str, Any], result: ConfigValidationResult) -> None:
    roles = section.get("approval_roles")
    if not _is_str_list(roles) or not roles:
        result.add_error("approvals.approval_roles must be a non-empty list of role names")
    if not _is_str_list(section.get("override_roles")):
        result.add_error("approvals.override_roles must be a list of role names")
    if not _is_str_list(section.get("talent_spot_types")):
        result.add_error("approvals.talent_spot_types must be a list of spot types")
    days = section.get("talent_request_expiry_days")
    if not _is_int(days) or days < 1:
        result.add_error("approvals.talent_request_expiry_days must be a positive integer")
    for key in ("block_on_pending_talent_approvals", "require_campaign_approval"):
        if not isinstance(section.get(key), bool):
            result.add_error(f"approvals.{key} must be true or false")


def _validate_rate_card(section: Mapping[str, Any], result: ConfigValidationResult) -> None:
    if not isinstance(section.get("enabled"), bool):
        result.add_error("rate_card.enabled must be true or false")
    threshold = _as_decimal(section.get("variance_threshold_percent"))
    approval = _as_decimal(section.get("require_approval_above_percent"))
    if threshold is None or threshold < 0:
        result.add_error("rate_card.variance_threshold_percent must be a non-negative number")
    if approval is None or approval < 0:
        result.add_error("rate_card.require_approval_above_percent must be a non-negative number")
    if threshold is not None and approval is not None and approval < threshold:
        result.add_warning(
            "rate_card.require_approval_above_percent is below the variance "
            "threshold; every flagged variance will require approval"
        )


def _validate_flags(name: str, section: Mapping[str, Any], result: ConfigValidationResult) -> None:
    for key, value in section.items():
        if not isinstance(value, bool):
            result.add_error(f"{name}.{key} must be true or false")


def _validate_reservations(section: Mapping[str, Any], result: ConfigValidationResult) -> None:
    for key in ("hold_days", "default_length"):
        value = section.get(key)
        if not _is_int(value) or value < 1:
            result.add_error(f"reservations.{key} must be a positive integer")
    if not isinstance(section.get("default_placement_type"), str):
        result.add_error("reservations.default_placement_type must be a string")


def _validate_billing(section: Mapping[str, Any], result: ConfigValidationResult) -> None:
    prefix = section.get("invoice_prefix")
    if not isinstance(prefix, str) or not _PREFIX_PATTERN.match(prefix):
        result.add_error("billing.invoice_prefix must be 1-10 uppercase letters or digits")
    terms = section.get("payment_terms")
    if not isinstance(terms, str) or not PAYMENT_TERMS_PATTERN.match(terms):
        result.add_error(f"billing.payment_terms {terms!r} is not 'Net N' or 'Due on receipt'")
    day = section.get("default_invoice_day")
    if not _is_int(day) or not 1 <= day <= 28:
        result.add_error("billing.default_invoice_day must be an integer in [1, 28]")
    prebill = section.get("prebill_threshold")
    if prebill is not None:
        amount = _as_decimal(prebill)
        if amount is None or amount < 0:
            result.add_error("billing.prebill_threshold must be a non-negative number")
    if not isinstance(section.get("group_episode_invoices_by_advertiser"), bool):
        result.add_error("billing.group_episode_invoices_by_advertiser must be true or false")


def _validate_rules(section: Mapping[str, Any], result: ConfigValidationResult) -> None:
    for key in ("disabled", "enabled"):
        if not _is_str_list(section.get(key, [])):
            result.add_error(f"rules.{key} must be a list of rule ids")
    overrides = section.get("overrides", [])
    if not isinstance(overrides, list) or not all(isinstance(r, Mapping) for r in overrides):
        result.add_error("rules.overrides must be a list of rule definitions")

"""
Typed exception hierarchy for the campaign workflow engine.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe), and structured attributes
carrying the data a caller or log pipeline needs.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CampaignWorkflowError (base)
    |
    +-- ConfigurationError
    |   +-- InvalidThresholdError
    |   +-- NonMonotonicThresholdError
    |   +-- InvalidRuleError
    |   +-- UnknownActionKindError
    |   +-- InvalidTenantConfigError
    |
    +-- TransitionError
    |   +-- PreconditionViolationError
    |   |   +-- DeniedTalentApprovalError
    |   |   +-- PendingTalentApprovalError
    |   |   +-- CampaignApprovalRequiredError
    |   +-- UnauthorizedTransitionError
    |   +-- InvalidTransitionError
    |   +-- InvalidProbabilityError
    |
    +-- ActionError
    |   +-- ActionExecutionError
    |   +-- FatalActionError
    |
    +-- EntityNotFoundError
    |
    +-- BillingError
    |   +-- InvoiceSequenceExhaustedError
    |   +-- NoBillableItemsError
    |   +-- InvoiceScheduleError
    |
    +-- ConcurrencyError
        +-- EntityLockTimeoutError

===============================================================================
HANDLING PATTERNS
===============================================================================

Configuration errors surface at load time and are reported to the operator;
they are never replaced by defaults.

Transition errors are returned to the mutation handler that triggered the
evaluation. The surrounding transaction is rolled back, so the probability
change is never committed:

    try:
        service.update_probability(tenant_id, campaign_id, 92, actor)
    except DeniedTalentApprovalError as e:
        api_response(code=e.code, denied=e.denied_count)

Action errors are logged per action. Only ``FatalActionError`` escapes the
workflow engine.
"""

from __future__ import annotations


class CampaignWorkflowError(Exception):
    """
    Base exception for all campaign workflow errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "CAMPAIGN_WORKFLOW_ERROR"


# Configuration errors


class ConfigurationError(CampaignWorkflowError):
    """Base exception for invalid tenant or rule configuration."""

    code: str = "CONFIGURATION_ERROR"


class InvalidThresholdError(ConfigurationError):
    """A threshold value is missing, not an integer, or outside [0, 100]."""

    code: str = "INVALID_THRESHOLD"

    def __init__(self, name: str, value: object, reason: str):
        self.name = name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid threshold {name}={value!r}: {reason}")


class NonMonotonicThresholdError(ConfigurationError):
    """The milestone ladder is not strictly increasing."""

    code: str = "NON_MONOTONIC_THRESHOLDS"

    def __init__(self, lower: str, lower_value: int, upper: str, upper_value: int):
        self.lower = lower
        self.lower_value = lower_value
        self.upper = upper
        self.upper_value = upper_value
        super().__init__(
            f"Threshold {lower}={lower_value} must be lower than "
            f"{upper}={upper_value}"
        )


class InvalidRuleError(ConfigurationError):
    """An automation rule definition cannot be parsed."""

    code: str = "INVALID_RULE"

    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Invalid automation rule '{rule_id}': {reason}")


class UnknownActionKindError(ConfigurationError):
    """An action references a kind outside the closed action set."""

    code: str = "UNKNOWN_ACTION_KIND"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown action kind: {kind}")


class InvalidTenantConfigError(ConfigurationError):
    """A tenant override failed load-time validation."""

    code: str = "INVALID_TENANT_CONFIG"

    def __init__(self, tenant_id: str, errors: list[str]):
        self.tenant_id = tenant_id
        self.errors = errors
        super().__init__(
            f"Invalid workflow configuration for tenant {tenant_id}: "
            + "; ".join(errors)
        )


# Transition errors


class TransitionError(CampaignWorkflowError):
    """Base exception for rejected transitions."""

    code: str = "TRANSITION_ERROR"


class PreconditionViolationError(TransitionError):
    """An entity precondition for the transition does not hold."""

    code: str = "PRECONDITION_VIOLATION"

    def __init__(self, entity_id: str, milestone: str, reason: str):
        self.entity_id = entity_id
        self.milestone = milestone
        self.reason = reason
        super().__init__(f"Cannot reach {milestone} for {entity_id}: {reason}")


class DeniedTalentApprovalError(PreconditionViolationError):
    """Talent approvals for the campaign were denied."""

    code: str = "TALENT_APPROVAL_DENIED"

    def __init__(self, entity_id: str, milestone: str, denied_count: int):
        self.denied_count = denied_count
        super().__init__(
            entity_id,
            milestone,
            f"{denied_count} talent approval(s) were denied",
        )


class PendingTalentApprovalError(PreconditionViolationError):
    """Talent approvals are still pending and the tenant blocks on pending."""

    code: str = "TALENT_APPROVAL_PENDING"

    def __init__(self, entity_id: str, milestone: str, pending_count: int):
        self.pending_count = pending_count
        super().__init__(
            entity_id,
            milestone,
            f"{pending_count} talent approval(s) are still pending",
        )


class CampaignApprovalRequiredError(PreconditionViolationError):
    """Order creation requires an approved campaign approval."""

    code: str = "CAMPAIGN_APPROVAL_REQUIRED"

    def __init__(self, entity_id: str, milestone: str):
        super().__init__(
            entity_id,
            milestone,
            "campaign approval has not been granted",
        )


class UnauthorizedTransitionError(TransitionError):
    """The acting role may not perform this transition."""

    code: str = "UNAUTHORIZED_TRANSITION"

    def __init__(self, actor_role: str, transition: str, allowed_roles: tuple[str, ...]):
        self.actor_role = actor_role
        self.transition = transition
        self.allowed_roles = allowed_roles
        super().__init__(
            f"Role '{actor_role}' may not perform {transition}; "
            f"allowed: {', '.join(allowed_roles)}"
        )


class InvalidTransitionError(TransitionError):
    """The entity is not in a state from which the transition is legal."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, current_state: str, transition: str):
        self.entity_id = entity_id
        self.current_state = current_state
        self.transition = transition
        super().__init__(
            f"Cannot {transition} {entity_id} from state '{current_state}'"
        )


class InvalidProbabilityError(TransitionError):
    """Probability outside [0, 100]."""

    code: str = "INVALID_PROBABILITY"

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Probability must be an integer in [0, 100], got {value!r}")


# Action errors


class ActionError(CampaignWorkflowError):
    """Base exception for action execution failures."""

    code: str = "ACTION_ERROR"


class ActionExecutionError(ActionError):
    """An executor could not complete its action."""

    code: str = "ACTION_EXECUTION_FAILED"

    def __init__(self, action_kind: str, reason: str):
        self.action_kind = action_kind
        self.reason = reason
        super().__init__(f"Action {action_kind} failed: {reason}")


class FatalActionError(ActionError):
    """A fatal action failed; the whole transition must fail."""

    code: str = "FATAL_ACTION_FAILED"

    def __init__(self, action_kind: str, rule_id: str, reason: str):
        self.action_kind = action_kind
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(
            f"Fatal action {action_kind} in rule '{rule_id}' failed: {reason}"
        )


# Entity errors


class EntityNotFoundError(CampaignWorkflowError):
    """Referenced entity does not exist for the tenant."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Billing errors


class BillingError(CampaignWorkflowError):
    """Base exception for billing errors."""

    code: str = "BILLING_ERROR"


class InvoiceSequenceExhaustedError(BillingError):
    """All four-digit sequence values for a month are used."""

    code: str = "INVOICE_SEQUENCE_EXHAUSTED"

    def __init__(self, prefix: str, period: str):
        self.prefix = prefix
        self.period = period
        super().__init__(f"Invoice sequence exhausted for {prefix}-{period}")


class NoBillableItemsError(BillingError):
    """Nothing left to invoice for the source entity."""

    code: str = "NO_BILLABLE_ITEMS"

    def __init__(self, source_type: str, source_id: str):
        self.source_type = source_type
        self.source_id = source_id
        super().__init__(f"No billable items for {source_type} {source_id}")


class InvoiceScheduleError(BillingError):
    """Invalid recurring invoice schedule request."""

    code: str = "INVOICE_SCHEDULE_ERROR"

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Cannot schedule invoices for order {order_id}: {reason}")


# Concurrency errors


class ConcurrencyError(CampaignWorkflowError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class EntityLockTimeoutError(ConcurrencyError):
    """Timed out waiting for the per-entity workflow lock."""

    code: str = "ENTITY_LOCK_TIMEOUT"

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for lock {key}")

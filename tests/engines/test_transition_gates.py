"""Tests for the pure transition gates."""

from uuid import uuid4

import pytest

from campaign_config.defaults import DEFAULT_THRESHOLDS
from campaign_engines.transition_gates import (
    TalentApprovalCounts,
    check_admin_approval_gate,
    check_decision_gate,
    check_order_creation_gate,
)
from campaign_kernel.domain.milestones import ThresholdSet
from campaign_kernel.exceptions import (
    CampaignApprovalRequiredError,
    DeniedTalentApprovalError,
    InvalidTransitionError,
    PendingTalentApprovalError,
    PreconditionViolationError,
    UnauthorizedTransitionError,
)

THRESHOLDS = ThresholdSet.from_mapping(DEFAULT_THRESHOLDS)
PRIVILEGED = ("admin", "master")
CAMPAIGN = uuid4()


class TestAdminApprovalGate:
    def test_clean_campaign_passes_without_warnings(self):
        result = check_admin_approval_gate(
            CAMPAIGN, "sales", TalentApprovalCounts(approved=2), PRIVILEGED,
        )
        assert result.warnings == ()
        assert not result.overridden

    def test_denied_approval_blocks_sales(self):
        with pytest.raises(DeniedTalentApprovalError) as exc_info:
            check_admin_approval_gate(
                CAMPAIGN, "sales", TalentApprovalCounts(denied=1), PRIVILEGED,
            )
        assert exc_info.value.denied_count == 1
        assert isinstance(exc_info.value, PreconditionViolationError)

    def test_denied_approval_overridden_by_admin(self):
        result = check_admin_approval_gate(
            CAMPAIGN, "admin", TalentApprovalCounts(denied=2), PRIVILEGED,
        )
        assert result.overridden
        assert "2 denied talent approval(s) overridden" in result.warnings[0]

    def test_pending_approvals_warn_by_default(self):
        result = check_admin_approval_gate(
            CAMPAIGN, "sales", TalentApprovalCounts(pending=3), PRIVILEGED,
        )
        assert result.warnings == ("3 talent approval(s) still pending",)

    def test_pending_approvals_block_when_configured(self):
        with pytest.raises(PendingTalentApprovalError):
            check_admin_approval_gate(
                CAMPAIGN, "sales", TalentApprovalCounts(pending=1), PRIVILEGED,
                block_on_pending=True,
            )

    def test_override_role_passes_pending_block(self):
        result = check_admin_approval_gate(
            CAMPAIGN, "master", TalentApprovalCounts(pending=1), PRIVILEGED,
            block_on_pending=True,
        )
        assert result.warnings == ("1 talent approval(s) still pending",)


class TestOrderCreationGate:
    def test_privileged_actor_needs_no_approval(self):
        check_order_creation_gate(CAMPAIGN, "admin", PRIVILEGED, True, False)

    def test_sales_needs_approved_campaign_approval(self):
        with pytest.raises(CampaignApprovalRequiredError):
            check_order_creation_gate(CAMPAIGN, "sales", PRIVILEGED, True, False)

    def test_sales_passes_with_approval(self):
        check_order_creation_gate(CAMPAIGN, "sales", PRIVILEGED, True, True)

    def test_disabled_requirement_lets_everyone_through(self):
        check_order_creation_gate(CAMPAIGN, "sales", PRIVILEGED, False, False)


class TestDecisionGate:
    def test_sales_cannot_reject(self):
        with pytest.raises(UnauthorizedTransitionError) as exc_info:
            check_decision_gate(CAMPAIGN, "sales", PRIVILEGED, 90, THRESHOLDS, "reject")
        assert exc_info.value.allowed_roles == PRIVILEGED

    @pytest.mark.parametrize("probability", [65, 89, 100])
    def test_only_from_admin_approval_band(self, probability):
        with pytest.raises(InvalidTransitionError):
            check_decision_gate(CAMPAIGN, "admin", PRIVILEGED, probability, THRESHOLDS, "reject")

    @pytest.mark.parametrize("probability", [90, 95, 99])
    def test_admin_may_decide_in_band(self, probability):
        check_decision_gate(CAMPAIGN, "admin", PRIVILEGED, probability, THRESHOLDS, "approve")

"""
Tests for CampaignWorkflowService: probability updates, gates, ledger,
rejection, approval and inbound transition evaluation.

Every call goes through the public service; assertions read committed
state back in a fresh session.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from campaign_kernel.domain.context import EntityType, WorkflowContext
from campaign_kernel.domain.milestones import MilestoneName
from campaign_kernel.domain.rules import ActionKind
from campaign_kernel.exceptions import (
    CampaignApprovalRequiredError,
    DeniedTalentApprovalError,
    EntityNotFoundError,
    FatalActionError,
    InvalidProbabilityError,
    InvalidTransitionError,
    PendingTalentApprovalError,
    UnauthorizedTransitionError,
)
from campaign_kernel.models import (
    Campaign,
    CampaignApproval,
    CampaignMilestone,
    Contract,
    Invoice,
    Notification,
    Order,
    Reservation,
    TalentApprovalRequest,
    Task,
)
from campaign_services.action_executors import ActionStatus
from campaign_services.approval_service import ApprovalService
from campaign_services.reservation_service import ReservationService
from campaign_services.workflow_engine import EvaluationResult
from tests.conftest import messages


def _count(db, model, **filters):
    with db() as session:
        query = select(func.count()).select_from(model)
        for name, value in filters.items():
            query = query.where(getattr(model, name) == value)
        return session.scalar(query)


def _campaign(db, campaign_id):
    with db() as session:
        return session.get(Campaign, campaign_id)


def _ledger(db, campaign_id):
    with db() as session:
        return set(
            session.scalars(
                select(CampaignMilestone.milestone).where(CampaignMilestone.campaign_id == campaign_id)
            )
        )


@pytest.fixture
def at_talent_approval(workflow_service, tenant_id, scheduled_campaign, actors):
    """The scheduled campaign moved to 65% by its owner."""
    workflow_service.update_probability(tenant_id, scheduled_campaign.id, 65, actors["sales"])
    return scheduled_campaign


@pytest.fixture
def at_admin_approval(workflow_service, tenant_id, at_talent_approval, actors):
    """The scheduled campaign moved on to 90% by its owner."""
    workflow_service.update_probability(tenant_id, at_talent_approval.id, 90, actors["sales"])
    return at_talent_approval


# =========================================================================
# 1. Crossings, status and early milestones
# =========================================================================


class TestProbabilityUpdates:
    def test_pre_sale_enables_schedule_builder(self, db, workflow_service, tenant_id, scheduled_campaign, actors):
        result = workflow_service.update_probability(tenant_id, scheduled_campaign.id, 10, actors["sales"])

        assert result.crossed == (MilestoneName.PRE_SALE_ACTIVE,)
        assert result.status == "pre_sale"
        assert result.success
        campaign = _campaign(db, scheduled_campaign.id)
        assert campaign.probability == 10
        assert campaign.schedule_builder_enabled
        assert not campaign.schedule_validated

    def test_jump_fires_each_milestone_in_order(self, db, workflow_service, tenant_id, scheduled_campaign, actors):
        result = workflow_service.update_probability(tenant_id, scheduled_campaign.id, 65, actors["sales"])

        assert result.crossed == (
            MilestoneName.PRE_SALE_ACTIVE,
            MilestoneName.SCHEDULE_VALID,
            MilestoneName.TALENT_APPROVAL,
        )
        assert [e.context.new_state for e in result.evaluations] == [
            "pre_sale_active", "schedule_valid", "talent_approval",
        ]
        assert result.status == "talent_review"
        campaign = _campaign(db, scheduled_campaign.id)
        assert campaign.schedule_validated
        assert campaign.rate_card_tracking
        assert _ledger(db, scheduled_campaign.id) == {"pre_sale_active", "schedule_valid", "talent_approval"}

    def test_schedule_valid_needs_spots(self, db, workflow_service, seed, tenant_id, users, actors):
        empty = seed.campaign(created_by=users["sales"])
        result = workflow_service.update_probability(tenant_id, empty.id, 35, actors["sales"])

        assert MilestoneName.SCHEDULE_VALID in result.crossed
        assert result.evaluations[1].matched_rules == ()
        assert not _campaign(db, empty.id).schedule_validated

    def test_talent_approval_requests_host_read(self, db, workflow_service, tenant_id, at_talent_approval, users):
        with db() as session:
            (request,) = session.scalars(select(TalentApprovalRequest)).all()
            assert request.talent_id == users["talent"].id
            assert request.spot_type == "host_read"
            assert request.status == "pending"
            assert request.summary_data["spot_count"] == 1
            notified = session.scalars(
                select(Notification.user_id).where(Notification.type == "talent_approval_required")
            ).all()
        assert notified == [users["talent"].id]

    def test_decrease_updates_status_only(self, db, workflow_service, tenant_id, at_talent_approval, actors):
        result = workflow_service.update_probability(tenant_id, at_talent_approval.id, 20, actors["sales"])
        assert result.crossed == ()
        assert result.evaluations == ()
        assert result.status == "pre_sale"
        assert _campaign(db, at_talent_approval.id).probability == 20


# =========================================================================
# 2. Admin approval milestone and its gate
# =========================================================================


class TestAdminApproval:
    def test_reserves_inventory_and_requests_approval(
        self, db, workflow_service, tenant_id, at_talent_approval, actors, users,
    ):
        result = workflow_service.update_probability(tenant_id, at_talent_approval.id, 90, actors["sales"])

        assert result.crossed == (MilestoneName.ADMIN_APPROVAL,)
        assert result.status == "pending_approval"
        assert len(result.warnings) == 1
        (reservation_id,) = result.created(ActionKind.CREATE_RESERVATION)
        (approval_id,) = result.created(ActionKind.CREATE_ADMIN_APPROVAL)

        with db() as session:
            reservation = session.get(Reservation, reservation_id)
            assert reservation.status == "held"
            assert reservation.estimated_revenue == Decimal("18000")
            assert reservation.total_amount == Decimal("1700")
            assert len(reservation.items) == 3
            assert reservation.reservation_number.startswith("RES-20250303-")

            approval = session.get(CampaignApproval, approval_id)
            assert approval.status == "pending"
            assert approval.rate_card_variance == Decimal("10")
            assert not approval.has_rate_card_variance

            campaign = session.get(Campaign, at_talent_approval.id)
            assert campaign.reservation_id == reservation_id
            assert campaign.approval_request_id == approval_id

            notified = set(
                session.scalars(
                    select(Notification.user_id).where(Notification.type == "admin_approval_required")
                )
            )
        assert notified == {users["admin"].id, users["master"].id}

    def test_denied_talent_blocks_sales(self, db, workflow_service, deterministic_clock, tenant_id, at_talent_approval, actors, captured_logs):
        with db() as session:
            request = session.scalars(select(TalentApprovalRequest)).one()
            ApprovalService(session, deterministic_clock).respond_to_talent_request(tenant_id, request.id, approved=False)

        with pytest.raises(DeniedTalentApprovalError):
            workflow_service.update_probability(tenant_id, at_talent_approval.id, 90, actors["sales"])

        assert _campaign(db, at_talent_approval.id).probability == 65
        assert _count(db, Reservation) == 0
        assert "admin_approval" not in _ledger(db, at_talent_approval.id)
        rejected = next(r for r in captured_logs() if r["message"] == "transition_rejected")
        assert rejected["error_code"] == "TALENT_APPROVAL_DENIED"

    def test_admin_overrides_denied_talent(self, db, workflow_service, deterministic_clock, tenant_id, at_talent_approval, actors, captured_logs):
        with db() as session:
            request = session.scalars(select(TalentApprovalRequest)).one()
            ApprovalService(session, deterministic_clock).respond_to_talent_request(tenant_id, request.id, approved=False)

        result = workflow_service.update_probability(tenant_id, at_talent_approval.id, 90, actors["admin"])
        assert result.crossed == (MilestoneName.ADMIN_APPROVAL,)
        assert result.warnings
        assert "talent_denial_overridden" in messages(captured_logs())

    def test_blocking_on_pending_talent_is_configurable(
        self, db, workflow_service, registry, tenant_id, at_talent_approval, actors,
    ):
        registry.set_override(tenant_id, {"approvals": {"block_on_pending_talent_approvals": True}})
        with pytest.raises(PendingTalentApprovalError):
            workflow_service.update_probability(tenant_id, at_talent_approval.id, 90, actors["sales"])
        assert _campaign(db, at_talent_approval.id).probability == 65

    def test_fatal_reservation_failure_rolls_back(
        self, db, workflow_service, tenant_id, at_talent_approval, actors, monkeypatch,
    ):
        def broken(self, *args, **kwargs):
            raise RuntimeError("inventory service down")

        monkeypatch.setattr(ReservationService, "create_for_campaign", broken)
        with pytest.raises(FatalActionError) as exc_info:
            workflow_service.update_probability(tenant_id, at_talent_approval.id, 90, actors["admin"])

        assert exc_info.value.rule_id == "campaign_auto_reserve"
        assert _campaign(db, at_talent_approval.id).probability == 65
        assert _count(db, CampaignApproval) == 0
        assert "admin_approval" not in _ledger(db, at_talent_approval.id)

    def test_campaign_without_spots_is_held_before_approval(
        self, db, workflow_service, seed, tenant_id, users, actors,
    ):
        empty = seed.campaign(created_by=users["sales"])
        result = workflow_service.update_probability(tenant_id, empty.id, 90, actors["admin"])

        assert MilestoneName.ADMIN_APPROVAL in result.crossed
        assert _count(db, CampaignApproval) == 1
        with db() as session:
            (reservation,) = session.scalars(select(Reservation)).all()
            assert reservation.status == "held"
            assert reservation.items == []
            assert session.get(Campaign, empty.id).reservation_id == reservation.id

    def test_milestone_does_not_fire_twice(
        self, db, workflow_service, tenant_id, at_admin_approval, actors, captured_logs,
    ):
        workflow_service.update_probability(tenant_id, at_admin_approval.id, 70, actors["sales"])
        result = workflow_service.update_probability(tenant_id, at_admin_approval.id, 90, actors["sales"])

        assert result.crossed == ()
        assert result.status == "pending_approval"
        assert _count(db, Reservation) == 1
        assert _count(db, CampaignApproval) == 1
        assert "milestones_already_crossed" in messages(captured_logs())


# =========================================================================
# 3. Order creation
# =========================================================================


class TestOrderCreation:
    def test_sales_needs_approved_campaign_approval(self, db, workflow_service, tenant_id, at_admin_approval, actors):
        with pytest.raises(CampaignApprovalRequiredError):
            workflow_service.update_probability(tenant_id, at_admin_approval.id, 100, actors["sales"])
        assert _campaign(db, at_admin_approval.id).probability == 90
        assert _count(db, Order) == 0

    def test_sales_may_proceed_once_approved(
        self, db, workflow_service, deterministic_clock, tenant_id, at_admin_approval, actors, users,
    ):
        with db() as session:
            ApprovalService(session, deterministic_clock).approve_campaign_approval(
                tenant_id, at_admin_approval.id, users["admin"].id,
            )
        result = workflow_service.update_probability(tenant_id, at_admin_approval.id, 100, actors["sales"])
        assert result.crossed == (MilestoneName.ORDER_CREATION,)

    def test_admin_creates_order_and_confirms_reservation(
        self, db, workflow_service, tenant_id, at_admin_approval, actors, users,
    ):
        result = workflow_service.update_probability(tenant_id, at_admin_approval.id, 100, actors["admin"])

        assert result.status == "won"
        (order_id,) = result.created(ActionKind.CREATE_ORDER)
        with db() as session:
            order = session.get(Order, order_id)
            assert order.status == "draft"
            assert order.campaign_id == at_admin_approval.id
            assert order.total_amount == Decimal("1700")
            assert len(order.items) == 3

            assert session.scalars(select(Reservation.status)).all() == ["confirmed"]
            won = set(
                session.scalars(select(Notification.user_id).where(Notification.type == "campaign_won"))
            )
        assert won == {users["sales"].id, users["admin"].id, users["master"].id}

    def test_approve_campaign_advances_to_order(
        self, db, workflow_service, tenant_id, at_admin_approval, actors, users,
    ):
        result = workflow_service.approve_campaign(tenant_id, at_admin_approval.id, actors["master"])

        assert result.old_probability == 90
        assert result.new_probability == 100
        assert len(result.created(ActionKind.CREATE_ORDER)) == 1
        with db() as session:
            approval = session.scalars(select(CampaignApproval)).one()
            assert approval.status == "approved"
            assert approval.decided_by_id == users["master"].id

    def test_approve_requires_approval_role(self, workflow_service, tenant_id, at_admin_approval, actors):
        with pytest.raises(UnauthorizedTransitionError):
            workflow_service.approve_campaign(tenant_id, at_admin_approval.id, actors["sales"])

    def test_approve_outside_admin_band(self, workflow_service, tenant_id, at_talent_approval, actors):
        with pytest.raises(InvalidTransitionError):
            workflow_service.approve_campaign(tenant_id, at_talent_approval.id, actors["admin"])


# =========================================================================
# 4. Rejection
# =========================================================================


class TestRejection:
    def test_reject_returns_to_fallback(self, db, workflow_service, tenant_id, at_admin_approval, actors, users):
        result = workflow_service.reject_campaign(
            tenant_id, at_admin_approval.id, actors["admin"], reason="rates too low",
        )

        assert result.probability == 65
        assert result.status == "talent_review"
        assert len(result.released_reservations) == 1
        assert result.cleared_notifications == 2
        assert result.evaluation.matched_rules == ("campaign_rejected",)

        with db() as session:
            campaign = session.get(Campaign, at_admin_approval.id)
            assert campaign.reservation_id is None
            assert session.scalars(select(Reservation.status)).all() == ["released"]
            approval = session.scalars(select(CampaignApproval)).one()
            assert approval.status == "rejected"
            assert approval.decision_reason == "rates too low"
            notice = session.scalars(
                select(Notification).where(Notification.type == "campaign_rejected")
            ).one()
            assert notice.user_id == users["sales"].id
            assert "rates too low" in notice.message
        assert _ledger(db, at_admin_approval.id) == {"pre_sale_active", "schedule_valid", "talent_approval"}

    def test_rejected_campaign_can_cross_again(self, db, workflow_service, tenant_id, at_admin_approval, actors):
        workflow_service.reject_campaign(tenant_id, at_admin_approval.id, actors["admin"])
        result = workflow_service.update_probability(tenant_id, at_admin_approval.id, 90, actors["admin"])

        assert result.crossed == (MilestoneName.ADMIN_APPROVAL,)
        assert _count(db, Reservation, status="held") == 1
        assert _count(db, CampaignApproval, status="pending") == 1

    def test_reject_requires_approval_role(self, workflow_service, tenant_id, at_admin_approval, actors):
        with pytest.raises(UnauthorizedTransitionError):
            workflow_service.reject_campaign(tenant_id, at_admin_approval.id, actors["sales"])

    def test_reject_outside_admin_band(self, db, workflow_service, tenant_id, at_talent_approval, actors):
        with pytest.raises(InvalidTransitionError):
            workflow_service.reject_campaign(tenant_id, at_talent_approval.id, actors["admin"])
        assert _campaign(db, at_talent_approval.id).probability == 65


# =========================================================================
# 5. Input validation and tenancy
# =========================================================================


class TestValidation:
    @pytest.mark.parametrize("value", [-1, 101, 50.5, True, "50", None])
    def test_invalid_probability(self, workflow_service, tenant_id, scheduled_campaign, actors, value):
        with pytest.raises(InvalidProbabilityError):
            workflow_service.update_probability(tenant_id, scheduled_campaign.id, value, actors["sales"])

    def test_other_tenant_cannot_see_campaign(self, db, workflow_service, scheduled_campaign, actors):
        with pytest.raises(EntityNotFoundError):
            workflow_service.update_probability(uuid4(), scheduled_campaign.id, 10, actors["sales"])
        assert _campaign(db, scheduled_campaign.id).probability == 0

    def test_config_change_applies_to_next_transition(
        self, db, workflow_service, registry, tenant_id, scheduled_campaign, actors,
    ):
        registry.set_override(tenant_id, {"thresholds": {"pre_sale_active": 20}})
        assert workflow_service.update_probability(
            tenant_id, scheduled_campaign.id, 15, actors["sales"],
        ).crossed == ()
        assert workflow_service.update_probability(
            tenant_id, scheduled_campaign.id, 20, actors["sales"],
        ).crossed == (MilestoneName.PRE_SALE_ACTIVE,)


# =========================================================================
# 6. Inbound transitions
# =========================================================================


class TestEvaluateTransition:
    @pytest.fixture
    def transition(self, tenant_id, actors):
        def _make(entity_id, previous_state, new_state, entity_type=EntityType.ORDER):
            return WorkflowContext.for_actor(
                entity_id=entity_id,
                entity_type=entity_type,
                previous_state=previous_state,
                new_state=new_state,
                actor=actors["admin"],
                tenant_id=tenant_id,
            )
        return _make

    def test_campaign_context_takes_milestone_path(self, workflow_service, tenant_id, scheduled_campaign, actors):
        context = WorkflowContext.for_actor(
            entity_id=scheduled_campaign.id,
            entity_type=EntityType.CAMPAIGN,
            previous_state="prospect",
            new_state="pre_sale_active",
            actor=actors["sales"],
            tenant_id=tenant_id,
            metadata={"old_probability": 0, "new_probability": 10},
        )
        result = workflow_service.evaluate_transition(context)
        assert result.crossed == (MilestoneName.PRE_SALE_ACTIVE,)

    def test_order_approved_creates_contract(
        self, db, workflow_service, seed, hosted_show, users, transition,
    ):
        order = seed.order(hosted_show, created_by=users["sales"], status="approved")
        result = workflow_service.evaluate_transition(transition(order.id, "pending_approval", "approved"))

        assert isinstance(result, EvaluationResult)
        (contract_id,) = result.created(ActionKind.CREATE_CONTRACT)
        with db() as session:
            contract = session.get(Contract, contract_id)
            assert contract.order_id == order.id
            assert contract.status == "draft"
            assert contract.total_amount == Decimal("500")
        assert _count(db, Notification, type="contract_created") == 3

    def test_order_booked_assigns_creative_brief(
        self, db, workflow_service, deterministic_clock, seed, hosted_show, users, transition,
    ):
        order = seed.order(hosted_show, created_by=users["sales"])
        workflow_service.evaluate_transition(transition(order.id, "approved", "booked"))
        again = workflow_service.evaluate_transition(transition(order.id, "approved", "booked"))

        assert again.results[0].status is ActionStatus.SKIPPED
        with db() as session:
            task = session.scalars(select(Task)).one()
            assert task.assigned_to_id == users["producer"].id
            assert task.task_type == "creative_brief"
            assert task.priority == "high"
            assert task.due_date == deterministic_clock.now() + timedelta(days=3)
        assert _count(db, Notification, type="task_assigned", user_id=users["producer"].id) == 1

    def test_order_confirmed_invoices(self, db, workflow_service, seed, hosted_show, users, transition):
        order = seed.order(hosted_show, created_by=users["sales"], status="confirmed")
        result = workflow_service.evaluate_transition(transition(order.id, "booked", "confirmed"))

        (invoice_id,) = result.created(ActionKind.CREATE_INVOICE)
        with db() as session:
            invoice = session.get(Invoice, invoice_id)
            assert invoice.invoice_number == "INV-202503-0001"
            assert invoice.payment_terms == "Net 30"

    def test_contract_signed_readies_order_when_all_signed(
        self, db, workflow_service, seed, hosted_show, users, transition,
    ):
        order = seed.order(hosted_show, created_by=users["sales"])
        signed = seed.contract(order, status="signed")
        pending = seed.contract(order, status="sent")

        first = workflow_service.evaluate_transition(
            transition(signed.id, "sent", "signed", EntityType.CONTRACT),
        )
        assert first.results[0].status is ActionStatus.SKIPPED
        assert _order_status(db, order.id) == "booked"

        with db() as session:
            session.get(Contract, pending.id).status = "signed"
        workflow_service.evaluate_transition(
            transition(pending.id, "sent", "signed", EntityType.CONTRACT),
        )
        assert _order_status(db, order.id) == "ready_for_production"

    def test_episode_rule_inactive_by_default(self, workflow_service, seed, hosted_show, transition):
        episode = seed.episode(hosted_show)
        seed.order(hosted_show, items=[{"episode": episode}])
        result = workflow_service.evaluate_transition(
            transition(episode.id, "scheduled", "aired", EntityType.EPISODE),
        )
        assert result.matched_rules == ()

    def test_episode_aired_invoices_when_enabled(
        self, db, workflow_service, registry, tenant_id, seed, hosted_show, transition,
    ):
        registry.set_override(tenant_id, {"rules": {"enabled": ["episode_aired_delivery_invoice"]}})
        episode = seed.episode(hosted_show)
        seed.order(hosted_show, items=[{"episode": episode, "rate": Decimal("250")}])

        result = workflow_service.evaluate_transition(
            transition(episode.id, "scheduled", "aired", EntityType.EPISODE),
        )
        assert result.context.metadata["has_active_orders"] is True
        (invoice_id,) = result.created(ActionKind.CREATE_INVOICE)
        with db() as session:
            assert session.get(Invoice, invoice_id).episode_id == episode.id

        again = workflow_service.evaluate_transition(
            transition(episode.id, "scheduled", "aired", EntityType.EPISODE),
        )
        assert again.matched_rules == ()


def _order_status(db, order_id):
    with db() as session:
        return session.get(Order, order_id).status

"""
End-to-end: a campaign from prospect to a production-ready, invoiced order.

The campaign climbs the probability ladder through the public service,
talent signs off, an admin approves, and the resulting order moves through
its post-sale states.  Each order or contract status change is persisted
first and then handed to ``evaluate_transition``, the way a mutation
handler does it.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from campaign_kernel.domain.context import EntityType, WorkflowContext
from campaign_kernel.domain.rules import ActionKind
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
from campaign_services.approval_service import ApprovalService


@pytest.fixture
def move(db, workflow_service, tenant_id, actors):
    """Persist a status change, then evaluate it as a workflow transition."""

    def _move(model, entity_type, entity_id, new_status):
        with db() as session:
            row = session.get(model, entity_id)
            previous = row.status
            row.status = new_status
        context = WorkflowContext.for_actor(
            entity_id=entity_id,
            entity_type=entity_type,
            previous_state=previous,
            new_state=new_status,
            actor=actors["admin"],
            tenant_id=tenant_id,
        )
        return workflow_service.evaluate_transition(context)

    return _move


def test_campaign_to_production(
    db, workflow_service, deterministic_clock, tenant_id, scheduled_campaign, actors, users, delivery, move,
):
    campaign_id = scheduled_campaign.id

    # Pre-sale through talent review
    for probability in (10, 35, 65):
        result = workflow_service.update_probability(tenant_id, campaign_id, probability, actors["sales"])
        assert result.success
    with db() as session:
        request = session.scalars(select(TalentApprovalRequest)).one()
        assert request.talent_id == users["talent"].id
    with db() as session:
        ApprovalService(session, deterministic_clock).respond_to_talent_request(
            tenant_id, request.id, approved=True,
        )

    # Admin approval: reservation held and approval requested
    result = workflow_service.update_probability(tenant_id, campaign_id, 90, actors["sales"])
    assert result.status == "pending_approval"
    assert len(result.created(ActionKind.CREATE_RESERVATION)) == 1
    assert len(result.created(ActionKind.CREATE_ADMIN_APPROVAL)) == 1

    # Approval advances to order creation
    result = workflow_service.approve_campaign(tenant_id, campaign_id, actors["admin"])
    assert result.new_probability == 100
    assert result.status == "won"
    (order_id,) = result.created(ActionKind.CREATE_ORDER)

    with db() as session:
        campaign = session.get(Campaign, campaign_id)
        assert campaign.schedule_builder_enabled
        assert campaign.schedule_validated
        ledger = set(session.scalars(select(CampaignMilestone.milestone)))
        assert ledger == {
            "pre_sale_active", "schedule_valid", "talent_approval", "admin_approval", "order_creation",
        }
        assert session.scalars(select(Reservation.status)).all() == ["confirmed"]
        assert session.get(Order, order_id).status == "draft"

    # Post-sale: contract, creative task, invoice
    move(Order, EntityType.ORDER, order_id, "pending_approval")
    evaluation = move(Order, EntityType.ORDER, order_id, "approved")
    (contract_id,) = evaluation.created(ActionKind.CREATE_CONTRACT)

    evaluation = move(Order, EntityType.ORDER, order_id, "booked")
    (task_id,) = evaluation.created(ActionKind.ASSIGN_TASK)

    evaluation = move(Order, EntityType.ORDER, order_id, "confirmed")
    (invoice_id,) = evaluation.created(ActionKind.CREATE_INVOICE)

    with db() as session:
        task = session.get(Task, task_id)
        assert task.assigned_to_id == users["producer"].id
        assert task.task_type == "creative_brief"

        invoice = session.get(Invoice, invoice_id)
        assert invoice.invoice_number == "INV-202503-0001"
        assert invoice.total_amount == Decimal("1700")
        assert invoice.payment_terms == "Net 30"

    # Signing the only contract makes the order production-ready
    evaluation = move(Contract, EntityType.CONTRACT, contract_id, "signed")
    assert evaluation.success
    with db() as session:
        assert session.get(Order, order_id).status == "ready_for_production"
        notification_types = set(session.scalars(select(Notification.type)))

    assert {
        "talent_approval_required",
        "admin_approval_required",
        "campaign_won",
        "contract_created",
        "task_assigned",
        "invoice_created",
        "contract_signed",
    } <= notification_types
    assert delivery.delivered


def test_single_jump_crosses_four_milestones(db, workflow_service, seed, tenant_id, users, actors):
    show_a = seed.show(name="Show A", talent=users["talent"])
    show_b = seed.show(name="Show B", talent=users["talent"])
    campaign = seed.campaign(created_by=users["sales"], budget=Decimal("20000"))
    seed.spot(campaign, show_a, spot_type="host_read", rate=Decimal("600"))
    seed.spot(campaign, show_b, spot_type="host_read", rate=Decimal("600"))

    result = workflow_service.update_probability(tenant_id, campaign.id, 92, actors["sales"])

    assert [m.value for m in result.crossed] == [
        "pre_sale_active", "schedule_valid", "talent_approval", "admin_approval",
    ]
    assert result.success
    with db() as session:
        assert session.get(Campaign, campaign.id).schedule_builder_enabled
        requests = session.scalars(select(TalentApprovalRequest)).all()
        assert {(r.show_id, r.talent_id) for r in requests} == {
            (show_a.id, users["talent"].id), (show_b.id, users["talent"].id),
        }
        (reservation,) = session.scalars(select(Reservation)).all()
        assert reservation.status == "held"
        assert {item.show_id for item in reservation.items} == {show_a.id, show_b.id}
        assert session.scalar(select(func.count()).select_from(CampaignApproval)) == 1
        approval_notices = session.scalars(
            select(Notification).where(Notification.type == "admin_approval_required")
        ).all()
        assert approval_notices
        assert all("rate_card_variance" in n.payload for n in approval_notices)

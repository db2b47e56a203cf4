"""
campaign_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines: the campaign state
    machine, the workflow engine, the nine action executors and the domain
    services they delegate to.  This is the only layer that holds database
    sessions, entity locks or wall-clock time.

Architecture position:
    Services -- imperative shell over engines + config + kernel.

        campaign_services/ -> campaign_engines/  (allowed)
        campaign_services/ -> campaign_config/   (allowed)
        campaign_services/ -> campaign_kernel/   (allowed)
        campaign_engines/  -> campaign_services/ (FORBIDDEN)
        campaign_kernel/   -> campaign_services/ (FORBIDDEN)
"""

from campaign_kernel.logging_config import get_logger

logger = get_logger("services")

from campaign_services.action_executors import (
    ActionDispatcher,
    ActionExecutors,
    ActionResult,
    ActionStatus,
)
from campaign_services.approval_service import ApprovalService
from campaign_services.billing_service import BillingService, PrebillCheck
from campaign_services.campaign_workflow import (
    CampaignWorkflowService,
    RejectionResult,
    TransitionResult,
)
from campaign_services.entity_lock import EntityLockRegistry, hold_for_transaction
from campaign_services.notification_service import NotificationDelivery, NotificationService
from campaign_services.order_service import OrderService
from campaign_services.reservation_service import ReservationService
from campaign_services.task_service import TaskService
from campaign_services.telemetry import ActiveWorkflow, WorkflowMetrics, WorkflowTelemetry
from campaign_services.workflow_engine import EvaluationResult, WorkflowEngine

__all__ = [
    "ActionDispatcher",
    "ActionExecutors",
    "ActionResult",
    "ActionStatus",
    "ActiveWorkflow",
    "ApprovalService",
    "BillingService",
    "CampaignWorkflowService",
    "EntityLockRegistry",
    "EvaluationResult",
    "NotificationDelivery",
    "NotificationService",
    "OrderService",
    "PrebillCheck",
    "RejectionResult",
    "ReservationService",
    "TaskService",
    "TransitionResult",
    "WorkflowEngine",
    "WorkflowMetrics",
    "WorkflowTelemetry",
    "hold_for_transaction",
]

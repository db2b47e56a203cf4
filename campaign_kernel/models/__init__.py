"""ORM models for the campaign workflow engine."""

from campaign_kernel.models.approval import (
    CampaignApproval,
    CampaignApprovalStatus,
    TalentApprovalRequest,
    TalentApprovalStatus,
)
from campaign_kernel.models.campaign import (
    Campaign,
    CampaignMilestone,
    PlacementType,
    ScheduledSpot,
    SpotType,
)
from campaign_kernel.models.contract import Contract, ContractLineItem, ContractStatus
from campaign_kernel.models.directory import Episode, EpisodeStatus, Show, User, UserRole
from campaign_kernel.models.invoice import (
    Invoice,
    InvoiceItem,
    InvoiceSchedule,
    InvoiceStatus,
    PreBillAdvertiser,
    ScheduleType,
)
from campaign_kernel.models.notification import (
    OPEN_TASK_STATUSES,
    Notification,
    Task,
    TaskPriority,
    TaskStatus,
)
from campaign_kernel.models.order import Order, OrderItem, OrderStatus
from campaign_kernel.models.reservation import (
    Reservation,
    ReservationItem,
    ReservationStatus,
)
from campaign_kernel.models.settings import TenantWorkflowSetting


def import_all_models() -> None:
    """No-op hook: importing this package registers every table on Base.metadata."""


__all__ = [
    "Campaign",
    "CampaignApproval",
    "CampaignApprovalStatus",
    "CampaignMilestone",
    "Contract",
    "ContractLineItem",
    "ContractStatus",
    "Episode",
    "EpisodeStatus",
    "Invoice",
    "InvoiceItem",
    "InvoiceSchedule",
    "InvoiceStatus",
    "Notification",
    "OPEN_TASK_STATUSES",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PlacementType",
    "PreBillAdvertiser",
    "Reservation",
    "ReservationItem",
    "ReservationStatus",
    "ScheduleType",
    "ScheduledSpot",
    "Show",
    "SpotType",
    "TalentApprovalRequest",
    "TalentApprovalStatus",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TenantWorkflowSetting",
    "User",
    "UserRole",
    "import_all_models",
]

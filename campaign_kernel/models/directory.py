"""
Module: campaign_kernel.models.directory
Responsibility: Reference records the workflow engine reads but never writes:
    users (recipient resolution, task assignment), shows and episodes
    (talent lookup, delivery invoicing).
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from campaign_kernel.db.base import TenantBase, UUIDString


class UserRole(str, Enum):
    MASTER = "master"
    ADMIN = "admin"
    SALES = "sales"
    PRODUCER = "producer"
    TALENT = "talent"
    CLIENT = "client"


class User(TenantBase):
    __tablename__ = "users"

    __table_args__ = (
        Index("idx_user_org_role", "organization_id", "role"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Show(TenantBase):
    __tablename__ = "shows"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    talent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
        doc="Host whose approval is needed for host-read and endorsement spots",
    )
    default_rate: Mapped[Decimal | None] = mapped_column(nullable=True)


class EpisodeStatus(str, Enum):
    SCHEDULED = "scheduled"
    AIRED = "aired"


class Episode(TenantBase):
    __tablename__ = "episodes"

    show_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shows.id"), nullable=False, index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    air_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EpisodeStatus.SCHEDULED.value,
    )

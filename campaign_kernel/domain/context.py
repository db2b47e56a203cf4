"""
WorkflowContext -- the ephemeral record of one transition.

Created once per transition and passed by reference through the rule
matcher and every action executor.  Never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any
from uuid import UUID


class EntityType(str, Enum):
    """Entity types a transition can originate from."""

    CAMPAIGN = "campaign"
    ORDER = "order"
    CONTRACT = "contract"
    APPROVAL = "approval"
    EPISODE = "episode"


@dataclass(frozen=True)
class Actor:
    """The user performing a mutation."""

    id: UUID
    role: str


@dataclass(frozen=True)
class WorkflowContext:
    """
    One entity transition.

    ``metadata`` is the free-form bag rule conditions are evaluated against.
    """

    entity_id: UUID
    entity_type: EntityType
    previous_state: str | None
    new_state: str
    actor_id: UUID
    actor_role: str
    tenant_id: UUID
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_actor(
        cls,
        *,
        entity_id: UUID,
        entity_type: EntityType | str,
        previous_state: str | None,
        new_state: str,
        actor: Actor,
        tenant_id: UUID,
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowContext:
        return cls(
            entity_id=entity_id,
            entity_type=EntityType(entity_type),
            previous_state=previous_state,
            new_state=new_state,
            actor_id=actor.id,
            actor_role=actor.role,
            tenant_id=tenant_id,
            metadata=dict(metadata or {}),
        )

    @property
    def actor(self) -> Actor:
        return Actor(self.actor_id, self.actor_role)

    def transition(self, previous_state: str | None, new_state: str, **metadata: Any) -> WorkflowContext:
        """Copy of this context for another state change of the same entity."""
        return replace(
            self,
            previous_state=previous_state,
            new_state=new_state,
            metadata={**self.metadata, **metadata},
        )

    @property
    def label(self) -> str:
        return f"{self.entity_type.value}:{self.previous_state or '*'}->{self.new_state}"

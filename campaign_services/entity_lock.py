"""
campaign_services.entity_lock -- per-entity serialization.

Responsibility:
    At most one in-flight workflow evaluation per (tenant, entity).  A
    campaign's lock is held across read, crossing computation, action
    execution and commit, so two concurrent probability updates can never
    both observe the old probability and both fire the same milestone.

Architecture position:
    Services layer.  Process-local: a multi-process deployment also relies
    on the row locks (SELECT ... FOR UPDATE) taken by the services.

Invariants enforced:
    - One re-entrant lock per key; the same thread may nest holds.
    - Locks are reference counted and discarded when idle, so the registry
      does not grow with the number of entities ever touched.
    - ``hold_for_transaction`` releases only when the outermost session
      transaction ends (commit or rollback), never at a savepoint.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from campaign_kernel.exceptions import EntityLockTimeoutError
from campaign_kernel.logging_config import get_logger

logger = get_logger("services.entity_lock")

_HELD_KEY = "campaign_entity_locks"
_LISTENER_KEY = "campaign_entity_lock_listener"


@dataclass
class _Entry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    refs: int = 0


class EntityLockRegistry:
    """
    Registry of per-entity re-entrant locks.

    Args:
        default_timeout: Seconds to wait when ``hold`` is given no timeout.
            None waits indefinitely.
    """

    def __init__(self, default_timeout: float | None = 30.0):
        self._default_timeout = default_timeout
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @staticmethod
    def key_for(tenant_id: UUID | str, entity_id: UUID | str) -> str:
        return f"{tenant_id}:{entity_id}"

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(
        self,
        tenant_id: UUID | str,
        entity_id: UUID | str,
        timeout: float | None = None,
    ) -> Iterator[str]:
        """
        Hold the lock for ``(tenant_id, entity_id)``.

        Raises:
            EntityLockTimeoutError: the lock was not acquired within timeout.
        """
        key = self.key_for(tenant_id, entity_id)
        wait = self._default_timeout if timeout is None else timeout

        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.refs += 1

        acquired = False
        try:
            acquired = entry.lock.acquire(timeout=-1 if wait is None else wait)
            if not acquired:
                logger.warning(
                    "entity_lock_timeout",
                    extra={"lock_key": key, "timeout_seconds": wait},
                )
                raise EntityLockTimeoutError(key, wait)
            yield key
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.refs -= 1
                if entry.refs == 0:
                    self._entries.pop(key, None)


def hold_for_transaction(
    session: Session,
    registry: EntityLockRegistry,
    tenant_id: UUID | str,
    entity_id: UUID | str,
    timeout: float | None = None,
) -> None:
    """
    Acquire a lock that is released when ``session``'s transaction ends.

    Used where a value computed from a scan (an invoice sequence) must stay
    reserved until the rows that consume it are committed.
    """
    held: dict[str, AbstractContextManager] = session.info.setdefault(_HELD_KEY, {})
    key = registry.key_for(tenant_id, entity_id)
    if key in held:
        return

    manager = registry.hold(tenant_id, entity_id, timeout)
    manager.__enter__()
    held[key] = manager

    if not session.info.get(_LISTENER_KEY):
        event.listen(session, "after_transaction_end", _release_transaction_locks)
        session.info[_LISTENER_KEY] = True


def _release_transaction_locks(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is not None:
        return
    held = session.info.pop(_HELD_KEY, {})
    for manager in reversed(list(held.values())):
        manager.__exit__(None, None, None)

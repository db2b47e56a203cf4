"""Tests for per-entity serialization."""

import threading
import time
from uuid import uuid4

import pytest

from campaign_kernel.exceptions import EntityLockTimeoutError
from campaign_services.entity_lock import EntityLockRegistry, hold_for_transaction

TENANT = uuid4()


class TestHold:
    def test_same_thread_may_nest(self):
        locks = EntityLockRegistry()
        entity = uuid4()
        with locks.hold(TENANT, entity):
            with locks.hold(TENANT, entity) as key:
                assert key == f"{TENANT}:{entity}"

    def test_idle_locks_are_discarded(self):
        locks = EntityLockRegistry()
        with locks.hold(TENANT, uuid4()):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_other_thread_times_out(self, captured_logs):
        locks = EntityLockRegistry()
        entity = uuid4()
        errors: list[Exception] = []

        def contender():
            try:
                with locks.hold(TENANT, entity, timeout=0.05):
                    pass
            except EntityLockTimeoutError as exc:
                errors.append(exc)

        with locks.hold(TENANT, entity):
            thread = threading.Thread(target=contender)
            thread.start()
            thread.join()

        assert len(errors) == 1
        assert errors[0].timeout == 0.05
        assert "entity_lock_timeout" in [r["message"] for r in captured_logs()]
        assert len(locks) == 0

    def test_distinct_entities_do_not_block(self):
        locks = EntityLockRegistry(default_timeout=0.05)
        acquired = threading.Event()

        def other():
            with locks.hold(TENANT, uuid4()):
                acquired.set()

        with locks.hold(TENANT, uuid4()):
            thread = threading.Thread(target=other)
            thread.start()
            thread.join()
        assert acquired.is_set()

    def test_same_entity_in_other_tenant_does_not_block(self):
        locks = EntityLockRegistry(default_timeout=0.05)
        entity = uuid4()
        done = threading.Event()

        def other_tenant():
            with locks.hold(uuid4(), entity):
                done.set()

        with locks.hold(TENANT, entity):
            thread = threading.Thread(target=other_tenant)
            thread.start()
            thread.join()
        assert done.is_set()

    def test_holds_are_serialized(self):
        locks = EntityLockRegistry()
        entity = uuid4()
        inside = 0
        max_inside = 0
        guard = threading.Lock()
        barrier = threading.Barrier(6)

        def worker():
            nonlocal inside, max_inside
            barrier.wait()
            with locks.hold(TENANT, entity):
                with guard:
                    inside += 1
                    max_inside = max(max_inside, inside)
                time.sleep(0.005)
                with guard:
                    inside -= 1

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert max_inside == 1


class TestHoldForTransaction:
    @pytest.fixture
    def locks(self):
        return EntityLockRegistry(default_timeout=0.05)

    def _blocked(self, locks, entity) -> bool:
        result: list[bool] = []

        def probe():
            try:
                with locks.hold(TENANT, entity):
                    result.append(False)
            except EntityLockTimeoutError:
                result.append(True)

        thread = threading.Thread(target=probe)
        thread.start()
        thread.join()
        return result[0]

    def test_released_at_commit(self, session_factory, locks):
        entity = "invoice-number:INV"
        session = session_factory()
        try:
            session.begin()
            hold_for_transaction(session, locks, TENANT, entity)
            assert self._blocked(locks, entity)
            session.commit()
            assert not self._blocked(locks, entity)
        finally:
            session.close()

    def test_released_at_rollback(self, session_factory, locks):
        entity = "invoice-number:INV"
        session = session_factory()
        try:
            session.begin()
            hold_for_transaction(session, locks, TENANT, entity)
            session.rollback()
            assert not self._blocked(locks, entity)
        finally:
            session.close()

    def test_savepoint_does_not_release(self, session_factory, locks):
        entity = "invoice-number:INV"
        session = session_factory()
        try:
            session.begin()
            with session.begin_nested():
                hold_for_transaction(session, locks, TENANT, entity)
            assert self._blocked(locks, entity)
            session.commit()
            assert not self._blocked(locks, entity)
        finally:
            session.close()

    def test_repeat_hold_is_noop(self, session_factory, locks):
        entity = "invoice-number:INV"
        session = session_factory()
        try:
            session.begin()
            hold_for_transaction(session, locks, TENANT, entity)
            hold_for_transaction(session, locks, TENANT, entity)
            session.commit()
            assert len(locks) == 0
        finally:
            session.close()

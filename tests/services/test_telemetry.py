"""Tests for workflow telemetry: metrics, active tracking, structured logs."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from campaign_services.telemetry import WorkflowTelemetry
from tests.conftest import messages


class FakeTime:
    def __init__(self, start: float = 1_741_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def tracker(fake_time):
    return WorkflowTelemetry(time_source=fake_time)


class TestMetrics:
    def test_unseen_type_has_zero_metrics(self, tracker):
        metrics = tracker.get_metrics("campaign.admin_approval")
        assert metrics.total_executions == 0
        assert metrics.error_rate == 0.0
        assert metrics.last_execution_time is None

    def test_success_and_failure_counts(self, tracker, fake_time):
        for index, success in enumerate([True, True, False, True]):
            start = tracker.start_workflow(f"run-{index}", "order.approved")
            fake_time.advance(10)
            tracker.end_workflow(f"run-{index}", "order.approved", start, success=success)

        metrics = tracker.get_metrics("order.approved")
        assert metrics.total_executions == 4
        assert metrics.successful_executions == 3
        assert metrics.failed_executions == 1
        assert metrics.error_rate == 0.25
        assert metrics.active_workflows == 0

    def test_average_duration_is_incremental_mean(self, tracker, fake_time):
        for index, duration in enumerate([10, 20, 60]):
            start = tracker.start_workflow(f"run-{index}", "campaign.order_creation")
            fake_time.advance(duration)
            tracker.end_workflow(f"run-{index}", "campaign.order_creation", start, success=True)
        assert tracker.get_metrics("campaign.order_creation").average_duration_ms == pytest.approx(30.0)

    def test_error_does_not_count_as_failure(self, tracker):
        start = tracker.start_workflow("run-1", "contract.signed")
        tracker.error("run-1", "contract.signed", RuntimeError("boom"))
        tracker.end_workflow("run-1", "contract.signed", start, success=True)
        metrics = tracker.get_metrics("contract.signed")
        assert metrics.failed_executions == 0
        assert metrics.successful_executions == 1

    def test_all_metrics_keyed_by_type(self, tracker):
        start = tracker.start_workflow("a", "order.booked")
        tracker.end_workflow("a", "order.booked", start, success=True)
        tracker.start_workflow("b", "episode.aired")
        all_metrics = tracker.get_metrics()
        assert sorted(all_metrics) == ["episode.aired", "order.booked"]
        assert all_metrics["episode.aired"].active_workflows == 1

    def test_reset_clears_everything(self, tracker):
        tracker.start_workflow("a", "order.booked")
        tracker.reset()
        assert tracker.get_metrics() == {}
        assert tracker.active_workflows() == []


class TestActiveWorkflows:
    def test_in_flight_until_ended(self, tracker, fake_time):
        start = tracker.start_workflow("run-1", "campaign.talent_approval", {"entity_id": "c-1"})
        fake_time.advance(250)
        (active,) = tracker.active_workflows()
        assert active.id == "run-1"
        assert active.elapsed_ms == 250
        assert active.metadata == {"entity_id": "c-1"}

        tracker.end_workflow("run-1", "campaign.talent_approval", start, success=True)
        assert tracker.active_workflows() == []

    def test_find_stuck(self, tracker, fake_time):
        tracker.start_workflow("old", "campaign.admin_approval")
        fake_time.advance(5_000)
        tracker.start_workflow("new", "campaign.admin_approval")
        fake_time.advance(100)
        assert [w.id for w in tracker.find_stuck(1_000)] == ["old"]


class TestConcurrency:
    def test_parallel_updates_are_not_lost(self):
        tracker = WorkflowTelemetry()
        barrier = threading.Barrier(8)

        def worker(worker_id: int) -> None:
            barrier.wait()
            for i in range(250):
                run_id = f"{worker_id}-{i}"
                start = tracker.start_workflow(run_id, "order.confirmed")
                tracker.end_workflow(run_id, "order.confirmed", start, success=i % 5 != 0)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, range(8)))

        metrics = tracker.get_metrics("order.confirmed")
        assert metrics.total_executions == 2000
        assert metrics.failed_executions == 400
        assert metrics.active_workflows == 0


class TestLogging:
    def test_lifecycle_events_logged(self, tracker, captured_logs):
        start = tracker.start_workflow("run-1", "order.approved")
        tracker.error("run-1", "order.approved", ValueError("bad config"))
        tracker.end_workflow("run-1", "order.approved", start, success=False)

        records = captured_logs()
        assert messages(records) == ["workflow_started", "workflow_error", "workflow_failed"]
        error = records[1]
        assert error["workflow_run_id"] == "run-1"
        assert error["error_type"] == "ValueError"
        assert records[2]["level"] == "WARNING"

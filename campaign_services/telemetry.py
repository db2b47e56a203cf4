"""
campaign_services.telemetry -- workflow telemetry.

Responsibility:
    Structured start/end/error logging per workflow instance, in-memory
    tracking of in-flight workflows, and per-workflow-type metrics
    (executions, successes, failures, incremental mean duration, error rate).

Architecture position:
    Services layer.  Process-local, in-memory; nothing survives a restart.

Invariants enforced:
    - One lock guards the metrics table and the active map, so concurrent
      evaluations never lose an update.
    - ``error()`` only logs.  Success or failure is decided by
      ``end_workflow()`` alone.

Usage:
    start = telemetry.start_workflow(run_id, "campaign.admin_approval")
    try:
        ...
        telemetry.end_workflow(run_id, "campaign.admin_approval", start, success=True)
    except Exception as exc:
        telemetry.error(run_id, "campaign.admin_approval", exc)
        telemetry.end_workflow(run_id, "campaign.admin_approval", start, success=False)
        raise
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from campaign_kernel.logging_config import get_logger

logger = get_logger("services.telemetry")

EVENT_WORKFLOW_STARTED = "workflow_started"
EVENT_WORKFLOW_COMPLETED = "workflow_completed"
EVENT_WORKFLOW_FAILED = "workflow_failed"
EVENT_WORKFLOW_ERROR = "workflow_error"


@dataclass(frozen=True)
class WorkflowMetrics:
    workflow_type: str
    total_executions: int
    successful_executions: int
    failed_executions: int
    average_duration_ms: float
    error_rate: float
    last_execution_time: datetime | None
    active_workflows: int


@dataclass(frozen=True)
class ActiveWorkflow:
    id: str
    workflow_type: str
    start_time: float
    elapsed_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class _TypeStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    average_duration_ms: float = 0.0
    last_execution_ms: float | None = None


@dataclass
class _Active:
    workflow_type: str
    start_time: float
    metadata: dict[str, Any]


class WorkflowTelemetry:
    """
    Thread-safe workflow metrics and active-workflow tracker.

    ``time_source`` returns epoch milliseconds; tests inject a fake.
    """

    def __init__(self, time_source: Callable[[], float] | None = None):
        self._now_ms = time_source or (lambda: time.time() * 1000.0)
        self._lock = threading.Lock()
        self._stats: dict[str, _TypeStats] = {}
        self._active: dict[str, _Active] = {}

    def start_workflow(
        self,
        workflow_id: str,
        workflow_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> float:
        """Register an in-flight workflow and return its start time (ms)."""
        start = self._now_ms()
        with self._lock:
            self._active[workflow_id] = _Active(workflow_type, start, dict(metadata or {}))
        logger.info(
            EVENT_WORKFLOW_STARTED,
            extra={
                "workflow_run_id": workflow_id,
                "workflow_type": workflow_type,
                "workflow_metadata": metadata or {},
            },
        )
        return start

    def end_workflow(
        self,
        workflow_id: str,
        workflow_type: str,
        start_time: float,
        success: bool,
        metadata: dict[str, Any] | None = None,
    ) -> float:
        """Record the outcome; returns the duration in ms."""
        end = self._now_ms()
        duration = max(0.0, end - start_time)
        with self._lock:
            stats = self._stats.setdefault(workflow_type, _TypeStats())
            stats.total += 1
            if success:
                stats.successful += 1
            else:
                stats.failed += 1
            # Incremental mean
            stats.average_duration_ms += (duration - stats.average_duration_ms) / stats.total
            stats.last_execution_ms = end
            self._active.pop(workflow_id, None)

        logger.log(
            logging.INFO if success else logging.WARNING,
            EVENT_WORKFLOW_COMPLETED if success else EVENT_WORKFLOW_FAILED,
            extra={
                "workflow_run_id": workflow_id,
                "workflow_type": workflow_type,
                "duration_ms": round(duration, 3),
                "success": success,
                "workflow_metadata": metadata or {},
            },
        )
        return duration

    def error(
        self,
        workflow_id: str,
        workflow_type: str,
        err: BaseException | str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log an error for a workflow; does not touch success accounting."""
        logger.error(
            EVENT_WORKFLOW_ERROR,
            extra={
                "workflow_run_id": workflow_id,
                "workflow_type": workflow_type,
                "error": str(err),
                "error_type": type(err).__name__ if isinstance(err, BaseException) else None,
                "error_code": getattr(err, "code", None),
                "workflow_context": context or {},
            },
        )

    def active_workflows(self) -> list[ActiveWorkflow]:
        now = self._now_ms()
        with self._lock:
            return [
                ActiveWorkflow(
                    id=workflow_id,
                    workflow_type=active.workflow_type,
                    start_time=active.start_time,
                    elapsed_ms=now - active.start_time,
                    metadata=dict(active.metadata),
                )
                for workflow_id, active in self._active.items()
            ]

    def find_stuck(self, older_than_ms: float) -> list[ActiveWorkflow]:
        """In-flight workflows running for at least ``older_than_ms``."""
        return [w for w in self.active_workflows() if w.elapsed_ms >= older_than_ms]

    def get_metrics(self, workflow_type: str | None = None) -> WorkflowMetrics | dict[str, WorkflowMetrics]:
        """Metrics for one type, or for every type seen when ``workflow_type`` is None."""
        with self._lock:
            if workflow_type is not None:
                return self._snapshot(workflow_type)
            types = set(self._stats) | {a.workflow_type for a in self._active.values()}
            return {t: self._snapshot(t) for t in sorted(types)}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._active.clear()

    def _snapshot(self, workflow_type: str) -> WorkflowMetrics:
        # Caller holds self._lock.
        stats = self._stats.get(workflow_type, _TypeStats())
        active = sum(1 for a in self._active.values() if a.workflow_type == workflow_type)
        last = (
            datetime.fromtimestamp(stats.last_execution_ms / 1000.0, tz=timezone.utc)
            if stats.last_execution_ms is not None
            else None
        )
        return WorkflowMetrics(
            workflow_type=workflow_type,
            total_executions=stats.total,
            successful_executions=stats.successful,
            failed_executions=stats.failed,
            average_duration_ms=stats.average_duration_ms,
            error_rate=stats.failed / stats.total if stats.total else 0.0,
            last_execution_time=last,
            active_workflows=active,
        )

"""
campaign_services.workflow_engine -- rule evaluation with per-action isolation.

Responsibility:
    Given one ``WorkflowContext``, find the matching rules and execute their
    actions: rules in registration order, each fully before the next, and
    actions in declared order within a rule.

Architecture position:
    Services layer.  Rule matching is a pure engine call; execution goes
    through an ``ActionDispatcher``.

Invariants enforced:
    - Every action runs inside a SAVEPOINT.  A non-fatal failure rolls back
      only that action's writes, is logged as ``action_failed``, recorded as
      a failed ``ActionResult``, and execution continues.
    - A fatal action failure raises ``FatalActionError``; the caller's
      transaction rolls back, so the triggering change is not committed.
    - Notifications are never fatal.
    - Every evaluation and every action is wrapped in telemetry.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from campaign_engines.rule_matcher import match_rules
from campaign_kernel.domain.context import WorkflowContext
from campaign_kernel.domain.rules import ActionKind, ActionSpec, AutomationRule, RuleSet
from campaign_kernel.exceptions import FatalActionError
from campaign_kernel.logging_config import LogContext, get_logger
from campaign_services.action_executors import ActionDispatcher, ActionResult, ActionStatus
from campaign_services.telemetry import WorkflowTelemetry

logger = get_logger("services.workflow_engine")

TRACE_TYPE_RULE_EVALUATION = "RULE_EVALUATION"

OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial_failure"
OUTCOME_NO_RULES = "no_rules"
OUTCOME_FATAL = "fatal_failure"


@dataclass(frozen=True)
class EvaluationResult:
    run_id: str
    context: WorkflowContext
    matched_rules: tuple[str, ...]
    results: tuple[ActionResult, ...]

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def failed(self) -> tuple[ActionResult, ...]:
        return tuple(r for r in self.results if r.status is ActionStatus.FAILED)

    def created(self, kind: ActionKind) -> tuple[UUID, ...]:
        """Ids of records created by actions of ``kind``."""
        return tuple(
            record_id
            for result in self.results
            if result.kind is kind and result.status is ActionStatus.EXECUTED
            for record_id in result.record_ids
        )


def _emit_evaluation_trace(
    run_id: str,
    context: WorkflowContext,
    outcome: str,
    matched_rules: tuple[str, ...],
    results: tuple[ActionResult, ...],
    duration_ms: float,
) -> None:
    """Structured record of one evaluation for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_RULE_EVALUATION,
        "ts": datetime.now(UTC).isoformat(),
        "workflow_run_id": run_id,
        "entity_type": context.entity_type.value,
        "entity_id": str(context.entity_id),
        "from_state": context.previous_state,
        "to_state": context.new_state,
        "outcome": outcome,
        "matched_rules": list(matched_rules),
        "actions": [
            {
                "rule_id": r.rule_id,
                "kind": r.kind.value,
                "status": r.status.value,
                "reason": r.reason,
            }
            for r in results
        ],
        "duration_ms": round(duration_ms, 3),
    }
    record.update(LogContext.get_all())
    logger.info("workflow_evaluation", extra=record)


class WorkflowEngine:
    """
    Executes matched rules for a transition.

    The engine is stateless apart from its telemetry, so one instance is
    shared by every tenant and thread.
    """

    def __init__(self, telemetry: WorkflowTelemetry | None = None):
        self.telemetry = telemetry or WorkflowTelemetry()

    def evaluate(
        self,
        session: Session,
        context: WorkflowContext,
        rule_set: RuleSet,
        dispatcher: ActionDispatcher,
    ) -> EvaluationResult:
        """
        Run every rule matching ``context``.

        Raises:
            FatalActionError: a fatal action failed.
        """
        run_id = uuid4().hex
        workflow_type = f"{context.entity_type.value}.{context.new_state}"
        t0 = time.monotonic()

        with LogContext.bind(workflow_id=run_id, entity_id=context.entity_id):
            start = self.telemetry.start_workflow(
                run_id,
                workflow_type,
                {"entity_id": str(context.entity_id), "transition": context.label},
            )
            matched = match_rules(rule_set, context)
            matched_ids = tuple(rule.id for rule in matched)
            logger.info(
                "rules_matched",
                extra={"transition": context.label, "matched_rules": list(matched_ids)},
            )

            results: list[ActionResult] = []
            try:
                for rule in matched:
                    for index, spec in enumerate(rule.actions):
                        results.append(
                            self._run_action(session, context, rule, index, spec, dispatcher, run_id)
                        )
            except FatalActionError as exc:
                self.telemetry.error(run_id, workflow_type, exc, {"transition": context.label})
                self.telemetry.end_workflow(run_id, workflow_type, start, success=False)
                _emit_evaluation_trace(
                    run_id, context, OUTCOME_FATAL, matched_ids, tuple(results),
                    (time.monotonic() - t0) * 1000,
                )
                raise

            evaluation = EvaluationResult(run_id, context, matched_ids, tuple(results))
            self.telemetry.end_workflow(
                run_id,
                workflow_type,
                start,
                success=evaluation.success,
                metadata={"actions": len(results), "failed": len(evaluation.failed)},
            )
            if not matched:
                outcome = OUTCOME_NO_RULES
            elif evaluation.success:
                outcome = OUTCOME_SUCCESS
            else:
                outcome = OUTCOME_PARTIAL
            _emit_evaluation_trace(
                run_id, context, outcome, matched_ids, evaluation.results,
                (time.monotonic() - t0) * 1000,
            )
            return evaluation

    def _run_action(
        self,
        session: Session,
        context: WorkflowContext,
        rule: AutomationRule,
        index: int,
        spec: ActionSpec,
        dispatcher: ActionDispatcher,
        run_id: str,
    ) -> ActionResult:
        action_run_id = f"{run_id}:{rule.id}:{index}"
        action_type = f"action.{spec.kind.value}"
        fatal = spec.fatal and spec.kind is not ActionKind.SEND_NOTIFICATION
        start = self.telemetry.start_workflow(
            action_run_id, action_type, {"rule_id": rule.id, "fatal": fatal},
        )

        try:
            with session.begin_nested():
                result = dispatcher.dispatch(spec, context)
        except Exception as exc:
            self.telemetry.error(action_run_id, action_type, exc, {"rule_id": rule.id})
            self.telemetry.end_workflow(action_run_id, action_type, start, success=False)
            if fatal:
                logger.error(
                    "fatal_action_failed",
                    extra={"rule_id": rule.id, "action_kind": spec.kind.value},
                    exc_info=True,
                )
                raise FatalActionError(spec.kind.value, rule.id, str(exc)) from exc
            logger.warning(
                "action_failed",
                extra={"rule_id": rule.id, "action_kind": spec.kind.value},
                exc_info=True,
            )
            return ActionResult.failed(spec.kind, str(exc), rule.id)

        self.telemetry.end_workflow(
            action_run_id, action_type, start, success=True,
            metadata={"status": result.status.value},
        )
        logger.info(
            "action_completed",
            extra={
                "rule_id": rule.id,
                "action_kind": spec.kind.value,
                "action_status": result.status.value,
                "record_ids": [str(r) for r in result.record_ids],
                "reason": result.reason,
            },
        )
        return result.for_rule(rule.id)

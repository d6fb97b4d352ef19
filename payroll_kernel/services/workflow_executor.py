"""
payroll_kernel.services.workflow_executor -- Workflow transition execution.

Responsibility:
    Resolves an (current_state, action) pair against a declared ``Workflow``,
    evaluates the transition's guard through a ``GuardExecutor``, and emits
    one structured trace record per attempt.  The executor never mutates a
    record; callers apply the returned ``new_state`` with a pure transition
    function and persist the result themselves.

Architecture position:
    Kernel > Services.  Imports only kernel domain types and logging.

Invariants enforced:
    - A transition fires only if it is declared for the current state.
    - A transition with a guard fires only if the guard's evaluator passes.
      A guard with no registered evaluator fails closed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable
from uuid import UUID

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.workflow import Guard, Workflow
from payroll_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.workflow_executor")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_NO_TRANSITION = "no_transition"


@dataclass(frozen=True)
class TransitionResult:
    """Result of executing a workflow transition."""

    success: bool
    new_state: str | None = None
    failed_guard: str | None = None
    reason: str = ""


class GuardExecutor:
    """Evaluates workflow guards against context.

    Guards are declared on transitions (name + description).  This executor
    holds the evaluation logic per guard name.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Any], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[Any], bool]) -> None:
        """Register an evaluator for a guard by name."""
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: Any = None) -> bool:
        """Evaluate a guard against context. Returns True if guard passes."""
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning(
                "guard_no_evaluator",
                extra={"guard_name": guard.name},
            )
            return False
        try:
            return bool(fn(context))
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_name": guard.name, "error": str(e)},
            )
            return False


class WorkflowExecutor:
    """Executes workflow transitions with guard evaluation and tracing."""

    def __init__(
        self,
        guard_executor: GuardExecutor | None = None,
        clock: Clock | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ) -> None:
        self._guard_executor = guard_executor or GuardExecutor()
        self._clock = clock or SystemClock()
        self._outcome_sink = outcome_sink

    def execute_transition(
        self,
        workflow: Workflow,
        entity_type: str,
        entity_id: UUID | str,
        current_state: str,
        action: str,
        context: Any = None,
    ) -> TransitionResult:
        """Resolve and guard-check a transition.

        Returns a failed ``TransitionResult`` (never raises) when the action
        is not declared for ``current_state`` or its guard does not pass.
        """
        t0 = time.monotonic()

        transition = workflow.find_transition(current_state, action)
        if transition is None:
            reason = (
                f"No transition from '{current_state}' via action '{action}' "
                f"in workflow '{workflow.name}'"
            )
            self._emit_trace(
                workflow, action, entity_type, entity_id, current_state,
                OUTCOME_NO_TRANSITION, reason, t0,
            )
            return TransitionResult(success=False, reason=reason)

        if transition.guard is not None:
            if not self._guard_executor.evaluate(transition.guard, context):
                reason = f"Guard not satisfied: {transition.guard.name}"
                self._emit_trace(
                    workflow, action, entity_type, entity_id, current_state,
                    OUTCOME_GUARD_FAILED, reason, t0,
                )
                return TransitionResult(
                    success=False,
                    failed_guard=transition.guard.name,
                    reason=reason,
                )

        self._emit_trace(
            workflow, action, entity_type, entity_id, current_state,
            OUTCOME_SUCCESS, "", t0, to_state=transition.to_state,
        )
        return TransitionResult(success=True, new_state=transition.to_state)

    def _emit_trace(
        self,
        workflow: Workflow,
        action: str,
        entity_type: str,
        entity_id: UUID | str,
        from_state: str,
        outcome: str,
        reason: str,
        t0: float,
        to_state: str | None = None,
    ) -> None:
        """Emit a structured workflow transition record."""
        record: dict[str, Any] = {
            "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
            "ts": self._clock.now_utc().isoformat(),
            "workflow": workflow.name,
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "from_state": from_state,
            "outcome": outcome,
            "reason": reason,
            "duration_ms": round((time.monotonic() - t0) * 1000, 3),
        }
        if to_state is not None:
            record["to_state"] = to_state
        record.update(LogContext.get_all())
        logger.info("workflow_transition", extra=record)
        if self._outcome_sink is not None:
            self._outcome_sink(record)

"""Payroll Workflows.

State machines for a payroll record and for its enclosing period, plus the
pure transition functions that apply them.  Every transition function takes
a record and returns a new one; nothing here touches the database.

Payroll (ordinary contract):

    draft --calculate--> calculated --approve--> approved --process--> processed --pay--> paid
                         calculated --recalculate--> calculated
                         calculated --reject--> rejected (terminal)

Administrative escape hatch (separate workflow, reason required):

    approved --reopen--> calculated

Period:

    draft --open--> processing --close--> closed --reopen--> processing
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from typing import Any
from uuid import UUID

from payroll_kernel.domain.clock import Clock
from payroll_kernel.domain.workflow import Guard, Transition, Workflow
from payroll_kernel.exceptions import (
    InvalidPayrollTransitionError,
    InvalidPeriodTransitionError,
    NegativeNetSalaryError,
    PayrollImmutableError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.services.workflow_executor import GuardExecutor, WorkflowExecutor
from payroll_engines.calculator import PayrollCalculation
from payroll_module.models import Payroll, PayrollStatus, Period, PeriodStatus

logger = get_logger("modules.payroll.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

CALCULATION_SUCCEEDED = Guard(
    name="calculation_succeeded",
    description="A calculator run produced line items and totals",
)

NET_SALARY_NON_NEGATIVE = Guard(
    name="net_salary_non_negative",
    description="Totals are present and net salary is not negative",
)

REJECTION_REASON_PRESENT = Guard(
    name="rejection_reason_present",
    description="A non-blank rejection reason was given",
)

REOPEN_REASON_PRESENT = Guard(
    name="reopen_reason_present",
    description="A non-blank reason was given for the administrative reopen",
)


def _get(context: Any, key: str, default: Any = None) -> Any:
    if context is None:
        return default
    if isinstance(context, dict):
        return context.get(key, default)
    return getattr(context, key, default)


def _calculation_succeeded(context: Any) -> bool:
    return _get(context, "calculation") is not None


def _net_salary_non_negative(context: Any) -> bool:
    if _get(context, "calculated_at") is None:
        return False
    net = _get(context, "net_salary")
    return net is not None and net >= 0


def _reason_present(context: Any) -> bool:
    reason = _get(context, "reason")
    return isinstance(reason, str) and bool(reason.strip())


def payroll_guard_executor() -> GuardExecutor:
    """A GuardExecutor with the payroll guards registered."""
    ex = GuardExecutor()
    ex.register(CALCULATION_SUCCEEDED.name, _calculation_succeeded)
    ex.register(NET_SALARY_NON_NEGATIVE.name, _net_salary_non_negative)
    ex.register(REJECTION_REASON_PRESENT.name, _reason_present)
    ex.register(REOPEN_REASON_PRESENT.name, _reason_present)
    return ex


# -----------------------------------------------------------------------------
# Workflows
# -----------------------------------------------------------------------------

PAYROLL_WORKFLOW = Workflow(
    name="payroll",
    description="Payroll record lifecycle",
    initial_state=PayrollStatus.DRAFT.value,
    states=tuple(s.value for s in PayrollStatus),
    transitions=(
        Transition("draft", "calculated", action="calculate", guard=CALCULATION_SUCCEEDED),
        Transition("calculated", "calculated", action="recalculate", guard=CALCULATION_SUCCEEDED),
        Transition("calculated", "approved", action="approve", guard=NET_SALARY_NON_NEGATIVE),
        Transition("calculated", "rejected", action="reject", guard=REJECTION_REASON_PRESENT),
        Transition("approved", "processed", action="process"),
        Transition("processed", "paid", action="pay"),
    ),
    terminal_states=("paid", "rejected"),
)

PAYROLL_REOPEN_WORKFLOW = Workflow(
    name="payroll_reopen",
    description="Administrative reopen of an approved payroll",
    initial_state=PayrollStatus.APPROVED.value,
    states=(PayrollStatus.APPROVED.value, PayrollStatus.CALCULATED.value),
    transitions=(
        Transition("approved", "calculated", action="reopen", guard=REOPEN_REASON_PRESENT),
    ),
)

PERIOD_WORKFLOW = Workflow(
    name="payroll_period",
    description="Payroll period lifecycle",
    initial_state=PeriodStatus.DRAFT.value,
    states=tuple(s.value for s in PeriodStatus),
    transitions=(
        Transition("draft", "processing", action="open"),
        Transition("processing", "closed", action="close"),
        Transition("closed", "processing", action="reopen"),
    ),
)

logger.info(
    "payroll_workflows_registered",
    extra={
        "workflows": [
            PAYROLL_WORKFLOW.name,
            PAYROLL_REOPEN_WORKFLOW.name,
            PERIOD_WORKFLOW.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Transition functions
# -----------------------------------------------------------------------------


class PayrollLifecycle:
    """Applies payroll and period workflows to immutable records.

    Each method resolves the action through the ``WorkflowExecutor`` (guard
    evaluation plus a structured transition trace), raises the matching
    domain error on refusal, and returns the new record.
    """

    def __init__(
        self,
        clock: Clock,
        executor: WorkflowExecutor | None = None,
    ) -> None:
        self._clock = clock
        self._executor = executor or WorkflowExecutor(
            guard_executor=payroll_guard_executor(), clock=clock,
        )

    # -- payroll ---------------------------------------------------------

    def _advance(
        self,
        workflow: Workflow,
        payroll: Payroll,
        action: str,
        context: Any,
        on_guard_failure: Callable[[str], Exception] | None = None,
    ) -> PayrollStatus:
        result = self._executor.execute_transition(
            workflow, "payroll", payroll.id, payroll.status.value, action, context,
        )
        if result.success:
            return PayrollStatus(result.new_state)
        if result.failed_guard is None and payroll.is_frozen and action in (
            "calculate", "recalculate",
        ):
            raise PayrollImmutableError(str(payroll.id), payroll.status.value, action)
        if result.failed_guard is not None and on_guard_failure is not None:
            raise on_guard_failure(result.failed_guard)
        raise InvalidPayrollTransitionError(
            str(payroll.id), payroll.status.value, action, result.reason,
        )

    def apply_calculation(self, payroll: Payroll, calculation: PayrollCalculation) -> Payroll:
        """draft -> calculated, or calculated -> calculated (full replacement)."""
        action = "calculate" if payroll.status == PayrollStatus.DRAFT else "recalculate"
        new_status = self._advance(
            PAYROLL_WORKFLOW, payroll, action, {"calculation": calculation},
        )
        totals = calculation.totals
        worked = calculation.worked
        return dataclasses.replace(
            payroll,
            status=new_status,
            base_salary=totals.base_salary,
            worked_days=worked.worked_days,
            worked_hours=worked.worked_hours,
            overtime_hours=worked.overtime_hours,
            overtime_amount=totals.overtime_amount,
            total_earnings=totals.total_earnings,
            gross_salary=totals.gross_salary,
            total_deductions=totals.total_deductions,
            total_taxes=totals.total_taxes,
            net_salary=totals.net_salary,
            lines=calculation.lines,
            calculated_at=self._clock.now(),
            catalog_fingerprint=calculation.catalog_fingerprint,
        )

    def approve(self, payroll: Payroll, approver_id: UUID) -> Payroll:
        """calculated -> approved.  Refuses a negative net salary."""
        new_status = self._advance(
            PAYROLL_WORKFLOW,
            payroll,
            "approve",
            payroll,
            on_guard_failure=lambda _guard: NegativeNetSalaryError(
                str(payroll.id), str(payroll.net_salary),
            ),
        )
        return dataclasses.replace(
            payroll,
            status=new_status,
            approved_at=self._clock.now(),
            approved_by=approver_id,
        )

    def reject(self, payroll: Payroll, reason: str | None) -> Payroll:
        """calculated -> rejected (terminal).  Requires a reason."""
        new_status = self._advance(PAYROLL_WORKFLOW, payroll, "reject", {"reason": reason})
        return dataclasses.replace(
            payroll,
            status=new_status,
            rejection_reason=reason.strip(),
            rejected_at=self._clock.now(),
        )

    def process(self, payroll: Payroll) -> Payroll:
        """approved -> processed."""
        new_status = self._advance(PAYROLL_WORKFLOW, payroll, "process", None)
        return dataclasses.replace(payroll, status=new_status, processed_at=self._clock.now())

    def pay(self, payroll: Payroll) -> Payroll:
        """processed -> paid."""
        new_status = self._advance(PAYROLL_WORKFLOW, payroll, "pay", None)
        return dataclasses.replace(payroll, status=new_status, paid_at=self._clock.now())

    def reopen(self, payroll: Payroll, reason: str | None) -> Payroll:
        """approved -> calculated, administrative.  Clears the approval stamps."""
        new_status = self._advance(
            PAYROLL_REOPEN_WORKFLOW, payroll, "reopen", {"reason": reason},
        )
        return dataclasses.replace(
            payroll,
            status=new_status,
            approved_at=None,
            approved_by=None,
            reopen_reason=reason.strip(),
        )

    # -- period ----------------------------------------------------------

    def _advance_period(self, period: Period, action: str) -> PeriodStatus:
        result = self._executor.execute_transition(
            PERIOD_WORKFLOW, "payroll_period", period.id, period.status.value, action,
        )
        if not result.success:
            raise InvalidPeriodTransitionError(period.code, period.status.value, action)
        return PeriodStatus(result.new_state)

    def open_period(self, period: Period) -> Period:
        return dataclasses.replace(period, status=self._advance_period(period, "open"))

    def close_period(self, period: Period, actor_id: UUID) -> Period:
        return dataclasses.replace(
            period,
            status=self._advance_period(period, "close"),
            closed_at=self._clock.now(),
            closed_by=actor_id,
        )

    def reopen_period(self, period: Period) -> Period:
        return dataclasses.replace(
            period,
            status=self._advance_period(period, "reopen"),
            closed_at=None,
            closed_by=None,
        )

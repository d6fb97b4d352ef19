"""
Tests for the payroll and period workflows as pure transition functions.

No database: records are built in memory and every transition returns a
new record.
"""

import dataclasses
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_engines.calculator import PayrollCalculator
from payroll_kernel.domain.values import EmployeeInput
from payroll_kernel.exceptions import (
    InvalidPayrollTransitionError,
    InvalidPeriodTransitionError,
    NegativeNetSalaryError,
    PayrollImmutableError,
)
from payroll_module.models import Payroll, PayrollStatus, Period, PeriodStatus
from payroll_module.workflows import (
    PAYROLL_REOPEN_WORKFLOW,
    PAYROLL_WORKFLOW,
    PERIOD_WORKFLOW,
    PayrollLifecycle,
)


@pytest.fixture
def lifecycle(deterministic_clock):
    return PayrollLifecycle(deterministic_clock)


@pytest.fixture
def calculation(default_catalog, full_month):
    return PayrollCalculator(default_catalog).calculate(
        employee=EmployeeInput(id="EMP-001", base_salary=Decimal("2500000")),
        period_end=date(2024, 1, 31),
        worked=full_month,
    )


@pytest.fixture
def draft():
    return Payroll(
        id=uuid4(),
        payroll_number="PAY-202401-EMP-001",
        employee_id="EMP-001",
        period_id=uuid4(),
        base_salary=Decimal("2500000"),
    )


@pytest.fixture
def calculated(lifecycle, draft, calculation):
    return lifecycle.apply_calculation(draft, calculation)


class TestWorkflowDeclarations:

    def test_terminal_states(self):
        assert set(PAYROLL_WORKFLOW.terminal_states) == {"paid", "rejected"}

    def test_reopen_is_a_separate_workflow(self):
        actions = {t.action for t in PAYROLL_WORKFLOW.transitions}

        assert "reopen" not in actions
        assert [t.action for t in PAYROLL_REOPEN_WORKFLOW.transitions] == ["reopen"]

    def test_period_states(self):
        assert PERIOD_WORKFLOW.initial_state == "draft"
        assert {(t.from_state, t.to_state) for t in PERIOD_WORKFLOW.transitions} == {
            ("draft", "processing"),
            ("processing", "closed"),
            ("closed", "processing"),
        }


class TestPayrollTransitions:

    def test_calculate_copies_totals_and_lines(self, calculated, calculation, draft):
        assert calculated.status == PayrollStatus.CALCULATED
        assert calculated.net_salary == Decimal("2403339.05")
        assert calculated.lines == calculation.lines
        assert calculated.catalog_fingerprint == calculation.catalog_fingerprint
        assert draft.status == PayrollStatus.DRAFT

    def test_recalculate_stays_calculated(self, lifecycle, calculated, calculation):
        again = lifecycle.apply_calculation(calculated, calculation)

        assert again.status == PayrollStatus.CALCULATED

    def test_approve(self, lifecycle, calculated):
        approver = uuid4()

        approved = lifecycle.approve(calculated, approver)

        assert approved.status == PayrollStatus.APPROVED
        assert approved.approved_by == approver
        assert approved.is_frozen

    def test_approved_cannot_be_recalculated(self, lifecycle, calculated, calculation):
        approved = lifecycle.approve(calculated, uuid4())

        with pytest.raises(PayrollImmutableError) as exc_info:
            lifecycle.apply_calculation(approved, calculation)
        assert exc_info.value.status == "approved"

    def test_negative_net_refused(self, lifecycle, calculated):
        negative = dataclasses.replace(calculated, net_salary=Decimal("-0.01"))

        with pytest.raises(NegativeNetSalaryError) as exc_info:
            lifecycle.approve(negative, uuid4())
        assert exc_info.value.net_salary == "-0.01"

    def test_zero_net_is_approvable(self, lifecycle, calculated):
        zero = dataclasses.replace(calculated, net_salary=Decimal("0"))

        assert lifecycle.approve(zero, uuid4()).status == PayrollStatus.APPROVED

    def test_draft_cannot_be_approved(self, lifecycle, draft):
        with pytest.raises(InvalidPayrollTransitionError):
            lifecycle.approve(draft, uuid4())

    def test_reject_strips_reason(self, lifecycle, calculated):
        rejected = lifecycle.reject(calculated, "  wrong hours ")

        assert rejected.status == PayrollStatus.REJECTED
        assert rejected.rejection_reason == "wrong hours"

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reject_without_reason(self, lifecycle, calculated, reason):
        with pytest.raises(InvalidPayrollTransitionError):
            lifecycle.reject(calculated, reason)

    def test_rejected_cannot_be_recalculated(self, lifecycle, calculated, calculation):
        rejected = lifecycle.reject(calculated, "duplicate")

        with pytest.raises(InvalidPayrollTransitionError):
            lifecycle.apply_calculation(rejected, calculation)

    def test_full_happy_path(self, lifecycle, calculated):
        paid = lifecycle.pay(lifecycle.process(lifecycle.approve(calculated, uuid4())))

        assert paid.status == PayrollStatus.PAID
        assert paid.processed_at is not None
        assert paid.paid_at is not None

    def test_process_requires_approval(self, lifecycle, calculated):
        with pytest.raises(InvalidPayrollTransitionError):
            lifecycle.process(calculated)

    def test_reopen(self, lifecycle, calculated):
        approved = lifecycle.approve(calculated, uuid4())

        reopened = lifecycle.reopen(approved, "bonus missing")

        assert reopened.status == PayrollStatus.CALCULATED
        assert reopened.approved_at is None
        assert reopened.reopen_reason == "bonus missing"

    def test_reopen_only_from_approved(self, lifecycle, calculated):
        paid = lifecycle.pay(lifecycle.process(lifecycle.approve(calculated, uuid4())))

        with pytest.raises(InvalidPayrollTransitionError):
            lifecycle.reopen(paid, "too late")

    def test_transition_traced(self, lifecycle, calculated, captured_logs):
        lifecycle.approve(calculated, uuid4())

        traces = [r for r in captured_logs() if r.get("trace_type") == "WORKFLOW_TRANSITION"]
        assert traces
        assert traces[-1]["action"] == "approve"


class TestPeriodTransitions:

    @pytest.fixture
    def period(self):
        return Period(
            id=uuid4(),
            code="2024-01",
            name="January 2024",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 31),
            pay_date=date(2024, 1, 31),
        )

    def test_open_close_reopen(self, lifecycle, period):
        actor = uuid4()

        opened = lifecycle.open_period(period)
        closed = lifecycle.close_period(opened, actor)
        reopened = lifecycle.reopen_period(closed)

        assert opened.status == PeriodStatus.PROCESSING
        assert closed.is_closed
        assert closed.closed_by == actor
        assert reopened.status == PeriodStatus.PROCESSING
        assert reopened.closed_at is None

    def test_close_from_draft_refused(self, lifecycle, period):
        with pytest.raises(InvalidPeriodTransitionError) as exc_info:
            lifecycle.close_period(period, uuid4())
        assert exc_info.value.current_status == "draft"

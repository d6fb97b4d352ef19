"""
Payroll Module Service (``payroll_module.service``).

Responsibility
--------------
Orchestrates the payroll record use cases: calculation previews, creation
and recalculation, the approval workflow, deletion, and verified reads.
Pure computation is delegated to ``payroll_engines``; state changes to the
transition functions in ``payroll_module.workflows``; persistence to the ORM
adapter in ``payroll_module.orm``.

Architecture position
---------------------
**Modules layer** -- ``PayrollService`` is the sole public entry point for
payroll record operations.  ``PayrollBatchProcessor`` reuses its
calculator and ``store_calculation`` under its own transaction.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on
  success, ``rollback`` and re-raise on exception).
* Lock order is always period row, then payroll row (``SELECT ... FOR
  UPDATE``); status checks happen only after both locks are held.
* At most one non-rejected payroll per (employee, period): checked under
  the period lock, and the partial unique index is the final arbiter.
* Line-item replacement and the totals update are one SAVEPOINT; a reader
  never sees totals that disagree with the stored lines.
* Approved, processed and paid payrolls are never recalculated.
* Nothing is written while the period is closed.

Failure modes
-------------
* Unknown ids  -> ``PayrollNotFoundError`` / ``PeriodNotFoundError`` /
  ``EmployeeNotFoundError``.
* Closed period  -> ``ClosedPeriodError``.
* Second live payroll for a pair  -> ``DuplicatePayrollError``.
* Recalculation of a frozen payroll  -> ``PayrollImmutableError``.
* Illegal transition  -> ``InvalidPayrollTransitionError``.
* Negative net at approval  -> ``NegativeNetSalaryError``.
* Stored totals disagree with lines on a verified read
  -> ``TotalsMismatchError``.

Usage::

    service = PayrollService(session, directory, clock=clock)
    payroll = service.create_or_update_payroll(
        "EMP-001", period.id,
        {"worked_days": 30, "worked_hours": 240, "overtime_hours": 0},
        actor_id=actor_id,
    )
    service.approve_payroll(payroll.id, approver_id=actor_id)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.values import WorkedTime
from payroll_kernel.exceptions import (
    ClosedPeriodError,
    DuplicatePayrollError,
    InvalidPayrollTransitionError,
    PayrollImmutableError,
    PayrollNotFoundError,
    PeriodNotFoundError,
    TotalsMismatchError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.services.base import BaseService
from payroll_kernel.services.workflow_executor import WorkflowExecutor
from payroll_engines.aggregator import PayrollAggregator, TotalsVerification
from payroll_engines.benefits import BenefitAssigner
from payroll_engines.calculator import PayrollCalculation, PayrollCalculator
from payroll_engines.concepts import ConceptCatalog
from payroll_engines.formula import FormulaEvaluator
from payroll_config.schema import PayrollConfig
from payroll_module.directory import EmployeeDirectory
from payroll_module.models import (
    Payroll,
    PayrollResult,
    PayrollStatus,
    Period,
)
from payroll_module.orm import PayrollModel, PayrollPeriodModel
from payroll_module.selectors import BenefitSelector, ConceptSelector
from payroll_module.workflows import PayrollLifecycle

logger = get_logger("modules.payroll.service")

WorkedInput = WorkedTime | Mapping[str, Any]


def coerce_worked(worked: WorkedInput) -> WorkedTime:
    """Validate worked-time input before anything is calculated."""
    if isinstance(worked, WorkedTime):
        return worked
    return WorkedTime.from_mapping(worked)


class PayrollService(BaseService[PayrollModel]):
    """
    Orchestrates payroll record operations through engines and workflows.

    Contract
    --------
    * Every write method returns the resulting ``Payroll`` value.
    * ``calculate_payroll`` is a pure preview and writes nothing.

    Guarantees
    ----------
    * Session is committed only after the whole operation succeeded.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT own employee base data (``EmployeeDirectory``) or the
      concept catalog (``ConceptService``).
    * Does NOT roll period totals forward; ``PayrollPeriodManager`` does.
    """

    def __init__(
        self,
        session: Session,
        directory: EmployeeDirectory,
        clock: Clock | None = None,
        config: PayrollConfig | None = None,
        workflow_executor: WorkflowExecutor | None = None,
        evaluator: FormulaEvaluator | None = None,
    ):
        super().__init__(session)
        self._directory = directory
        self._clock = clock or SystemClock()
        self._config = config or PayrollConfig.with_defaults()
        self._evaluator = evaluator or FormulaEvaluator()
        self._aggregator = PayrollAggregator()
        self._lifecycle = PayrollLifecycle(self._clock, workflow_executor)
        self._concepts = ConceptSelector(session)
        self._benefits = BenefitSelector(session)

    @property
    def lifecycle(self) -> PayrollLifecycle:
        return self._lifecycle

    @property
    def directory(self) -> EmployeeDirectory:
        return self._directory

    @property
    def config(self) -> PayrollConfig:
        return self._config

    # =========================================================================
    # Engine composition
    # =========================================================================

    def build_calculator(self) -> PayrollCalculator:
        """A calculator over the currently active concept versions."""
        catalog = ConceptCatalog(self._concepts.list_concepts(active=True), self._evaluator)
        return PayrollCalculator(
            catalog,
            assigner=BenefitAssigner(catalog, self._config.factor_map()),
            overtime_policy=self._config.overtime_policy(),
            aggregator=self._aggregator,
            withholding_policy=self._config.withholding_policy(),
        )

    def _calculate(
        self,
        calculator: PayrollCalculator,
        employee_id: str,
        period: Period,
        worked: WorkedTime,
    ) -> PayrollCalculation:
        employee = self._directory.get_employee(employee_id)
        benefits = self._benefits.for_employee(employee_id)
        return calculator.calculate(
            employee=employee, period_end=period.end_date, worked=worked, benefits=benefits,
        )

    def payroll_number(self, period: Period, employee_id: str) -> str:
        return f"{self._config.payroll_number_prefix}-{period.start_date:%Y%m}-{employee_id}"

    # =========================================================================
    # Locking helpers
    # =========================================================================

    def _get_period_for_update(self, period_id: UUID) -> PayrollPeriodModel:
        model = self.session.execute(
            select(PayrollPeriodModel)
            .where(PayrollPeriodModel.id == period_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise PeriodNotFoundError(str(period_id))
        return model

    def _get_payroll_for_update(self, payroll_id: UUID) -> PayrollModel:
        model = self.session.execute(
            select(PayrollModel)
            .where(PayrollModel.id == payroll_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise PayrollNotFoundError(str(payroll_id))
        return model

    def _get_live_payroll_for_update(
        self, employee_id: str, period_id: UUID,
    ) -> PayrollModel | None:
        return self.session.execute(
            select(PayrollModel)
            .where(
                PayrollModel.employee_id == employee_id,
                PayrollModel.period_id == period_id,
                PayrollModel.status != PayrollStatus.REJECTED.value,
            )
            .with_for_update()
        ).scalars().first()

    @staticmethod
    def _require_open(period_model: PayrollPeriodModel, operation: str) -> None:
        if not period_model.to_dto().accepts_payroll_changes:
            raise ClosedPeriodError(period_model.code, operation)

    def lock_open_period(self, period_id: UUID, operation: str) -> PayrollPeriodModel:
        """Lock a period row and refuse it if closed.  Never commits."""
        model = self._get_period_for_update(period_id)
        self._require_open(model, operation)
        return model

    def _lock_payroll(
        self, payroll_id: UUID, operation: str,
    ) -> tuple[PayrollPeriodModel, PayrollModel]:
        """Lock the payroll's period and then the payroll; refuse closed periods."""
        period_id = self.session.execute(
            select(PayrollModel.period_id).where(PayrollModel.id == payroll_id)
        ).scalar_one_or_none()
        if period_id is None:
            raise PayrollNotFoundError(str(payroll_id))
        period_model = self.lock_open_period(period_id, operation)
        return period_model, self._get_payroll_for_update(payroll_id)

    def _write(self, model: PayrollModel, payroll: Payroll, actor_id: UUID) -> None:
        """Apply ``payroll`` to its row and line items in one SAVEPOINT."""
        with self.session.begin_nested():
            current = tuple(line.to_dto() for line in model.lines)
            if current and current != payroll.lines:
                # Old rows go first so the (payroll, sequence) key is free.
                model.lines.clear()
                self.session.flush()
            model.apply_dto(payroll, actor_id)
            self.session.flush()

    # =========================================================================
    # Calculation
    # =========================================================================

    def calculate_payroll(
        self,
        employee_id: str,
        period_id: UUID,
        worked: WorkedInput,
    ) -> PayrollResult:
        """
        Preview a payroll without persisting anything.

        Refused with ``PayrollImmutableError`` when the pair already has an
        approved, processed or paid payroll: its figures are final.
        """
        worked = coerce_worked(worked)
        period_model = self.session.get(PayrollPeriodModel, period_id)
        if period_model is None:
            raise PeriodNotFoundError(str(period_id))
        existing = self.session.execute(
            select(PayrollModel).where(
                PayrollModel.employee_id == employee_id,
                PayrollModel.period_id == period_id,
                PayrollModel.status != PayrollStatus.REJECTED.value,
            )
        ).scalars().first()
        if existing is not None and existing.to_dto().is_frozen:
            raise PayrollImmutableError(str(existing.id), existing.status, "calculate")

        calculation = self._calculate(
            self.build_calculator(), employee_id, period_model.to_dto(), worked,
        )
        totals = calculation.totals

        logger.info("payroll_previewed", extra={
            "employee_id": employee_id,
            "period_id": str(period_id),
            "gross_salary": str(totals.gross_salary),
            "net_salary": str(totals.net_salary),
        })
        return PayrollResult(
            employee_id=employee_id,
            period_id=period_id,
            base_salary=totals.base_salary,
            overtime_amount=totals.overtime_amount,
            total_earnings=totals.total_earnings,
            gross_salary=totals.gross_salary,
            total_deductions=totals.total_deductions,
            total_taxes=totals.total_taxes,
            net_salary=totals.net_salary,
            lines=calculation.lines,
            catalog_fingerprint=calculation.catalog_fingerprint,
        )

    def store_calculation(
        self,
        period_model: PayrollPeriodModel,
        employee_id: str,
        calculation: PayrollCalculation,
        actor_id: UUID,
        allow_update: bool = False,
    ) -> PayrollModel:
        """
        Create or replace the live payroll of (employee, period) from a
        finished calculation.  Flushes but never commits.

        Preconditions: ``period_model`` is locked by the caller.
        """
        self._require_open(period_model, "store_payroll")
        period_id = period_model.id
        existing = self._get_live_payroll_for_update(employee_id, period_id)

        if existing is not None:
            current = existing.to_dto()
            if current.is_frozen:
                raise PayrollImmutableError(str(existing.id), existing.status, "recalculate")
            if not allow_update:
                raise DuplicatePayrollError(employee_id, str(period_id), str(existing.id))
            self._write(existing, self._lifecycle.apply_calculation(current, calculation), actor_id)
            return existing

        draft = Payroll(
            id=uuid4(),
            payroll_number=self.payroll_number(period_model.to_dto(), employee_id),
            employee_id=employee_id,
            period_id=period_id,
            base_salary=calculation.totals.base_salary,
        )
        payroll = self._lifecycle.apply_calculation(draft, calculation)
        model = PayrollModel.from_dto(payroll, created_by_id=actor_id)
        try:
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
        except IntegrityError as exc:
            raise DuplicatePayrollError(employee_id, str(period_id), None) from exc
        return model

    def create_or_update_payroll(
        self,
        employee_id: str,
        period_id: UUID,
        worked: WorkedInput,
        actor_id: UUID,
        *,
        allow_update: bool = False,
    ) -> Payroll:
        """
        Calculate and persist the payroll for (employee, period).

        A second call for the same pair raises ``DuplicatePayrollError``
        unless ``allow_update`` is set, in which case a calculated payroll is
        recalculated in place.  Approved-or-later payrolls are never touched.
        """
        try:
            worked = coerce_worked(worked)
            period_model = self.lock_open_period(period_id, "create_payroll")

            calculation = self._calculate(
                self.build_calculator(), employee_id, period_model.to_dto(), worked,
            )
            model = self.store_calculation(
                period_model, employee_id, calculation, actor_id, allow_update,
            )
            self.session.commit()

            payroll = model.to_dto()
            logger.info("payroll_stored", extra={
                "payroll_id": str(payroll.id),
                "payroll_number": payroll.payroll_number,
                "employee_id": employee_id,
                "period_id": str(period_id),
                "status": payroll.status.value,
                "gross_salary": str(payroll.gross_salary),
                "net_salary": str(payroll.net_salary),
                "line_count": len(payroll.lines),
                "actor_id": str(actor_id),
            })
            return payroll
        except Exception:
            self.session.rollback()
            raise

    def recalculate_payroll(
        self,
        payroll_id: UUID,
        actor_id: UUID,
        worked: WorkedInput | None = None,
    ) -> Payroll:
        """
        Recompute a calculated payroll, fully replacing its line items.

        ``worked`` defaults to the worked time stored on the payroll.
        """
        try:
            period_model, model = self._lock_payroll(payroll_id, "recalculate_payroll")
            current = model.to_dto()
            worked = coerce_worked(worked) if worked is not None else current.worked

            calculation = self._calculate(
                self.build_calculator(), current.employee_id, period_model.to_dto(), worked,
            )
            payroll = self._lifecycle.apply_calculation(current, calculation)
            self._write(model, payroll, actor_id)
            self.session.commit()

            logger.info("payroll_recalculated", extra={
                "payroll_id": str(payroll_id),
                "employee_id": payroll.employee_id,
                "gross_salary": str(payroll.gross_salary),
                "net_salary": str(payroll.net_salary),
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    # =========================================================================
    # Workflow transitions
    # =========================================================================

    def _transition(
        self,
        payroll_id: UUID,
        operation: str,
        apply,
        actor_id: UUID,
    ) -> Payroll:
        try:
            _, model = self._lock_payroll(payroll_id, operation)
            payroll = apply(model.to_dto())
            self._write(model, payroll, actor_id)
            self.session.commit()

            logger.info("payroll_transitioned", extra={
                "payroll_id": str(payroll_id),
                "operation": operation,
                "status": payroll.status.value,
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def approve_payroll(self, payroll_id: UUID, approver_id: UUID) -> Payroll:
        """calculated -> approved.  Negative net raises ``NegativeNetSalaryError``."""
        return self._transition(
            payroll_id, "approve_payroll",
            lambda p: self._lifecycle.approve(p, approver_id),
            approver_id,
        )

    def reject_payroll(self, payroll_id: UUID, reason: str, actor_id: UUID) -> Payroll:
        return self._transition(
            payroll_id, "reject_payroll",
            lambda p: self._lifecycle.reject(p, reason),
            actor_id,
        )

    def mark_processed(self, payroll_id: UUID, actor_id: UUID) -> Payroll:
        return self._transition(payroll_id, "mark_processed", self._lifecycle.process, actor_id)

    def mark_paid(self, payroll_id: UUID, actor_id: UUID) -> Payroll:
        return self._transition(payroll_id, "mark_paid", self._lifecycle.pay, actor_id)

    def reopen_payroll(self, payroll_id: UUID, reason: str, actor_id: UUID) -> Payroll:
        """Administrative approved -> calculated.  Requires a reason."""
        payroll = self._transition(
            payroll_id, "reopen_payroll",
            lambda p: self._lifecycle.reopen(p, reason),
            actor_id,
        )
        logger.warning("payroll_reopened", extra={
            "payroll_id": str(payroll_id),
            "reason": payroll.reopen_reason,
            "actor_id": str(actor_id),
        })
        return payroll

    def delete_payroll(self, payroll_id: UUID, actor_id: UUID) -> None:
        """Delete a payroll that has not been approved or rejected."""
        try:
            _, model = self._lock_payroll(payroll_id, "delete_payroll")
            if model.status not in (PayrollStatus.DRAFT.value, PayrollStatus.CALCULATED.value):
                raise InvalidPayrollTransitionError(
                    str(payroll_id), model.status, "delete",
                    "only draft or calculated payrolls can be deleted",
                )
            employee_id = model.employee_id
            with self.session.begin_nested():
                self.session.delete(model)
                self.session.flush()
            self.session.commit()

            logger.info("payroll_deleted", extra={
                "payroll_id": str(payroll_id),
                "employee_id": employee_id,
                "actor_id": str(actor_id),
            })
        except Exception:
            self.session.rollback()
            raise

    # =========================================================================
    # Reads
    # =========================================================================

    def verify_payroll_totals(self, payroll_id: UUID) -> TotalsVerification:
        """Recompute totals from the stored lines and compare with stored totals."""
        model = self.session.get(PayrollModel, payroll_id)
        if model is None:
            raise PayrollNotFoundError(str(payroll_id))
        payroll = model.to_dto()
        return self._aggregator.verify(payroll.totals, payroll.lines)

    def get_payroll(self, payroll_id: UUID, verify: bool | None = None) -> Payroll:
        """
        Read a payroll with its line items.

        Args:
            verify: Check stored totals against the lines and raise
                ``TotalsMismatchError`` on disagreement.  Defaults to
                ``PayrollConfig.verify_totals_on_read``.
        """
        model = self.session.get(PayrollModel, payroll_id)
        if model is None:
            raise PayrollNotFoundError(str(payroll_id))
        payroll = model.to_dto()

        if verify is None:
            verify = self._config.verify_totals_on_read
        if verify:
            verification = self._aggregator.verify(payroll.totals, payroll.lines)
            if not verification.matches:
                mismatches = {
                    name: (str(stored), str(recomputed))
                    for name, (stored, recomputed) in verification.mismatches.items()
                }
                logger.error("payroll_totals_mismatch", extra={
                    "payroll_id": str(payroll_id),
                    "mismatches": mismatches,
                })
                raise TotalsMismatchError(str(payroll_id), mismatches)
        return payroll

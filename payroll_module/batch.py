"""
Payroll Batch Processor (``payroll_module.batch``).

Responsibility
--------------
Computes and stores the payrolls of a whole period.  Per-employee
calculation is pure and independent, so it runs on a bounded thread pool;
persistence stays on the caller's thread, one SAVEPOINT per employee.

Architecture position
---------------------
**Modules layer** -- composes ``PayrollService`` (calculator, storage) and
``PayrollPeriodManager`` (rollup refresh).

Invariants enforced
-------------------
* Workers never touch the session.  Employee data, worked time and benefit
  assignments are fetched before any calculation is launched.
* At most ``max_workers`` calculations are in flight at any time.
* Cooperative cancellation: the event is checked before each launch;
  calculations already running finish and are applied.
* An employee's line-item replacement is atomic: a failure rolls back that
  employee's SAVEPOINT only and is reported in the result.

Failure modes
-------------
* Unknown or closed period  -> raised before anything is launched.
* Per-employee errors (unknown employee, bad worked time, frozen or
  duplicate payroll)  -> captured as failed ``EmployeeOutcome`` entries.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from payroll_kernel.domain.values import BenefitAssignment, EmployeeInput, WorkedTime
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_engines.calculator import PayrollCalculation, PayrollCalculator
from payroll_module.models import Period
from payroll_module.orm import PayrollPeriodModel
from payroll_module.periods import PayrollPeriodManager
from payroll_module.selectors import BenefitSelector
from payroll_module.service import PayrollService, WorkedInput, coerce_worked

logger = get_logger("modules.payroll.batch")


@dataclass(frozen=True)
class EmployeeOutcome:
    """What happened to one employee of a batch."""
    employee_id: str
    success: bool
    payroll_id: UUID | None = None
    net_salary: Decimal | None = None
    error_code: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchResult:
    """Outcome of ``PayrollBatchProcessor.process_period``."""
    batch_id: UUID
    period_id: UUID
    outcomes: tuple[EmployeeOutcome, ...]
    skipped: tuple[str, ...] = ()
    cancelled: bool = False

    @property
    def succeeded(self) -> tuple[EmployeeOutcome, ...]:
        return tuple(o for o in self.outcomes if o.success)

    @property
    def failed(self) -> tuple[EmployeeOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.success)

    @property
    def is_complete(self) -> bool:
        return not self.cancelled and not self.failed and not self.skipped


@dataclass(frozen=True)
class _Job:
    employee: EmployeeInput
    worked: WorkedTime
    benefits: tuple[BenefitAssignment, ...]


def _failure(employee_id: str, exc: Exception) -> EmployeeOutcome:
    return EmployeeOutcome(
        employee_id=employee_id,
        success=False,
        error_code=getattr(exc, "code", type(exc).__name__),
        error=str(exc),
    )


class PayrollBatchProcessor:
    """
    Processes every employee of a period.

    Contract:
        ``process_period`` commits the stored payrolls and the refreshed
        period totals; it raises only for period-level problems.
    """

    def __init__(
        self,
        session: Session,
        service: PayrollService,
        periods: PayrollPeriodManager | None = None,
        max_workers: int | None = None,
    ):
        self.session = session
        self._service = service
        self._periods = periods or PayrollPeriodManager(session)
        self._max_workers = (
            max_workers if max_workers is not None else service.config.batch_max_workers
        )
        if self._max_workers < 1:
            raise ValueError("max_workers must be at least 1")

    def _prepare(
        self,
        worked_by_employee: Mapping[str, WorkedInput],
    ) -> tuple[list[_Job], list[EmployeeOutcome]]:
        """Resolve inputs on the caller's thread; invalid ones fail early."""
        employee_ids = sorted(worked_by_employee)
        benefits = BenefitSelector(self.session).for_employees(employee_ids)
        jobs: list[_Job] = []
        failures: list[EmployeeOutcome] = []
        for employee_id in employee_ids:
            try:
                employee = self._service.directory.get_employee(employee_id)
                worked = coerce_worked(worked_by_employee[employee_id])
            except Exception as exc:
                logger.warning("batch_employee_rejected", extra={
                    "employee_id": employee_id,
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "error": str(exc),
                })
                failures.append(_failure(employee_id, exc))
                continue
            jobs.append(_Job(employee, worked, tuple(benefits[employee_id])))
        return jobs, failures

    def _apply(
        self,
        period_model: PayrollPeriodModel,
        employee_id: str,
        future: Future,
        actor_id: UUID,
    ) -> EmployeeOutcome:
        """Store one finished calculation in its own SAVEPOINT."""
        with LogContext.bind(employee_id=employee_id):
            try:
                calculation: PayrollCalculation = future.result()
                with self.session.begin_nested():
                    model = self._service.store_calculation(
                        period_model, employee_id, calculation, actor_id, allow_update=True,
                    )
            except Exception as exc:
                logger.warning("batch_employee_failed", extra={
                    "employee_id": employee_id,
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "error": str(exc),
                })
                return _failure(employee_id, exc)
            return EmployeeOutcome(
                employee_id=employee_id,
                success=True,
                payroll_id=model.id,
                net_salary=calculation.totals.net_salary,
            )

    def process_period(
        self,
        period_id: UUID,
        worked_by_employee: Mapping[str, WorkedInput],
        actor_id: UUID,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """
        Calculate and store the payroll of every listed employee.

        Args:
            period_id: Period to process; must not be closed.
            worked_by_employee: Worked time keyed by employee id.
            actor_id: Recorded as creator/updater of the payrolls.
            cancel_event: When set, no further employees are launched.

        Returns:
            BatchResult with one outcome per launched or rejected employee
            and the ids that were never launched.
        """
        batch_id = uuid4()
        with LogContext.bind(batch_id=str(batch_id), period_id=str(period_id)):
            try:
                period_model = self._service.lock_open_period(period_id, "process_period")
                period: Period = period_model.to_dto()
                calculator: PayrollCalculator = self._service.build_calculator()

                jobs, outcomes = self._prepare(worked_by_employee)
                logger.info("batch_started", extra={
                    "period_code": period.code,
                    "employee_count": len(worked_by_employee),
                    "launchable": len(jobs),
                    "max_workers": self._max_workers,
                })

                skipped: list[str] = []
                cancelled = False
                in_flight: dict[Future, str] = {}

                def drain(block_until_below: int) -> None:
                    while len(in_flight) >= block_until_below and in_flight:
                        done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                        for future in sorted(done, key=in_flight.__getitem__):
                            employee_id = in_flight.pop(future)
                            outcomes.append(
                                self._apply(period_model, employee_id, future, actor_id)
                            )

                with ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="payroll-batch",
                ) as pool:
                    for index, job in enumerate(jobs):
                        drain(self._max_workers)
                        if cancel_event is not None and cancel_event.is_set():
                            cancelled = True
                            skipped = [j.employee.id for j in jobs[index:]]
                            logger.warning("batch_cancelled", extra={
                                "launched": index,
                                "skipped": len(skipped),
                            })
                            break
                        future = pool.submit(
                            calculator.calculate,
                            employee=job.employee,
                            period_end=period.end_date,
                            worked=job.worked,
                            benefits=job.benefits,
                        )
                        in_flight[future] = job.employee.id
                    drain(1)

                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

            self._periods.refresh_period_totals(period_id, actor_id)

            result = BatchResult(
                batch_id=batch_id,
                period_id=period_id,
                outcomes=tuple(sorted(outcomes, key=lambda o: o.employee_id)),
                skipped=tuple(skipped),
                cancelled=cancelled,
            )
            logger.info("batch_completed", extra={
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
                "skipped": len(result.skipped),
                "cancelled": cancelled,
            })
            return result

"""
Payroll Period Manager (``payroll_module.periods``).

Responsibility
--------------
Owns the lifecycle of payroll periods (create, open, close, reopen) and
their rollups.  Period totals are never trusted on their own: they are
recomputed from the period's payrolls with ``PayrollAggregator.fold_period``
and the cached columns on the period row are refreshed from that
recomputation.

Architecture position
---------------------
**Modules layer** -- sibling of ``PayrollService``; shares its workflows
and selectors.

Invariants enforced
-------------------
* Periods never overlap; ``end_date >= start_date``; ``pay_date`` is not
  before ``start_date``.
* Transitions follow ``PERIOD_WORKFLOW``; close is allowed only from
  ``processing``.
* Close is refused while any payroll of the period is still draft or
  calculated.
* Rollups exclude rejected payrolls.
* ``approve_period`` is all-or-nothing: one refused payroll rolls back
  every approval of the call.

Failure modes
-------------
* Bad dates  -> ``PayrollValidationError``.
* Overlap  -> ``PeriodOverlapError``.
* Illegal transition  -> ``InvalidPeriodTransitionError``.
* Close with pending payrolls  -> ``PeriodHasPendingPayrollsError``.
* No processing period covers the date  -> ``PeriodNotFoundError``.
* Bulk approval of a closed period  -> ``ClosedPeriodError``.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import (
    ClosedPeriodError,
    PayrollValidationError,
    PeriodHasPendingPayrollsError,
    PeriodNotFoundError,
    PeriodOverlapError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.services.base import BaseService
from payroll_kernel.services.workflow_executor import WorkflowExecutor
from payroll_engines.aggregator import PayrollAggregator, PeriodTotals
from payroll_module.models import (
    Payroll,
    PayrollStatus,
    Period,
    PeriodStatus,
    PeriodSummary,
)
from payroll_module.orm import PayrollModel, PayrollPeriodModel
from payroll_module.selectors import PayrollSelector, PeriodSelector
from payroll_module.workflows import PayrollLifecycle

logger = get_logger("modules.payroll.periods")

_CACHED_FIELDS = ("total_gross", "total_deductions", "total_taxes", "total_net")

PENDING_STATUSES = (PayrollStatus.DRAFT, PayrollStatus.CALCULATED)


class PayrollPeriodManager(BaseService[PayrollPeriodModel]):
    """
    Period lifecycle and rollups.

    Contract:
        Write methods commit on success and roll back and re-raise on
        failure.  ``period_summary`` and ``verify_period_totals`` only read.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        workflow_executor: WorkflowExecutor | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._lifecycle = PayrollLifecycle(self._clock, workflow_executor)
        self._aggregator = PayrollAggregator()
        self._periods = PeriodSelector(session)
        self._payrolls = PayrollSelector(session)

    def _get_period_for_update(self, period_id: UUID) -> PayrollPeriodModel:
        model = self.session.execute(
            select(PayrollPeriodModel)
            .where(PayrollPeriodModel.id == period_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise PeriodNotFoundError(str(period_id))
        return model

    def _get_period(self, period_id: UUID) -> Period:
        period = self._periods.get(period_id)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def _recompute(self, period_id: UUID) -> PeriodTotals:
        return self._aggregator.fold_period(
            (p.status.value, p.totals) for p in self._payrolls.list_for_period(period_id)
        )

    @staticmethod
    def _apply_totals(model: PayrollPeriodModel, totals: PeriodTotals) -> None:
        model.total_employees = totals.total_employees
        for name in _CACHED_FIELDS:
            setattr(model, name, getattr(totals, name))

    # ------------------------------------------------------------------
    # Creation and queries
    # ------------------------------------------------------------------

    def create_period(
        self,
        code: str,
        name: str,
        start_date: date,
        end_date: date,
        pay_date: date,
        actor_id: UUID,
        description: str | None = None,
    ) -> Period:
        """Create a draft period after validating its window."""
        try:
            if not code:
                raise PayrollValidationError("code", "period code is required")
            if end_date < start_date:
                raise PayrollValidationError(
                    "end_date", f"{end_date} is before start_date {start_date}",
                )
            if pay_date < start_date:
                raise PayrollValidationError(
                    "pay_date", f"{pay_date} is before start_date {start_date}",
                )
            if self._periods.get_by_code(code) is not None:
                raise PayrollValidationError("code", f"period '{code}' already exists")

            overlapping = self._periods.find_overlapping(start_date, end_date)
            if overlapping:
                other = overlapping[0]
                raise PeriodOverlapError(
                    code,
                    other.code,
                    str(max(start_date, other.start_date)),
                    str(min(end_date, other.end_date)),
                )

            period = Period(
                id=uuid4(),
                code=code,
                name=name,
                start_date=start_date,
                end_date=end_date,
                pay_date=pay_date,
                description=description,
            )
            model = PayrollPeriodModel.from_dto(period, created_by_id=actor_id)
            self.session.add(model)
            self.session.flush()
            self.session.commit()

            logger.info("payroll_period_created", extra={
                "period_id": str(period.id),
                "period_code": code,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "pay_date": pay_date.isoformat(),
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def get_period(self, period_id: UUID) -> Period:
        return self._get_period(period_id)

    def list_periods(self, status: PeriodStatus | Iterable[PeriodStatus] | None = None) -> list[Period]:
        if isinstance(status, PeriodStatus):
            status = [status]
        return self._periods.list_periods(statuses=status)

    def current_period(self, on: date | None = None) -> Period:
        """
        The processing period whose window contains ``on`` (default: today
        by the service clock).

        Raises:
            PeriodNotFoundError: No processing period covers the date.
        """
        on = on or self._clock.now().date()
        period = self._periods.find_containing(on, statuses=[PeriodStatus.PROCESSING])
        if period is None:
            raise PeriodNotFoundError(f"current period on {on.isoformat()}")
        return period

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(self, period_id: UUID, action: str, actor_id: UUID, apply) -> Period:
        try:
            model = self._get_period_for_update(period_id)
            current = model.to_dto()
            updated = apply(current)
            if action == "close":
                counts = self._payrolls.count_by_status(period_id)
                pending = sum(counts[s.value] for s in PENDING_STATUSES)
                if pending:
                    raise PeriodHasPendingPayrollsError(current.code, pending)
                totals = self._recompute(period_id)
                updated = dataclasses.replace(
                    updated,
                    total_employees=totals.total_employees,
                    **{name: getattr(totals, name) for name in _CACHED_FIELDS},
                )
            model.apply_dto(updated)
            model.updated_by_id = actor_id
            self.session.flush()
            self.session.commit()

            logger.info("payroll_period_transitioned", extra={
                "period_id": str(period_id),
                "period_code": current.code,
                "action": action,
                "from_status": current.status.value,
                "to_status": updated.status.value,
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def open_period(self, period_id: UUID, actor_id: UUID) -> Period:
        """draft -> processing."""
        return self._transition(period_id, "open", actor_id, self._lifecycle.open_period)

    def close_period(self, period_id: UUID, actor_id: UUID) -> Period:
        """processing -> closed.  Refreshes the cached totals as part of the close.

        Raises:
            PeriodHasPendingPayrollsError: Draft or calculated payrolls remain.
        """
        return self._transition(
            period_id, "close", actor_id,
            lambda p: self._lifecycle.close_period(p, actor_id),
        )

    def reopen_period(self, period_id: UUID, actor_id: UUID, reason: str | None = None) -> Period:
        """closed -> processing, administrative."""
        period = self._transition(period_id, "reopen", actor_id, self._lifecycle.reopen_period)
        logger.warning("payroll_period_reopened", extra={
            "period_id": str(period_id),
            "period_code": period.code,
            "reason": reason,
            "actor_id": str(actor_id),
        })
        return period

    # ------------------------------------------------------------------
    # Rollups
    # ------------------------------------------------------------------

    def period_summary(self, period_id: UUID) -> PeriodSummary:
        """Totals recomputed from the period's payrolls, with per-status counts."""
        period = self._get_period(period_id)
        totals = self._recompute(period_id)
        return PeriodSummary(
            period_id=period.id,
            period_code=period.code,
            status=period.status,
            total_employees=totals.total_employees,
            total_gross=totals.total_gross,
            total_deductions=totals.total_deductions,
            total_taxes=totals.total_taxes,
            total_net=totals.total_net,
            status_counts=self._payrolls.count_by_status(period_id),
        )

    def refresh_period_totals(self, period_id: UUID, actor_id: UUID) -> Period:
        """Rewrite the cached rollup columns from a fresh recomputation."""
        try:
            model = self._get_period_for_update(period_id)
            totals = self._recompute(period_id)
            self._apply_totals(model, totals)
            model.updated_by_id = actor_id
            self.session.flush()
            self.session.commit()

            logger.info("payroll_period_totals_refreshed", extra={
                "period_id": str(period_id),
                "total_employees": totals.total_employees,
                "total_gross": str(totals.total_gross),
                "total_net": str(totals.total_net),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def verify_period_totals(self, period_id: UUID) -> dict[str, tuple[Decimal, Decimal]]:
        """
        Compare the cached columns with a recomputation.

        Returns:
            ``{field: (cached, recomputed)}`` for each disagreeing field;
            empty when the cache is consistent.
        """
        period = self._get_period(period_id)
        totals = self._recompute(period_id)
        mismatches: dict[str, tuple[Decimal, Decimal]] = {}
        for name in ("total_employees", *_CACHED_FIELDS):
            cached, recomputed = getattr(period, name), getattr(totals, name)
            if cached != recomputed:
                mismatches[name] = (cached, recomputed)
        if mismatches:
            logger.warning("payroll_period_totals_mismatch", extra={
                "period_id": str(period_id),
                "fields": sorted(mismatches),
            })
        return mismatches

    def approve_period(self, period_id: UUID, approver_id: UUID) -> list[Payroll]:
        """
        Approve every calculated payroll of the period.

        All-or-nothing: if any payroll is refused (e.g. negative net) the
        whole call is rolled back and the error re-raised.
        """
        try:
            period_model = self._get_period_for_update(period_id)
            if not period_model.to_dto().accepts_payroll_changes:
                raise ClosedPeriodError(period_model.code, "approve_period")

            models = self.session.execute(
                select(PayrollModel)
                .where(
                    PayrollModel.period_id == period_id,
                    PayrollModel.status == PayrollStatus.CALCULATED.value,
                )
                .order_by(PayrollModel.employee_id)
                .with_for_update()
            ).scalars().all()

            approved: list[Payroll] = []
            with self.session.begin_nested():
                for model in models:
                    payroll = self._lifecycle.approve(model.to_dto(), approver_id)
                    model.apply_dto(payroll, approver_id)
                    approved.append(payroll)
                self.session.flush()
            self.session.commit()

            logger.info("payroll_period_approved", extra={
                "period_id": str(period_id),
                "period_code": period_model.code,
                "approved_count": len(approved),
                "actor_id": str(approver_id),
            })
            return [self._payrolls.get(p.id) for p in approved]
        except Exception:
            self.session.rollback()
            raise

"""
Payroll query selectors.

Provides read-only access to periods, payrolls, concepts and benefit
assignments.  Every filter is an explicit parameter; there are no implicit
scopes (a "pending payrolls" query is ``list_for_period(period_id,
statuses=[PayrollStatus.CALCULATED])``).

Selectors return DTOs from ``payroll_module.models`` and
``payroll_kernel.domain.values``, never ORM instances.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payroll_kernel.domain.values import BenefitAssignment, Concept, ConceptType
from payroll_kernel.selectors.base import BaseSelector
from payroll_module.models import (
    FROZEN_STATUSES,
    Payroll,
    PayrollStatus,
    Period,
    PeriodStatus,
)
from payroll_module.orm import (
    BenefitAssignmentModel,
    ConceptModel,
    PayrollLineModel,
    PayrollModel,
    PayrollPeriodModel,
)


def _values(statuses: Iterable[PayrollStatus | PeriodStatus]) -> list[str]:
    return [s.value for s in statuses]


class PeriodSelector(BaseSelector[PayrollPeriodModel]):
    """Selector for payroll periods."""

    def get(self, period_id: UUID) -> Period | None:
        model = self.session.get(PayrollPeriodModel, period_id)
        return model.to_dto() if model is not None else None

    def get_by_code(self, code: str) -> Period | None:
        model = self.session.execute(
            select(PayrollPeriodModel).where(PayrollPeriodModel.code == code)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_periods(
        self,
        statuses: Iterable[PeriodStatus] | None = None,
    ) -> list[Period]:
        """
        List periods ordered by start date.

        Args:
            statuses: Restrict to these statuses; None means all.
        """
        query = select(PayrollPeriodModel).order_by(
            PayrollPeriodModel.start_date, PayrollPeriodModel.code,
        )
        if statuses is not None:
            query = query.where(PayrollPeriodModel.status.in_(_values(statuses)))
        return [m.to_dto() for m in self.session.execute(query).scalars().all()]

    def find_containing(
        self,
        on: date,
        statuses: Iterable[PeriodStatus] | None = None,
    ) -> Period | None:
        """The period whose [start, end] window contains ``on``."""
        query = select(PayrollPeriodModel).where(
            PayrollPeriodModel.start_date <= on,
            PayrollPeriodModel.end_date >= on,
        )
        if statuses is not None:
            query = query.where(PayrollPeriodModel.status.in_(_values(statuses)))
        model = self.session.execute(
            query.order_by(PayrollPeriodModel.start_date)
        ).scalars().first()
        return model.to_dto() if model is not None else None

    def find_overlapping(
        self,
        start_date: date,
        end_date: date,
        exclude_id: UUID | None = None,
    ) -> list[Period]:
        """Periods whose [start, end] window intersects the given one."""
        query = (
            select(PayrollPeriodModel)
            .where(
                PayrollPeriodModel.start_date <= end_date,
                PayrollPeriodModel.end_date >= start_date,
            )
            .order_by(PayrollPeriodModel.start_date)
        )
        if exclude_id is not None:
            query = query.where(PayrollPeriodModel.id != exclude_id)
        return [m.to_dto() for m in self.session.execute(query).scalars().all()]


class PayrollSelector(BaseSelector[PayrollModel]):
    """
    Selector for payroll records.

    Returned ``Payroll`` values carry their full line-item set.
    """

    def get(self, payroll_id: UUID) -> Payroll | None:
        model = self.session.get(PayrollModel, payroll_id)
        return model.to_dto() if model is not None else None

    def list_for_period(
        self,
        period_id: UUID,
        statuses: Iterable[PayrollStatus] | None = None,
    ) -> list[Payroll]:
        """
        Payrolls of a period ordered by employee id.

        Args:
            period_id: Period to read.
            statuses: Restrict to these statuses; None means all, rejected
                included.
        """
        query = (
            select(PayrollModel)
            .where(PayrollModel.period_id == period_id)
            .order_by(PayrollModel.employee_id, PayrollModel.created_at)
        )
        if statuses is not None:
            query = query.where(PayrollModel.status.in_(_values(statuses)))
        return [m.to_dto() for m in self.session.execute(query).scalars().all()]

    def count_by_status(self, period_id: UUID) -> dict[str, int]:
        """Payroll count per status for a period; every status is present."""
        rows = self.session.execute(
            select(PayrollModel.status, func.count(PayrollModel.id))
            .where(PayrollModel.period_id == period_id)
            .group_by(PayrollModel.status)
        ).all()
        counts = {status.value: 0 for status in PayrollStatus}
        for status, count in rows:
            counts[status] = count
        return counts


class ConceptSelector(BaseSelector[ConceptModel]):
    """Selector for concept definitions and their versions."""

    def get_current(self, code: str) -> Concept | None:
        """The highest version of a concept code, active or not."""
        model = self.session.execute(
            select(ConceptModel)
            .where(ConceptModel.code == code)
            .order_by(ConceptModel.version.desc())
        ).scalars().first()
        return model.to_dto() if model is not None else None

    def versions(self, code: str) -> list[Concept]:
        models = self.session.execute(
            select(ConceptModel)
            .where(ConceptModel.code == code)
            .order_by(ConceptModel.version)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list_concepts(
        self,
        concept_type: ConceptType | None = None,
        active: bool | None = True,
        mandatory: bool | None = None,
    ) -> list[Concept]:
        """
        Concepts ordered by display order then code.

        Args:
            concept_type: Restrict to one type; None means all.
            active: True for active only (the default), False for inactive
                only, None for every version.
            mandatory: Restrict by the mandatory flag; None means both.
        """
        query = select(ConceptModel).order_by(
            ConceptModel.display_order, ConceptModel.code, ConceptModel.version,
        )
        if concept_type is not None:
            query = query.where(ConceptModel.concept_type == concept_type.value)
        if active is not None:
            query = query.where(ConceptModel.active == active)
        if mandatory is not None:
            query = query.where(ConceptModel.is_mandatory == mandatory)
        return [m.to_dto() for m in self.session.execute(query).scalars().all()]

    def count_finalized_references(self, code: str, version: int) -> int:
        """Line items of approved-or-later payrolls computed with this version."""
        return self.session.execute(
            select(func.count(PayrollLineModel.id))
            .join(PayrollModel, PayrollLineModel.payroll_id == PayrollModel.id)
            .where(
                PayrollLineModel.concept_code == code,
                PayrollLineModel.concept_version == version,
                PayrollModel.status.in_(_values(FROZEN_STATUSES)),
            )
        ).scalar_one()


class BenefitSelector(BaseSelector[BenefitAssignmentModel]):
    """Selector for benefit assignments."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, assignment_id: UUID) -> BenefitAssignment | None:
        model = self.session.get(BenefitAssignmentModel, assignment_id)
        return model.to_dto() if model is not None else None

    def for_employee(
        self,
        employee_id: str,
        active: bool | None = None,
    ) -> list[BenefitAssignment]:
        """
        Assignments of one employee.  Effective-date filtering is the
        ``BenefitAssigner``'s job, not the selector's.
        """
        query = (
            select(BenefitAssignmentModel)
            .where(BenefitAssignmentModel.employee_id == employee_id)
            .order_by(
                BenefitAssignmentModel.concept_code,
                BenefitAssignmentModel.effective_date,
            )
        )
        if active is not None:
            query = query.where(BenefitAssignmentModel.active == active)
        return [m.to_dto() for m in self.session.execute(query).scalars().all()]

    def for_employees(
        self,
        employee_ids: Iterable[str],
        active: bool | None = None,
    ) -> dict[str, list[BenefitAssignment]]:
        ids = list(employee_ids)
        result: dict[str, list[BenefitAssignment]] = {eid: [] for eid in ids}
        if not ids:
            return result
        query = (
            select(BenefitAssignmentModel)
            .where(BenefitAssignmentModel.employee_id.in_(ids))
            .order_by(
                BenefitAssignmentModel.employee_id,
                BenefitAssignmentModel.concept_code,
                BenefitAssignmentModel.effective_date,
            )
        )
        if active is not None:
            query = query.where(BenefitAssignmentModel.active == active)
        for model in self.session.execute(query).scalars().all():
            result[model.employee_id].append(model.to_dto())
        return result

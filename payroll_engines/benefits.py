"""
payroll_engines.benefits -- Effective benefit selection and frequency normalization.

Responsibility:
    Given an employee's benefit assignments and an evaluation date, select
    the assignments in effect and pair each with its concept and the
    monthly-equivalent factor of its frequency.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Depends on ConceptCatalog.

Invariants enforced:
    - An assignment is effective on ``d`` when it is active,
      ``effective_date <= d`` and ``end_date`` is unset or ``>= d``.
    - Output order is deterministic: (concept_code, effective_date, id).
    - Assignments are never mutated.

Known approximation:
    Frequencies are normalized with fixed monthly factors (weekly 4.33,
    biweekly 2.17, monthly 1), not exact calendar arithmetic.  The factors
    are configurable through ``PayrollConfig.frequency_factors``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from payroll_kernel.domain.values import BenefitAssignment, Concept, Frequency
from payroll_kernel.logging_config import get_logger
from payroll_engines.concepts import ConceptCatalog

logger = get_logger("engines.benefits")

DEFAULT_FREQUENCY_FACTORS: dict[Frequency, Decimal] = {
    Frequency.WEEKLY: Decimal("4.33"),
    Frequency.BIWEEKLY: Decimal("2.17"),
    Frequency.MONTHLY: Decimal("1"),
}


@dataclass(frozen=True)
class ResolvedBenefit:
    """An effective assignment together with its concept and monthly factor."""
    assignment: BenefitAssignment
    concept: Concept
    factor: Decimal

    @property
    def monthly_amount(self) -> Decimal | None:
        """Fixed amount normalized to a month, or None for rate-based benefits."""
        if self.assignment.amount is None:
            return None
        return self.assignment.amount * self.factor


class BenefitAssigner:
    """Resolves which benefit assignments apply on a date."""

    def __init__(
        self,
        catalog: ConceptCatalog,
        frequency_factors: Mapping[Frequency, Decimal] | None = None,
    ) -> None:
        self._catalog = catalog
        self._factors = dict(DEFAULT_FREQUENCY_FACTORS)
        if frequency_factors:
            self._factors.update(frequency_factors)

    def monthly_factor(self, frequency: Frequency) -> Decimal:
        return self._factors.get(frequency, Decimal("1"))

    def effective_assignments(
        self,
        assignments: Iterable[BenefitAssignment],
        employee_id: str,
        on: date,
    ) -> tuple[ResolvedBenefit, ...]:
        """Assignments for ``employee_id`` in effect on ``on``, resolved and ordered.

        Assignments whose concept is unknown or inactive are skipped with a
        warning.
        """
        selected = sorted(
            (
                a for a in assignments
                if a.employee_id == employee_id and a.is_effective_on(on)
            ),
            key=lambda a: (a.concept_code, a.effective_date, str(a.id)),
        )

        resolved: list[ResolvedBenefit] = []
        for assignment in selected:
            concept = self._catalog.find(assignment.concept_code)
            if concept is None or not concept.active:
                logger.warning(
                    "benefit_concept_unavailable",
                    extra={
                        "employee_id": employee_id,
                        "assignment_id": str(assignment.id),
                        "concept_code": assignment.concept_code,
                        "reason": "unknown" if concept is None else "inactive",
                    },
                )
                continue
            resolved.append(
                ResolvedBenefit(
                    assignment=assignment,
                    concept=concept,
                    factor=self.monthly_factor(assignment.frequency),
                )
            )
        return tuple(resolved)

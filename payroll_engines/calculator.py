"""
payroll_engines.calculator -- One employee, one period: line items and totals.

Responsibility:
    Produce the ordered line items (earnings, then deductions, then taxes)
    and the resulting totals for a single employee in a single period.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Depends on ConceptCatalog,
    BenefitAssigner, PayrollAggregator, an OvertimePolicy and a
    WithholdingPolicy.

Resolution order:
    1. base salary
    2. overtime pay, via the overtime policy
    3. earning benefits, then mandatory earning concepts not covered by a
       benefit (base amount = base salary)
    4. gross so far = base + overtime + earnings
    5. deduction/tax benefits, then mandatory deduction/tax concepts not
       covered by a benefit (base amount = gross so far).  The concept named
       by the withholding policy takes its amount from the policy and is
       left out when nothing is withheld.
    6. totals, folded by the aggregator

Invariants enforced:
    - Earnings are fully resolved before any deduction or tax is computed.
    - Deterministic: identical inputs and catalog give identical lines and
      totals.  No clock, no randomness, no I/O.
    - A failing formula affects only its own concept (zero contribution).

Benefit rules:
    fixed amount  -> fixed strategy with the assignment amount,
                     quantity = monthly factor
    rate          -> percentage strategy at the assignment rate
                     (earnings against base salary, deductions/taxes against
                     gross), quantity = monthly factor
    neither       -> the concept's own strategy, quantity = monthly factor
    The concept's minimum/maximum clamps always apply.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from payroll_kernel.domain.values import (
    HUNDRED,
    TYPE_ORDER,
    ZERO,
    BenefitAssignment,
    CalculationType,
    Concept,
    ConceptType,
    EmployeeInput,
    LineSource,
    PayrollLine,
    PayrollTotals,
    WorkedTime,
    round_money,
)
from payroll_kernel.logging_config import get_logger
from payroll_engines.aggregator import PayrollAggregator
from payroll_engines.benefits import BenefitAssigner, ResolvedBenefit
from payroll_engines.concepts import ConceptCatalog, clamp
from payroll_engines.tracer import traced_engine

logger = get_logger("engines.calculator")


class OvertimePolicy(Protocol):
    """Pluggable overtime pay rule."""

    def overtime_amount(self, base_salary: Decimal, overtime_hours: Decimal) -> Decimal:
        ...


@dataclass(frozen=True)
class HourlyMultiplierOvertime:
    """Hourly rate (base / monthly hours) times a multiplier, per overtime hour."""
    monthly_hours: Decimal = Decimal("240")
    multiplier: Decimal = Decimal("1.25")

    def overtime_amount(self, base_salary: Decimal, overtime_hours: Decimal) -> Decimal:
        if overtime_hours <= 0:
            return round_money(ZERO)
        hourly_rate = base_salary / self.monthly_hours
        return round_money(hourly_rate * self.multiplier * overtime_hours)


class WithholdingPolicy(Protocol):
    """Pluggable statutory income withholding, applied to one tax concept."""

    concept_code: str

    def withholding_amount(self, gross_salary: Decimal) -> Decimal:
        ...


@dataclass(frozen=True)
class WithholdingBracket:
    """Marginal rate (percent) on annual taxable income up to ``upper_limit``."""
    upper_limit: Decimal | None
    rate: Decimal


DEFAULT_WITHHOLDING_BRACKETS: tuple[WithholdingBracket, ...] = (
    WithholdingBracket(Decimal("1340000"), Decimal("0")),
    WithholdingBracket(Decimal("3496000"), Decimal("19")),
    WithholdingBracket(Decimal("5738000"), Decimal("28")),
    WithholdingBracket(None, Decimal("33")),
)


@dataclass(frozen=True)
class BracketWithholding:
    """
    Withholding from annualized marginal brackets.

    Gross above ``exempt_amount`` is annualized, taxed bracket by bracket,
    and divided back to one period:

        taxable = gross - exempt_amount
        annual  = taxable * periods_per_year
        amount  = sum(rate_i * portion of annual inside bracket i) / periods_per_year
    """
    concept_code: str = "RETENCION_FUENTE"
    exempt_amount: Decimal = Decimal("2392000")
    periods_per_year: int = 12
    brackets: tuple[WithholdingBracket, ...] = DEFAULT_WITHHOLDING_BRACKETS

    def __post_init__(self):
        if self.exempt_amount < 0:
            raise ValueError("exempt_amount cannot be negative")
        if self.periods_per_year < 1:
            raise ValueError("periods_per_year must be at least 1")
        if not self.brackets or self.brackets[-1].upper_limit is not None:
            raise ValueError("the last withholding bracket must be open-ended")
        previous = ZERO
        for bracket in self.brackets[:-1]:
            if bracket.upper_limit is None or bracket.upper_limit <= previous:
                raise ValueError("withholding bracket limits must be positive and ascending")
            previous = bracket.upper_limit
        if any(not ZERO <= b.rate <= HUNDRED for b in self.brackets):
            raise ValueError("withholding rates must be between 0 and 100")

    def annual_tax(self, annual_taxable: Decimal) -> Decimal:
        tax = ZERO
        lower = ZERO
        for bracket in self.brackets:
            if annual_taxable <= lower:
                break
            upper = annual_taxable if bracket.upper_limit is None else min(
                annual_taxable, bracket.upper_limit
            )
            tax += (upper - lower) * bracket.rate / HUNDRED
            if bracket.upper_limit is None:
                break
            lower = bracket.upper_limit
        return tax

    def withholding_amount(self, gross_salary: Decimal) -> Decimal:
        taxable = gross_salary - self.exempt_amount
        if taxable <= 0:
            return round_money(ZERO)
        annual = self.annual_tax(taxable * self.periods_per_year)
        return round_money(annual / self.periods_per_year)


@dataclass(frozen=True)
class PayrollCalculation:
    """Result of one calculation run."""
    employee_id: str
    period_end: date
    worked: WorkedTime
    lines: tuple[PayrollLine, ...]
    totals: PayrollTotals
    catalog_fingerprint: str


class PayrollCalculator:
    """Computes a payroll for one employee and period."""

    def __init__(
        self,
        catalog: ConceptCatalog,
        assigner: BenefitAssigner | None = None,
        overtime_policy: OvertimePolicy | None = None,
        aggregator: PayrollAggregator | None = None,
        withholding_policy: WithholdingPolicy | None = None,
    ) -> None:
        self._catalog = catalog
        self._assigner = assigner or BenefitAssigner(catalog)
        self._overtime = overtime_policy or HourlyMultiplierOvertime()
        self._aggregator = aggregator or PayrollAggregator()
        self._withholding = withholding_policy or BracketWithholding()

    @property
    def catalog(self) -> ConceptCatalog:
        return self._catalog

    @traced_engine(
        "payroll_calculator", "1.0",
        fingerprint_fields=("employee", "period_end", "worked", "benefits"),
    )
    def calculate(
        self,
        employee: EmployeeInput,
        period_end: date,
        worked: WorkedTime,
        benefits: Iterable[BenefitAssignment] = (),
    ) -> PayrollCalculation:
        """Calculate line items and totals.

        Args:
            employee: Employee id and base salary.
            period_end: Benefits are evaluated on this date.
            worked: Worked days/hours and overtime hours.
            benefits: The employee's benefit assignments (any state; the
                effective ones are selected here).
        """
        base_salary = employee.base_salary
        overtime_amount = self._overtime.overtime_amount(base_salary, worked.overtime_hours)

        resolved = self._assigner.effective_assignments(benefits, employee.id, period_end)
        covered = {b.concept.code for b in resolved}

        lines: list[PayrollLine] = []

        # Earnings
        for benefit in resolved:
            if benefit.concept.concept_type == ConceptType.EARNING:
                lines.append(self._benefit_line(benefit, base_salary))
        for concept in self._catalog.concepts(
            concept_type=ConceptType.EARNING, active=True, mandatory=True
        ):
            if concept.code in covered or not concept.applies_to_salary(base_salary):
                continue
            lines.append(self._catalog_line(concept, base_salary, worked))

        gross_so_far = base_salary + overtime_amount + sum(
            (line.amount for line in lines), ZERO
        )

        # Deductions and taxes, against gross
        for benefit in resolved:
            if benefit.concept.concept_type != ConceptType.EARNING:
                lines.append(self._benefit_line(benefit, gross_so_far))
        for concept_type in (ConceptType.DEDUCTION, ConceptType.TAX):
            for concept in self._catalog.concepts(
                concept_type=concept_type, active=True, mandatory=True
            ):
                if concept.code in covered or not concept.applies_to_salary(base_salary):
                    continue
                if concept.code == self._withholding.concept_code:
                    withheld = self._withholding_line(concept, gross_so_far)
                    if withheld is not None:
                        lines.append(withheld)
                    continue
                lines.append(self._catalog_line(concept, gross_so_far, worked))

        ordered = sorted(lines, key=lambda line: TYPE_ORDER[line.concept_type])
        sequenced = tuple(
            dataclasses.replace(line, sequence=i)
            for i, line in enumerate(ordered, start=1)
        )
        totals = self._aggregator.fold(sequenced, base_salary, overtime_amount)

        logger.debug(
            "payroll_calculated",
            extra={
                "employee_id": employee.id,
                "line_count": len(sequenced),
                "gross_salary": totals.gross_salary,
                "net_salary": totals.net_salary,
            },
        )

        return PayrollCalculation(
            employee_id=employee.id,
            period_end=period_end,
            worked=worked,
            lines=sequenced,
            totals=totals,
            catalog_fingerprint=self._catalog.fingerprint,
        )

    def _benefit_line(self, benefit: ResolvedBenefit, base_amount: Decimal) -> PayrollLine:
        assignment = benefit.assignment
        concept = benefit.concept
        rate: Decimal | None = None

        if assignment.amount is not None:
            effective = dataclasses.replace(
                concept,
                calculation_type=CalculationType.FIXED,
                default_value=assignment.amount,
            )
            line_base = assignment.amount
        elif assignment.rate is not None:
            effective = dataclasses.replace(
                concept, calculation_type=CalculationType.PERCENTAGE
            )
            rate = assignment.rate
            line_base = base_amount
        else:
            effective = concept
            line_base = base_amount
            rate = concept.default_rate

        amount = self._catalog.calculate_amount(effective, base_amount, rate, benefit.factor)
        return PayrollLine(
            concept_code=concept.code,
            concept_name=concept.name,
            concept_type=concept.concept_type,
            base_amount=line_base,
            rate=rate,
            quantity=benefit.factor,
            amount=amount,
            sequence=0,
            source=LineSource.BENEFIT,
            concept_version=concept.version,
        )

    def _withholding_line(self, concept: Concept, gross: Decimal) -> PayrollLine | None:
        amount = round_money(clamp(
            self._withholding.withholding_amount(gross),
            concept.minimum_amount,
            concept.maximum_amount,
        ))
        if amount == 0:
            return None
        return PayrollLine(
            concept_code=concept.code,
            concept_name=concept.name,
            concept_type=concept.concept_type,
            base_amount=gross,
            rate=None,
            quantity=Decimal("1"),
            amount=amount,
            sequence=0,
            source=LineSource.CATALOG,
            concept_version=concept.version,
        )

    def _catalog_line(
        self, concept: Concept, base_amount: Decimal, worked: WorkedTime
    ) -> PayrollLine:
        quantity = worked.quantity_for(concept.quantity_source)
        amount = self._catalog.calculate_amount(
            concept, base_amount, concept.default_rate, quantity
        )
        return PayrollLine(
            concept_code=concept.code,
            concept_name=concept.name,
            concept_type=concept.concept_type,
            base_amount=base_amount,
            rate=concept.default_rate,
            quantity=quantity,
            amount=amount,
            sequence=0,
            source=LineSource.CATALOG,
            concept_version=concept.version,
        )

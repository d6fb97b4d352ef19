"""
payroll_engines.aggregator -- Fold line items into payroll and period totals.

Responsibility:
    Pure summation.  Payroll totals are a function of the line items plus
    base salary and overtime; period totals are a function of the contained
    payrolls' totals.  Stored totals are never trusted: ``verify`` compares
    them against a fresh fold.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - total_earnings = sum of earning lines
    - gross = base + overtime + total_earnings
    - net = gross - total_deductions - total_taxes
    - Period rollups exclude rejected payrolls.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from payroll_kernel.domain.values import (
    ZERO,
    ConceptType,
    PayrollLine,
    PayrollTotals,
    round_money,
)

TOTAL_FIELDS: tuple[str, ...] = (
    "overtime_amount",
    "total_earnings",
    "gross_salary",
    "total_deductions",
    "total_taxes",
    "net_salary",
)


@dataclass(frozen=True)
class TotalsVerification:
    """Stored totals compared against totals recomputed from line items."""
    stored: PayrollTotals
    recomputed: PayrollTotals
    mismatches: dict[str, tuple[Decimal, Decimal]] = field(default_factory=dict)

    @property
    def matches(self) -> bool:
        return not self.mismatches


@dataclass(frozen=True)
class PeriodTotals:
    """Rollup of payroll totals across a period."""
    total_employees: int
    total_gross: Decimal
    total_deductions: Decimal
    total_taxes: Decimal
    total_net: Decimal


class PayrollAggregator:
    """Folds line items and payroll totals.  Stateless."""

    def fold(
        self,
        lines: Iterable[PayrollLine],
        base_salary: Decimal,
        overtime_amount: Decimal,
    ) -> PayrollTotals:
        sums = {t: ZERO for t in ConceptType}
        for line in lines:
            sums[line.concept_type] += line.amount

        earnings = round_money(sums[ConceptType.EARNING])
        deductions = round_money(sums[ConceptType.DEDUCTION])
        taxes = round_money(sums[ConceptType.TAX])
        gross = round_money(base_salary + overtime_amount + earnings)
        return PayrollTotals(
            base_salary=base_salary,
            overtime_amount=round_money(overtime_amount),
            total_earnings=earnings,
            gross_salary=gross,
            total_deductions=deductions,
            total_taxes=taxes,
            net_salary=gross - deductions - taxes,
        )

    def verify(
        self,
        stored: PayrollTotals,
        lines: Iterable[PayrollLine],
    ) -> TotalsVerification:
        """Recompute totals from ``lines`` and compare field by field."""
        recomputed = self.fold(lines, stored.base_salary, stored.overtime_amount)
        mismatches = {
            name: (getattr(stored, name), getattr(recomputed, name))
            for name in TOTAL_FIELDS
            if getattr(stored, name) != getattr(recomputed, name)
        }
        return TotalsVerification(stored=stored, recomputed=recomputed, mismatches=mismatches)

    def fold_period(
        self,
        payrolls: Iterable[tuple[str, PayrollTotals]],
        excluded_statuses: frozenset[str] = frozenset({"rejected"}),
    ) -> PeriodTotals:
        """Roll up ``(status, totals)`` pairs, skipping excluded statuses."""
        count = 0
        gross = deductions = taxes = net = ZERO
        for status, totals in payrolls:
            if status in excluded_statuses:
                continue
            count += 1
            gross += totals.gross_salary
            deductions += totals.total_deductions
            taxes += totals.total_taxes
            net += totals.net_salary
        return PeriodTotals(
            total_employees=count,
            total_gross=round_money(gross),
            total_deductions=round_money(deductions),
            total_taxes=round_money(taxes),
            total_net=round_money(net),
        )

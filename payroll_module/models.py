"""
Payroll Domain Models (``payroll_module.models``).

Responsibility
--------------
Frozen dataclass value objects for the persisted nouns of payroll: periods,
payroll records, calculation previews and period summaries.  Concepts,
benefit assignments, line items and totals live in
``payroll_kernel.domain.values`` because the pure engines consume them too.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Returned by the
services; converted to and from ORM rows by ``payroll_module.orm``.

Invariants enforced
-------------------
* All models are ``frozen=True``.  Lifecycle changes produce new values via
  the transition functions in ``payroll_module.workflows``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from payroll_kernel.domain.values import (
    ZERO,
    PayrollLine,
    PayrollTotals,
    WorkedTime,
)


class PayrollStatus(Enum):
    """Payroll lifecycle states."""
    DRAFT = "draft"
    CALCULATED = "calculated"
    APPROVED = "approved"
    PROCESSED = "processed"
    PAID = "paid"
    REJECTED = "rejected"


# Line items are frozen in these states.
FROZEN_STATUSES: frozenset[PayrollStatus] = frozenset({
    PayrollStatus.APPROVED,
    PayrollStatus.PROCESSED,
    PayrollStatus.PAID,
})


class PeriodStatus(Enum):
    """Payroll period lifecycle states."""
    DRAFT = "draft"
    PROCESSING = "processing"
    CLOSED = "closed"


@dataclass(frozen=True)
class Period:
    """A fixed window over which payrolls are computed and aggregated."""
    id: UUID
    code: str
    name: str
    start_date: date
    end_date: date
    pay_date: date
    status: PeriodStatus = PeriodStatus.DRAFT
    total_employees: int = 0
    total_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_taxes: Decimal = ZERO
    total_net: Decimal = ZERO
    closed_at: datetime | None = None
    closed_by: UUID | None = None
    description: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    @property
    def accepts_payroll_changes(self) -> bool:
        return self.status in (PeriodStatus.DRAFT, PeriodStatus.PROCESSING)


@dataclass(frozen=True)
class Payroll:
    """The computed compensation record for one employee within one period."""
    id: UUID
    payroll_number: str
    employee_id: str
    period_id: UUID
    base_salary: Decimal
    worked_days: Decimal = ZERO
    worked_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    overtime_amount: Decimal = ZERO
    total_earnings: Decimal = ZERO
    gross_salary: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_taxes: Decimal = ZERO
    net_salary: Decimal = ZERO
    status: PayrollStatus = PayrollStatus.DRAFT
    lines: tuple[PayrollLine, ...] = ()
    rejection_reason: str | None = None
    reopen_reason: str | None = None
    calculated_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    processed_at: datetime | None = None
    paid_at: datetime | None = None
    rejected_at: datetime | None = None
    catalog_fingerprint: str | None = None

    @property
    def worked(self) -> WorkedTime:
        return WorkedTime(
            worked_days=self.worked_days,
            worked_hours=self.worked_hours,
            overtime_hours=self.overtime_hours,
        )

    @property
    def totals(self) -> PayrollTotals:
        return PayrollTotals(
            base_salary=self.base_salary,
            overtime_amount=self.overtime_amount,
            total_earnings=self.total_earnings,
            gross_salary=self.gross_salary,
            total_deductions=self.total_deductions,
            total_taxes=self.total_taxes,
            net_salary=self.net_salary,
        )

    @property
    def is_frozen(self) -> bool:
        return self.status in FROZEN_STATUSES

    @property
    def tax_rate(self) -> Decimal:
        return self.totals.tax_rate

    @property
    def deduction_rate(self) -> Decimal:
        return self.totals.deduction_rate

    @property
    def net_rate(self) -> Decimal:
        return self.totals.net_rate


@dataclass(frozen=True)
class PayrollResult:
    """Preview of a calculation; nothing is persisted."""
    employee_id: str
    period_id: UUID
    base_salary: Decimal
    overtime_amount: Decimal
    total_earnings: Decimal
    gross_salary: Decimal
    total_deductions: Decimal
    total_taxes: Decimal
    net_salary: Decimal
    lines: tuple[PayrollLine, ...]
    catalog_fingerprint: str


@dataclass(frozen=True)
class PeriodSummary:
    """Period rollup recomputed from its payrolls (rejected excluded)."""
    period_id: UUID
    period_code: str
    status: PeriodStatus
    total_employees: int
    total_gross: Decimal
    total_deductions: Decimal
    total_taxes: Decimal
    total_net: Decimal
    status_counts: dict[str, int] = field(default_factory=dict)

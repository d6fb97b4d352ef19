"""
Payroll value records (``payroll_kernel.domain.values``).

Responsibility
--------------
Frozen dataclass value objects shared by the pure engines and the
persistence module: concepts, benefit assignments, employee and worked-time
inputs, computed line items and totals.  Also home of ``round_money``, the
single sanctioned rounding function for payroll amounts.

Architecture position
---------------------
**Kernel domain layer** -- pure data definitions with ZERO I/O.  No
dependency on SQLAlchemy, services or engines.

Invariants enforced
-------------------
* All records are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* Inputs (employee base salary, worked time) are validated on construction,
  before any calculation runs.

Failure modes
-------------
* ``PayrollValidationError`` on invalid construction arguments.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from payroll_kernel.exceptions import PayrollValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# Every amount, rate and quantity stays strictly below this magnitude, so
# sums of line items fit NUMERIC(38, 9) and quantize to cents in a 28-digit
# context.
MAX_AMOUNT = Decimal("1E20")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to ``decimal_places`` using half-up rounding.

    This is the ONLY sanctioned rounding function for payroll amounts.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "0"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def canonical_scale(value: Decimal) -> Decimal:
    """Drop trailing fractional zeros: ``4.330000000`` -> ``4.33``, ``240.00`` -> ``240``."""
    normalized = value.normalize()
    if normalized.as_tuple().exponent > 0:
        return normalized.quantize(Decimal(1))
    return normalized


def check_range(value: Decimal | None, field: str) -> None:
    """Refuse magnitudes at or above ``MAX_AMOUNT``."""
    if value is not None and abs(value) >= MAX_AMOUNT:
        raise PayrollValidationError(field, f"{value} is outside the payroll amount range")


def to_decimal(value: Any, field: str) -> Decimal:
    """Convert an input number to Decimal without passing through float math."""
    if isinstance(value, bool) or value is None:
        raise PayrollValidationError(field, f"expected a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise PayrollValidationError(field, f"not a number: {value!r}") from exc
    if not result.is_finite():
        raise PayrollValidationError(field, f"not a finite number: {value!r}")
    return result


class ConceptType(Enum):
    """Kinds of compensation rule."""
    EARNING = "earning"
    DEDUCTION = "deduction"
    TAX = "tax"


class CalculationType(Enum):
    """Calculation strategies for a concept."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    RATE = "rate"
    FORMULA = "formula"


class QuantitySource(Enum):
    """What drives ``quantity`` when a concept is resolved from the catalog."""
    ONE = "one"
    WORKED_DAYS = "worked_days"
    WORKED_HOURS = "worked_hours"
    OVERTIME_HOURS = "overtime_hours"


class Frequency(Enum):
    """Benefit assignment frequencies."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class LineSource(Enum):
    """Where a line item came from."""
    BENEFIT = "benefit"
    CATALOG = "catalog"


# Line items are ordered earnings -> deductions -> taxes.
TYPE_ORDER: dict[ConceptType, int] = {
    ConceptType.EARNING: 0,
    ConceptType.DEDUCTION: 1,
    ConceptType.TAX: 2,
}


@dataclass(frozen=True)
class Concept:
    """A configurable compensation rule (earning, deduction, or tax)."""
    code: str
    name: str
    concept_type: ConceptType
    calculation_type: CalculationType
    default_value: Decimal = ZERO
    default_rate: Decimal | None = None
    formula: str | None = None
    minimum_amount: Decimal | None = None
    maximum_amount: Decimal | None = None
    is_taxable: bool = False
    is_mandatory: bool = False
    active: bool = True
    description: str = ""
    display_order: int = 0
    quantity_source: QuantitySource = QuantitySource.ONE
    salary_ceiling: Decimal | None = None
    version: int = 1

    def __post_init__(self):
        if not self.code or not self.code.strip():
            raise PayrollValidationError("code", "concept code is required")
        if self.calculation_type == CalculationType.FORMULA and not self.formula:
            raise PayrollValidationError(
                "formula", f"concept {self.code} uses the formula strategy but has no formula"
            )
        if (
            self.minimum_amount is not None
            and self.maximum_amount is not None
            and self.minimum_amount > self.maximum_amount
        ):
            raise PayrollValidationError(
                "minimum_amount",
                f"concept {self.code}: minimum {self.minimum_amount} exceeds "
                f"maximum {self.maximum_amount}",
            )
        if self.version < 1:
            raise PayrollValidationError("version", "must be >= 1")
        for name in ("default_value", "default_rate", "minimum_amount",
                     "maximum_amount", "salary_ceiling"):
            check_range(getattr(self, name), name)

    def applies_to_salary(self, base_salary: Decimal) -> bool:
        """True unless a salary ceiling excludes this base salary."""
        return self.salary_ceiling is None or base_salary <= self.salary_ceiling


@dataclass(frozen=True)
class BenefitAssignment:
    """A recurring, employee-specific instantiation of a concept."""
    id: UUID
    employee_id: str
    concept_code: str
    effective_date: date
    frequency: Frequency = Frequency.MONTHLY
    amount: Decimal | None = None
    rate: Decimal | None = None
    end_date: date | None = None
    active: bool = True
    notes: str | None = None

    def __post_init__(self):
        if self.amount is not None and self.rate is not None:
            raise PayrollValidationError(
                "amount", "a benefit carries either a fixed amount or a rate, not both"
            )
        if self.end_date is not None and self.end_date < self.effective_date:
            raise PayrollValidationError("end_date", "must not precede effective_date")
        check_range(self.amount, "amount")
        check_range(self.rate, "rate")

    def is_effective_on(self, on: date) -> bool:
        """Active, started, and not yet ended on ``on``."""
        return (
            self.active
            and self.effective_date <= on
            and (self.end_date is None or self.end_date >= on)
        )


@dataclass(frozen=True)
class EmployeeInput:
    """Employee base data consumed by the calculator."""
    id: str
    base_salary: Decimal

    def __post_init__(self):
        if not self.id:
            raise PayrollValidationError("employee_id", "is required")
        salary = to_decimal(self.base_salary, "base_salary")
        if salary <= 0:
            raise PayrollValidationError("base_salary", f"must be > 0, got {salary}")
        check_range(salary, "base_salary")
        object.__setattr__(self, "base_salary", canonical_scale(salary))


@dataclass(frozen=True)
class WorkedTime:
    """Attendance-derived worked time for one employee and period."""
    worked_days: Decimal
    worked_hours: Decimal
    overtime_hours: Decimal

    FIELDS = ("worked_days", "worked_hours", "overtime_hours")

    def __post_init__(self):
        for name in self.FIELDS:
            value = to_decimal(getattr(self, name), name)
            if value < 0:
                raise PayrollValidationError(name, f"must be >= 0, got {value}")
            check_range(value, name)
            object.__setattr__(self, name, canonical_scale(value))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> WorkedTime:
        """Build from a mapping; every field is required."""
        missing = [name for name in cls.FIELDS if data.get(name) is None]
        if missing:
            raise PayrollValidationError(missing[0], "required worked-time field is missing")
        return cls(**{name: data[name] for name in cls.FIELDS})

    def quantity_for(self, source: QuantitySource) -> Decimal:
        if source == QuantitySource.WORKED_DAYS:
            return self.worked_days
        if source == QuantitySource.WORKED_HOURS:
            return self.worked_hours
        if source == QuantitySource.OVERTIME_HOURS:
            return self.overtime_hours
        return Decimal("1")


@dataclass(frozen=True)
class PayrollLine:
    """A single concept's contribution within a payroll."""
    concept_code: str
    concept_name: str
    concept_type: ConceptType
    base_amount: Decimal
    rate: Decimal | None
    quantity: Decimal
    amount: Decimal
    sequence: int
    source: LineSource
    concept_version: int = 1

    def __post_init__(self):
        # Stored and freshly computed lines compare and print alike.
        object.__setattr__(self, "base_amount", round_money(self.base_amount))
        object.__setattr__(self, "amount", round_money(self.amount))
        object.__setattr__(self, "quantity", canonical_scale(self.quantity))
        if self.rate is not None:
            object.__setattr__(self, "rate", canonical_scale(self.rate))


def _ratio(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return ZERO
    return round_money(part / whole * HUNDRED)


@dataclass(frozen=True)
class PayrollTotals:
    """Summary totals folded from a payroll's line items."""
    base_salary: Decimal
    overtime_amount: Decimal
    total_earnings: Decimal
    gross_salary: Decimal
    total_deductions: Decimal
    total_taxes: Decimal
    net_salary: Decimal

    @property
    def tax_rate(self) -> Decimal:
        """Taxes as a percentage of gross (0 when gross is 0)."""
        return _ratio(self.total_taxes, self.gross_salary)

    @property
    def deduction_rate(self) -> Decimal:
        """Deductions as a percentage of gross (0 when gross is 0)."""
        return _ratio(self.total_deductions, self.gross_salary)

    @property
    def net_rate(self) -> Decimal:
        """Net as a percentage of gross (0 when gross is 0)."""
        return _ratio(self.net_salary, self.gross_salary)

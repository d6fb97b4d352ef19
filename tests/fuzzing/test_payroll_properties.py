"""
Property-based tests for the payroll calculator.

Random salaries, worked time, benefit assignments and overtime/withholding
settings are run through ``PayrollCalculator`` against the packaged catalog.

Properties checked:
- gross = base + overtime + sum(earning lines)
- net = gross - sum(deduction lines) - sum(tax lines)
- Every line amount and total is rounded to cents
- Lines are grouped earnings -> deductions -> taxes and numbered from 1
- Calculating twice with the same inputs gives the same result
- Withholding never decreases as gross grows
"""

from datetime import date
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from payroll_config.loader import load_concept_catalog
from payroll_engines.calculator import (
    BracketWithholding,
    HourlyMultiplierOvertime,
    PayrollCalculator,
)
from payroll_kernel.domain.values import (
    TYPE_ORDER,
    ZERO,
    BenefitAssignment,
    ConceptType,
    EmployeeInput,
    Frequency,
    WorkedTime,
    round_money,
)

PERIOD_END = date(2024, 1, 31)

CATALOG = load_concept_catalog()

BENEFIT_CODES = [
    "BONIFICACION",
    "COMISION",
    "AUXILIO_ALIMENTACION",
    "SALUD_EMPLEADO",
    "PRESTAMO_EMPRESA",
    "EMBARGO",
    "FONDO_SOLIDARIDAD",
    "RETENCION_FUENTE",
]


def money(min_value="0", max_value="10000000"):
    return st.decimals(
        min_value=Decimal(min_value),
        max_value=Decimal(max_value),
        places=2,
        allow_nan=False,
        allow_infinity=False,
    )


def rates(max_value="100"):
    return st.decimals(
        min_value=Decimal("0"),
        max_value=Decimal(max_value),
        places=2,
        allow_nan=False,
        allow_infinity=False,
    )


@composite
def worked_times(draw):
    return WorkedTime(
        worked_days=Decimal(draw(st.integers(min_value=0, max_value=31))),
        worked_hours=draw(money("0", "300")),
        overtime_hours=draw(money("0", "120")),
    )


@composite
def benefit_assignments(draw):
    code = draw(st.sampled_from(BENEFIT_CODES))
    kind = draw(st.sampled_from(["amount", "rate", "concept"]))
    return BenefitAssignment(
        id=draw(st.uuids()),
        employee_id="EMP-001",
        concept_code=code,
        effective_date=date(2024, 1, 1),
        frequency=draw(st.sampled_from(list(Frequency))),
        amount=draw(money("0", "5000000")) if kind == "amount" else None,
        rate=draw(rates("30")) if kind == "rate" else None,
    )


@composite
def calculators(draw):
    return PayrollCalculator(
        CATALOG,
        overtime_policy=HourlyMultiplierOvertime(
            multiplier=draw(st.decimals(
                min_value=Decimal("1"), max_value=Decimal("3"), places=2,
                allow_nan=False, allow_infinity=False,
            )),
        ),
        withholding_policy=BracketWithholding(
            exempt_amount=draw(money("0", "5000000")),
        ),
    )


def _sum(lines, concept_type):
    return sum((l.amount for l in lines if l.concept_type == concept_type), ZERO)


class TestTotalsProperties:

    @given(
        calculator=calculators(),
        salary=money("1", "50000000"),
        worked=worked_times(),
        benefits=st.lists(benefit_assignments(), max_size=5),
    )
    @settings(max_examples=200, deadline=None)
    def test_gross_and_net_identities(self, calculator, salary, worked, benefits):
        result = calculator.calculate(
            employee=EmployeeInput(id="EMP-001", base_salary=salary),
            period_end=PERIOD_END,
            worked=worked,
            benefits=benefits,
        )
        totals = result.totals
        earnings = _sum(result.lines, ConceptType.EARNING)
        deductions = _sum(result.lines, ConceptType.DEDUCTION)
        taxes = _sum(result.lines, ConceptType.TAX)

        assert totals.total_earnings == earnings
        assert totals.gross_salary == salary + totals.overtime_amount + earnings
        assert totals.total_deductions == deductions
        assert totals.total_taxes == taxes
        assert totals.net_salary == totals.gross_salary - deductions - taxes

    @given(
        salary=money("1", "50000000"),
        worked=worked_times(),
        benefits=st.lists(benefit_assignments(), max_size=5),
    )
    @settings(max_examples=100, deadline=None)
    def test_amounts_are_cents(self, salary, worked, benefits):
        result = PayrollCalculator(CATALOG).calculate(
            employee=EmployeeInput(id="EMP-001", base_salary=salary),
            period_end=PERIOD_END,
            worked=worked,
            benefits=benefits,
        )

        for line in result.lines:
            assert line.amount == round_money(line.amount)
            assert line.amount.as_tuple().exponent == -2
        for value in (
            result.totals.overtime_amount,
            result.totals.gross_salary,
            result.totals.net_salary,
        ):
            assert value == round_money(value)

    @given(
        salary=money("1", "50000000"),
        worked=worked_times(),
        benefits=st.lists(benefit_assignments(), max_size=5),
    )
    @settings(max_examples=100, deadline=None)
    def test_lines_grouped_and_numbered(self, salary, worked, benefits):
        result = PayrollCalculator(CATALOG).calculate(
            employee=EmployeeInput(id="EMP-001", base_salary=salary),
            period_end=PERIOD_END,
            worked=worked,
            benefits=benefits,
        )

        order = [TYPE_ORDER[l.concept_type] for l in result.lines]
        assert order == sorted(order)
        assert [l.sequence for l in result.lines] == list(range(1, len(result.lines) + 1))


class TestDeterminism:

    @given(
        calculator=calculators(),
        salary=money("1", "50000000"),
        worked=worked_times(),
        benefits=st.lists(benefit_assignments(), max_size=5),
    )
    @settings(max_examples=100, deadline=None)
    def test_calculating_twice_is_identical(self, calculator, salary, worked, benefits):
        employee = EmployeeInput(id="EMP-001", base_salary=salary)

        first = calculator.calculate(
            employee=employee, period_end=PERIOD_END, worked=worked, benefits=benefits,
        )
        second = calculator.calculate(
            employee=employee, period_end=PERIOD_END, worked=worked,
            benefits=list(reversed(benefits)),
        )

        assert first == second


class TestWithholdingProperties:

    @given(low=money("0", "100000000"), extra=money("0", "100000000"))
    @settings(max_examples=200, deadline=None)
    def test_monotonic_in_gross(self, low, extra):
        policy = BracketWithholding()

        assert ZERO <= policy.withholding_amount(low) <= policy.withholding_amount(low + extra)

    @given(gross=money("0", "100000000"))
    @settings(max_examples=200, deadline=None)
    def test_never_above_top_marginal_rate(self, gross):
        policy = BracketWithholding()
        taxable = max(gross - policy.exempt_amount, ZERO)

        assert policy.withholding_amount(gross) <= round_money(taxable * Decimal("0.33"))

"""
Tests for PayrollCalculator.

The reference scenario: base salary 2,500,000, 30 days / 240 hours, no
overtime, default catalog.  Transport allowance 140,606 applies (salary
under the ceiling), gross 2,640,606.00, health and pension 4% each
(105,624.24).  Withholding: 248,606 above the exempt amount, annualized to
2,983,272, 19% of the part above 1,340,000 is 312,221.68 a year, 26,018.47 a
month.  Net 2,403,339.05.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_engines.calculator import (
    BracketWithholding,
    HourlyMultiplierOvertime,
    PayrollCalculator,
    WithholdingBracket,
)
from payroll_engines.concepts import ConceptCatalog
from payroll_kernel.domain.values import (
    BenefitAssignment,
    CalculationType,
    Concept,
    ConceptType,
    EmployeeInput,
    Frequency,
    LineSource,
    WorkedTime,
)
from payroll_kernel.exceptions import PayrollValidationError

PERIOD_END = date(2024, 1, 31)


@pytest.fixture
def calculator(default_catalog):
    return PayrollCalculator(default_catalog)


def employee(salary="2500000", employee_id="EMP-001") -> EmployeeInput:
    return EmployeeInput(id=employee_id, base_salary=Decimal(salary))


def benefit(code, **kwargs) -> BenefitAssignment:
    return BenefitAssignment(
        id=uuid4(),
        employee_id=kwargs.pop("employee_id", "EMP-001"),
        concept_code=code,
        effective_date=kwargs.pop("effective_date", date(2024, 1, 1)),
        **kwargs,
    )


class TestReferenceScenario:

    def test_totals(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(), period_end=PERIOD_END, worked=full_month,
        )
        totals = result.totals

        assert totals.base_salary == Decimal("2500000")
        assert totals.overtime_amount == Decimal("0.00")
        assert totals.total_earnings == Decimal("140606.00")
        assert totals.gross_salary == Decimal("2640606.00")
        assert totals.total_deductions == Decimal("211248.48")
        assert totals.total_taxes == Decimal("26018.47")
        assert totals.net_salary == Decimal("2403339.05")

    def test_lines(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(), period_end=PERIOD_END, worked=full_month,
        )

        assert [(l.sequence, l.concept_code, l.amount) for l in result.lines] == [
            (1, "SUBSIDIO_TRANSPORTE", Decimal("140606.00")),
            (2, "SALUD_EMPLEADO", Decimal("105624.24")),
            (3, "PENSION_EMPLEADO", Decimal("105624.24")),
            (4, "RETENCION_FUENTE", Decimal("26018.47")),
        ]
        health = result.lines[1]
        assert health.base_amount == Decimal("2640606.00")
        assert health.rate == Decimal("4")
        assert health.source == LineSource.CATALOG

    def test_deterministic(self, calculator, full_month):
        first = calculator.calculate(
            employee=employee(), period_end=PERIOD_END, worked=full_month,
        )
        second = calculator.calculate(
            employee=employee(), period_end=PERIOD_END, worked=full_month,
        )

        assert first == second

    def test_emits_engine_trace(self, calculator, full_month, captured_logs):
        calculator.calculate(employee=employee(), period_end=PERIOD_END, worked=full_month)

        traces = [r for r in captured_logs() if r["message"] == "PAYROLL_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "payroll_calculator"
        assert len(traces[0]["input_fingerprint"]) == 16


class TestSalaryCeiling:

    def test_transport_excluded_above_ceiling(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee("4000000", "EMP-003"), period_end=PERIOD_END, worked=full_month,
        )

        assert "SUBSIDIO_TRANSPORTE" not in [l.concept_code for l in result.lines]
        assert result.totals.gross_salary == Decimal("4000000.00")
        assert result.totals.total_deductions == Decimal("320000.00")
        assert result.totals.total_taxes == Decimal("459295.00")
        assert result.totals.net_salary == Decimal("3220705.00")


class TestOvertime:

    def test_hourly_rate_times_multiplier(self, calculator):
        worked = WorkedTime(
            worked_days=Decimal("30"), worked_hours=Decimal("240"), overtime_hours=Decimal("10"),
        )

        result = calculator.calculate(
            employee=employee(), period_end=PERIOD_END, worked=worked,
        )

        # 2,500,000 / 240 * 1.25 * 10
        assert result.totals.overtime_amount == Decimal("130208.33")
        assert result.totals.gross_salary == Decimal("2770814.33")
        assert result.lines[1].amount == Decimal("110832.57")

    def test_policy_is_pluggable(self, default_catalog):
        calculator = PayrollCalculator(
            default_catalog,
            overtime_policy=HourlyMultiplierOvertime(multiplier=Decimal("2")),
        )
        worked = WorkedTime(
            worked_days=Decimal("30"), worked_hours=Decimal("240"), overtime_hours=Decimal("1"),
        )

        result = calculator.calculate(
            employee=employee("2400000"), period_end=PERIOD_END, worked=worked,
        )

        assert result.totals.overtime_amount == Decimal("20000.00")


class TestBenefits:

    def test_fixed_earning_raises_gross_before_deductions(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(),
            period_end=PERIOD_END,
            worked=full_month,
            benefits=[benefit("BONIFICACION", amount=Decimal("100000"))],
        )

        lines = {l.concept_code: l for l in result.lines}
        assert lines["BONIFICACION"].amount == Decimal("100000.00")
        assert lines["BONIFICACION"].source == LineSource.BENEFIT
        assert result.totals.gross_salary == Decimal("2740606.00")
        assert lines["SALUD_EMPLEADO"].amount == Decimal("109624.24")

    def test_rate_earning_uses_base_salary(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(),
            period_end=PERIOD_END,
            worked=full_month,
            benefits=[benefit("COMISION", rate=Decimal("10"))],
        )

        lines = {l.concept_code: l for l in result.lines}
        assert lines["COMISION"].amount == Decimal("250000.00")
        assert lines["COMISION"].base_amount == Decimal("2500000")

    def test_rate_deduction_uses_gross(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(),
            period_end=PERIOD_END,
            worked=full_month,
            benefits=[benefit("FONDO_SOLIDARIDAD", rate=Decimal("1"))],
        )

        lines = {l.concept_code: l for l in result.lines}
        assert lines["FONDO_SOLIDARIDAD"].amount == Decimal("26406.06")

    def test_weekly_deduction_normalized(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(),
            period_end=PERIOD_END,
            worked=full_month,
            benefits=[benefit(
                "PRESTAMO_EMPRESA", amount=Decimal("50000"), frequency=Frequency.WEEKLY,
            )],
        )

        lines = {l.concept_code: l for l in result.lines}
        assert lines["PRESTAMO_EMPRESA"].amount == Decimal("216500.00")
        assert lines["PRESTAMO_EMPRESA"].quantity == Decimal("4.33")

    def test_benefit_replaces_mandatory_concept(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(),
            period_end=PERIOD_END,
            worked=full_month,
            benefits=[benefit("SALUD_EMPLEADO", rate=Decimal("2"))],
        )

        health = [l for l in result.lines if l.concept_code == "SALUD_EMPLEADO"]
        assert len(health) == 1
        assert health[0].amount == Decimal("52812.12")

    def test_lines_grouped_by_type(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(),
            period_end=PERIOD_END,
            worked=full_month,
            benefits=[
                benefit("RETENCION_FUENTE", rate=Decimal("2")),
                benefit("EMBARGO", amount=Decimal("10000")),
                benefit("BONIFICACION", amount=Decimal("5000")),
            ],
        )

        types = [l.concept_type for l in result.lines]
        assert types == sorted(
            types,
            key=[ConceptType.EARNING, ConceptType.DEDUCTION, ConceptType.TAX].index,
        )
        assert [l.sequence for l in result.lines] == list(range(1, len(result.lines) + 1))
        assert result.totals.total_taxes > 0


class TestWithholding:

    def test_line_for_reference_scenario(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(), period_end=PERIOD_END, worked=full_month,
        )

        withholding = result.lines[-1]
        assert withholding.concept_code == "RETENCION_FUENTE"
        assert withholding.concept_type == ConceptType.TAX
        assert withholding.base_amount == Decimal("2640606.00")
        assert withholding.rate is None
        assert withholding.quantity == Decimal("1")
        assert withholding.source == LineSource.CATALOG

    def test_no_line_below_exempt_amount(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee("1300000", "EMP-002"), period_end=PERIOD_END, worked=full_month,
        )

        assert "RETENCION_FUENTE" not in [l.concept_code for l in result.lines]
        assert result.totals.total_taxes == Decimal("0.00")
        assert result.totals.net_salary == Decimal("1325357.52")

    def test_exempt_amount_itself_is_not_withheld(self):
        assert BracketWithholding().withholding_amount(Decimal("2392000")) == Decimal("0.00")

    @pytest.mark.parametrize("annual, tax", [
        ("0", "0"),
        ("1340000", "0"),
        ("1340100", "19"),
        ("3496000", "409640"),
        ("3496100", "409668"),
        ("5738000", "1037400"),
        ("5738100", "1037433"),
    ])
    def test_bracket_edges(self, annual, tax):
        assert BracketWithholding().annual_tax(Decimal(annual)) == Decimal(tax)

    def test_annual_figure_divided_back_to_one_period(self):
        policy = BracketWithholding(periods_per_year=1)

        assert policy.withholding_amount(Decimal("2392000") + Decimal("3496000")) == Decimal(
            "409640.00"
        )

    def test_top_bracket(self):
        # 1,608,000 taxable -> 19,296,000 a year -> 5,511,540 tax
        assert BracketWithholding().withholding_amount(Decimal("4000000")) == Decimal(
            "459295.00"
        )

    def test_benefit_overrides_policy(self, calculator, full_month):
        result = calculator.calculate(
            employee=employee(),
            period_end=PERIOD_END,
            worked=full_month,
            benefits=[benefit("RETENCION_FUENTE", rate=Decimal("2"))],
        )

        withheld = [l for l in result.lines if l.concept_code == "RETENCION_FUENTE"]
        assert len(withheld) == 1
        assert withheld[0].amount == Decimal("52812.12")
        assert withheld[0].source == LineSource.BENEFIT

    def test_policy_is_pluggable(self, default_catalog, full_month):
        calculator = PayrollCalculator(
            default_catalog,
            withholding_policy=BracketWithholding(
                exempt_amount=Decimal("0"),
                brackets=(WithholdingBracket(None, Decimal("10")),),
            ),
        )

        result = calculator.calculate(
            employee=employee(), period_end=PERIOD_END, worked=full_month,
        )

        assert result.totals.total_taxes == Decimal("264060.60")

    def test_catalog_without_withholding_concept(self, default_catalog, full_month):
        catalog = ConceptCatalog(
            c for c in default_catalog.concepts()
            if c.code in ("SUBSIDIO_TRANSPORTE", "SALUD_EMPLEADO", "PENSION_EMPLEADO")
        )

        result = PayrollCalculator(catalog).calculate(
            employee=employee(), period_end=PERIOD_END, worked=full_month,
        )

        assert result.totals.total_taxes == Decimal("0.00")
        assert result.totals.net_salary == Decimal("2429357.52")

    @pytest.mark.parametrize("kwargs", [
        {"exempt_amount": Decimal("-1")},
        {"periods_per_year": 0},
        {"brackets": ()},
        {"brackets": (WithholdingBracket(Decimal("100"), Decimal("0")),)},
        {"brackets": (
            WithholdingBracket(Decimal("100"), Decimal("0")),
            WithholdingBracket(Decimal("50"), Decimal("10")),
            WithholdingBracket(None, Decimal("20")),
        )},
        {"brackets": (WithholdingBracket(None, Decimal("101")),)},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            BracketWithholding(**kwargs)


class TestFormulaContainment:

    def test_oversized_mandatory_earning_contributes_zero(
        self, default_catalog, full_month, captured_logs,
    ):
        runaway = Concept(
            code="PRIMA_EXTRA",
            name="Prima Extra",
            concept_type=ConceptType.EARNING,
            calculation_type=CalculationType.FORMULA,
            formula="baseAmount * baseAmount * baseAmount * baseAmount * baseAmount",
            is_mandatory=True,
        )
        catalog = ConceptCatalog([*default_catalog.concepts(), runaway])

        result = PayrollCalculator(catalog).calculate(
            employee=employee(), period_end=PERIOD_END, worked=full_month,
        )

        lines = {l.concept_code: l for l in result.lines}
        assert lines["PRIMA_EXTRA"].amount == Decimal("0.00")
        assert result.totals.gross_salary == Decimal("2640606.00")
        assert result.totals.net_salary == Decimal("2403339.05")
        assert any(
            r["message"] == "formula_evaluation_failed" and r["concept_code"] == "PRIMA_EXTRA"
            for r in captured_logs()
        )


class TestInputValidation:

    @pytest.mark.parametrize("salary", ["0", "-1"])
    def test_non_positive_salary(self, salary):
        with pytest.raises(PayrollValidationError):
            EmployeeInput(id="EMP-001", base_salary=Decimal(salary))

    def test_negative_worked_time(self):
        with pytest.raises(PayrollValidationError) as exc_info:
            WorkedTime(
                worked_days=Decimal("30"), worked_hours=Decimal("-1"), overtime_hours=Decimal("0"),
            )
        assert exc_info.value.field == "worked_hours"

    def test_missing_worked_field(self):
        with pytest.raises(PayrollValidationError) as exc_info:
            WorkedTime.from_mapping({"worked_days": 30, "worked_hours": 240})
        assert exc_info.value.field == "overtime_hours"

"""
Tests for PayrollAggregator: payroll folding, verification, period rollups.
"""

from decimal import Decimal

from payroll_engines.aggregator import PayrollAggregator
from payroll_kernel.domain.values import ConceptType, LineSource, PayrollLine, PayrollTotals


def line(code, concept_type, amount, sequence=1) -> PayrollLine:
    return PayrollLine(
        concept_code=code,
        concept_name=code,
        concept_type=concept_type,
        base_amount=Decimal("0"),
        rate=None,
        quantity=Decimal("1"),
        amount=Decimal(amount),
        sequence=sequence,
        source=LineSource.CATALOG,
    )


LINES = (
    line("SUBSIDIO_TRANSPORTE", ConceptType.EARNING, "140606.00", 1),
    line("SALUD_EMPLEADO", ConceptType.DEDUCTION, "105624.24", 2),
    line("PENSION_EMPLEADO", ConceptType.DEDUCTION, "105624.24", 3),
    line("RETENCION_FUENTE", ConceptType.TAX, "1000.00", 4),
)


class TestFold:

    def test_net_is_gross_minus_deductions_and_taxes(self):
        totals = PayrollAggregator().fold(LINES, Decimal("2500000"), Decimal("0"))

        assert totals.total_earnings == Decimal("140606.00")
        assert totals.gross_salary == Decimal("2640606.00")
        assert totals.total_deductions == Decimal("211248.48")
        assert totals.total_taxes == Decimal("1000.00")
        assert totals.net_salary == (
            totals.gross_salary - totals.total_deductions - totals.total_taxes
        )

    def test_overtime_enters_gross(self):
        totals = PayrollAggregator().fold((), Decimal("1000"), Decimal("250.5"))

        assert totals.gross_salary == Decimal("1250.50")
        assert totals.overtime_amount == Decimal("250.50")

    def test_empty_lines(self):
        totals = PayrollAggregator().fold((), Decimal("1000"), Decimal("0"))

        assert totals.net_salary == Decimal("1000.00")
        assert totals.total_taxes == Decimal("0.00")

    def test_ratios(self):
        totals = PayrollAggregator().fold(LINES, Decimal("2500000"), Decimal("0"))

        assert totals.deduction_rate == Decimal("8.00")
        assert totals.net_rate == Decimal("91.96")

    def test_ratio_with_zero_gross(self):
        totals = PayrollTotals(
            base_salary=Decimal("0"),
            overtime_amount=Decimal("0"),
            total_earnings=Decimal("0"),
            gross_salary=Decimal("0"),
            total_deductions=Decimal("0"),
            total_taxes=Decimal("0"),
            net_salary=Decimal("0"),
        )

        assert totals.tax_rate == Decimal("0")


class TestVerify:

    def test_consistent_totals_match(self):
        aggregator = PayrollAggregator()
        stored = aggregator.fold(LINES, Decimal("2500000"), Decimal("0"))

        result = aggregator.verify(stored, LINES)

        assert result.matches
        assert result.mismatches == {}

    def test_tampered_totals_reported(self):
        aggregator = PayrollAggregator()
        stored = aggregator.fold(LINES, Decimal("2500000"), Decimal("0"))
        tampered = PayrollTotals(**{**stored.__dict__, "net_salary": Decimal("1")})

        result = aggregator.verify(tampered, LINES)

        assert not result.matches
        assert result.mismatches == {"net_salary": (Decimal("1"), stored.net_salary)}

    def test_missing_line_reported(self):
        aggregator = PayrollAggregator()
        stored = aggregator.fold(LINES, Decimal("2500000"), Decimal("0"))

        result = aggregator.verify(stored, LINES[:-1])

        assert set(result.mismatches) == {"total_taxes", "net_salary"}


class TestFoldPeriod:

    def test_rejected_payrolls_excluded(self):
        aggregator = PayrollAggregator()
        a = aggregator.fold(LINES, Decimal("2500000"), Decimal("0"))
        b = aggregator.fold((), Decimal("1300000"), Decimal("0"))

        period = aggregator.fold_period([
            ("calculated", a),
            ("approved", b),
            ("rejected", b),
        ])

        assert period.total_employees == 2
        assert period.total_gross == a.gross_salary + b.gross_salary
        assert period.total_net == a.net_salary + b.net_salary
        assert period.total_deductions == a.total_deductions
        assert period.total_taxes == a.total_taxes

    def test_empty_period(self):
        period = PayrollAggregator().fold_period([])

        assert period.total_employees == 0
        assert period.total_gross == Decimal("0.00")

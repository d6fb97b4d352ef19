"""
Tests for ConceptCatalog.

Covers:
- Lookup and explicit filtering
- The four calculation strategies
- compute -> clamp -> round order
- Formula failures contained as an unclamped zero
- Results outside the payroll amount range
- Deterministic fingerprint
"""

from decimal import Decimal

import pytest

from payroll_engines.concepts import ConceptCatalog, clamp
from payroll_kernel.domain.values import CalculationType, Concept, ConceptType
from payroll_kernel.exceptions import (
    ConceptNotFoundError,
    DuplicateConceptError,
    PayrollValidationError,
)


def make_concept(code="C1", concept_type=ConceptType.EARNING,
                 calculation_type=CalculationType.FIXED, **kwargs) -> Concept:
    return Concept(
        code=code,
        name=code.title(),
        concept_type=concept_type,
        calculation_type=calculation_type,
        **kwargs,
    )


class TestLookup:

    def test_get_and_find(self, default_catalog):
        assert default_catalog.get("SALUD_EMPLEADO").default_rate == Decimal("4")
        assert default_catalog.find("NOPE") is None
        assert "PENSION_EMPLEADO" in default_catalog

    def test_get_unknown_raises(self, default_catalog):
        with pytest.raises(ConceptNotFoundError) as exc_info:
            default_catalog.get("NOPE")
        assert exc_info.value.concept_code == "NOPE"

    def test_duplicate_codes_rejected(self):
        with pytest.raises(DuplicateConceptError):
            ConceptCatalog([make_concept("A"), make_concept("A")])

    def test_filters_are_explicit(self, default_catalog):
        mandatory_deductions = default_catalog.concepts(
            concept_type=ConceptType.DEDUCTION, active=True, mandatory=True,
        )

        assert [c.code for c in mandatory_deductions] == [
            "SALUD_EMPLEADO", "PENSION_EMPLEADO",
        ]
        assert len(default_catalog.concepts()) == len(default_catalog)

    def test_inactive_filter(self):
        catalog = ConceptCatalog([
            make_concept("A"),
            make_concept("B", active=False),
        ])

        assert [c.code for c in catalog.concepts(active=True)] == ["A"]
        assert [c.code for c in catalog.concepts(active=False)] == ["B"]

    def test_order_is_display_order_then_code(self):
        catalog = ConceptCatalog([
            make_concept("Z", display_order=1),
            make_concept("B", display_order=2),
            make_concept("A", display_order=2),
        ])

        assert [c.code for c in catalog.concepts()] == ["Z", "A", "B"]


class TestStrategies:

    def setup_method(self):
        self.catalog = ConceptCatalog([])

    def test_fixed_times_quantity(self):
        concept = make_concept(default_value=Decimal("140606"))

        assert self.catalog.calculate_amount(concept, Decimal("0")) == Decimal("140606.00")
        assert self.catalog.calculate_amount(
            concept, Decimal("0"), quantity=Decimal("2")
        ) == Decimal("281212.00")

    def test_percentage_of_base(self):
        concept = make_concept(
            calculation_type=CalculationType.PERCENTAGE, default_rate=Decimal("4"),
        )

        assert self.catalog.calculate_amount(concept, Decimal("2640606")) == Decimal("105624.24")

    def test_explicit_rate_overrides_default(self):
        concept = make_concept(
            calculation_type=CalculationType.PERCENTAGE, default_rate=Decimal("4"),
        )

        assert self.catalog.calculate_amount(
            concept, Decimal("1000"), rate=Decimal("10"),
        ) == Decimal("100.00")

    def test_rate_times_quantity(self):
        concept = make_concept(
            calculation_type=CalculationType.RATE, default_rate=Decimal("12500"),
        )

        assert self.catalog.calculate_amount(
            concept, Decimal("0"), quantity=Decimal("8"),
        ) == Decimal("100000.00")

    def test_missing_rate_is_zero(self):
        concept = make_concept(calculation_type=CalculationType.PERCENTAGE)

        assert self.catalog.calculate_amount(concept, Decimal("1000")) == Decimal("0.00")

    def test_formula(self):
        concept = make_concept(
            calculation_type=CalculationType.FORMULA,
            formula="baseAmount * rate / 100 + defaultAmount",
            default_value=Decimal("1000"),
            default_rate=Decimal("10"),
        )
        catalog = ConceptCatalog([concept])

        assert catalog.calculate_amount(concept, Decimal("50000")) == Decimal("6000.00")

    def test_rounds_half_up(self):
        concept = make_concept(
            calculation_type=CalculationType.PERCENTAGE, default_rate=Decimal("1"),
        )

        # 1% of 0.5 = 0.005 -> 0.01
        assert self.catalog.calculate_amount(concept, Decimal("0.5")) == Decimal("0.01")


class TestClamping:

    def test_minimum_applies(self):
        concept = make_concept(
            calculation_type=CalculationType.PERCENTAGE,
            default_rate=Decimal("1"),
            minimum_amount=Decimal("50000"),
        )

        # raw 30000
        amount = ConceptCatalog([]).calculate_amount(concept, Decimal("3000000"))

        assert amount == Decimal("50000")

    def test_maximum_applies(self):
        concept = make_concept(
            default_value=Decimal("900"), maximum_amount=Decimal("500"),
        )

        assert ConceptCatalog([]).calculate_amount(concept, Decimal("0")) == Decimal("500")

    def test_clamp_before_round(self):
        concept = make_concept(
            calculation_type=CalculationType.PERCENTAGE,
            default_rate=Decimal("1"),
            maximum_amount=Decimal("10.004"),
        )

        # raw 20 -> clamp 10.004 -> round 10.00
        assert ConceptCatalog([]).calculate_amount(concept, Decimal("2000")) == Decimal("10.00")

    def test_unset_bounds_do_not_clamp(self):
        assert clamp(Decimal("-5"), None, None) == Decimal("-5")
        assert clamp(Decimal("5"), None, Decimal("3")) == Decimal("3")
        assert clamp(Decimal("1"), Decimal("2"), None) == Decimal("2")

    def test_failed_formula_is_zero_not_minimum(self, captured_logs):
        concept = make_concept(
            calculation_type=CalculationType.FORMULA,
            formula="baseAmount / 0",
            minimum_amount=Decimal("100"),
        )
        catalog = ConceptCatalog([concept])

        assert catalog.calculate_amount(concept, Decimal("1000")) == Decimal("0.00")
        assert any(
            r["message"] == "formula_evaluation_failed" and r["concept_code"] == "C1"
            for r in captured_logs()
        )

    def test_uncompilable_formula_logged_at_build(self, captured_logs):
        concept = make_concept(
            calculation_type=CalculationType.FORMULA, formula="open('x')",
        )

        catalog = ConceptCatalog([concept])

        assert catalog.calculate_amount(concept, Decimal("1000")) == Decimal("0.00")
        messages = [r["message"] for r in captured_logs()]
        assert "formula_compile_failed" in messages
        assert "formula_evaluation_failed" in messages


class TestAmountRange:

    QUINTIC = "baseAmount * baseAmount * baseAmount * baseAmount * baseAmount"

    def test_oversized_formula_result_contributes_zero(self, captured_logs):
        concept = make_concept(
            calculation_type=CalculationType.FORMULA,
            formula=self.QUINTIC,
            is_mandatory=True,
        )
        catalog = ConceptCatalog([concept])

        amount = catalog.calculate_amount(concept, Decimal("2500000"))

        assert amount == Decimal("0.00")
        failures = [
            r for r in captured_logs() if r["message"] == "formula_evaluation_failed"
        ]
        assert len(failures) == 1
        assert failures[0]["concept_code"] == "C1"
        assert failures[0]["expression"] == self.QUINTIC

    def test_oversized_result_is_not_clamped_to_minimum(self):
        concept = make_concept(
            calculation_type=CalculationType.FORMULA,
            formula=self.QUINTIC,
            minimum_amount=Decimal("100"),
        )

        amount = ConceptCatalog([concept]).calculate_amount(concept, Decimal("2500000"))

        assert amount == Decimal("0.00")

    def test_large_result_inside_range_is_kept(self):
        concept = make_concept(
            calculation_type=CalculationType.FORMULA,
            formula="baseAmount * baseAmount",
        )

        amount = ConceptCatalog([concept]).calculate_amount(concept, Decimal("2500000"))

        assert amount == Decimal("6250000000000.00")

    def test_oversized_fixed_amount_rejected(self):
        concept = make_concept(default_value=Decimal("1E19"))

        with pytest.raises(PayrollValidationError) as exc_info:
            ConceptCatalog([]).calculate_amount(concept, Decimal("0"), quantity=Decimal("100"))
        assert exc_info.value.field == "amount"

    def test_oversized_concept_value_rejected(self):
        with pytest.raises(PayrollValidationError) as exc_info:
            make_concept(default_value=Decimal("1E20"))
        assert exc_info.value.field == "default_value"


class TestFingerprint:

    def test_independent_of_input_order(self):
        a, b = make_concept("A"), make_concept("B", display_order=4)

        assert ConceptCatalog([a, b]).fingerprint == ConceptCatalog([b, a]).fingerprint

    def test_changes_with_content(self):
        a = make_concept("A", default_value=Decimal("1"))
        a2 = make_concept("A", default_value=Decimal("2"))

        assert ConceptCatalog([a]).fingerprint != ConceptCatalog([a2]).fingerprint

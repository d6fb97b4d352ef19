"""
payroll_engines.concepts -- Read-only registry of compensation concepts.

Responsibility:
    Look up concepts by code, filter them by type / active / mandatory
    status, and compute a concept's amount with its calculation strategy.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Built by the module layer
    from persisted concepts (or by the config loader from a YAML catalog).

Invariants enforced:
    - ``calculate_amount`` always runs compute -> clamp -> round half-up to
      2 places, in that order.
    - Formulas are compiled once, when the catalog is built.  A formula that
      fails to compile is kept as its error and contributes zero.
    - A failed formula's zero contribution is NOT clamped to the minimum.
      Clamping and rounding a formula result are part of the containment: a
      result that cannot be stored also contributes zero.
    - Filtering is explicit: every query states the filters it applies.
    - Iteration order is deterministic: (display_order, code).

Failure modes:
    - DuplicateConceptError if two concepts share a code.
    - ConceptNotFoundError from ``get`` for an unknown code.
    - PayrollValidationError when a fixed, percentage or rate amount lands
      outside the payroll amount range.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation

from payroll_kernel.domain.values import (
    HUNDRED,
    ZERO,
    CalculationType,
    Concept,
    ConceptType,
    check_range,
    round_money,
)
from payroll_kernel.exceptions import (
    ConceptNotFoundError,
    DuplicateConceptError,
    FormulaError,
    FormulaEvaluationError,
    PayrollValidationError,
)
from payroll_kernel.logging_config import get_logger
from payroll_engines.formula import Formula, FormulaEvaluator

logger = get_logger("engines.concepts")

ONE = Decimal("1")


def clamp(amount: Decimal, minimum: Decimal | None, maximum: Decimal | None) -> Decimal:
    """Clamp ``amount`` to the bounds that are set; an unset bound does not clamp."""
    if minimum is not None and amount < minimum:
        return minimum
    if maximum is not None and amount > maximum:
        return maximum
    return amount


class ConceptCatalog:
    """Immutable, code-keyed set of concepts with their compiled formulas."""

    def __init__(
        self,
        concepts: Iterable[Concept],
        evaluator: FormulaEvaluator | None = None,
    ) -> None:
        self._evaluator = evaluator or FormulaEvaluator()
        by_code: dict[str, Concept] = {}
        for concept in concepts:
            if concept.code in by_code:
                raise DuplicateConceptError(concept.code)
            by_code[concept.code] = concept
        self._by_code = by_code
        self._ordered: tuple[Concept, ...] = tuple(
            sorted(by_code.values(), key=lambda c: (c.display_order, c.code))
        )

        self._compiled: dict[str, Formula | FormulaError] = {}
        for concept in self._ordered:
            if concept.calculation_type != CalculationType.FORMULA or not concept.formula:
                continue
            try:
                self._compiled[concept.formula] = self._evaluator.compile(concept.formula)
            except FormulaError as e:
                logger.warning(
                    "formula_compile_failed",
                    extra={
                        "concept_code": concept.code,
                        "expression": concept.formula,
                        "error_code": e.code,
                    },
                )
                self._compiled[concept.formula] = e

        self._fingerprint = self._compute_fingerprint()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, code: object) -> bool:
        return code in self._by_code

    def find(self, code: str) -> Concept | None:
        return self._by_code.get(code)

    def get(self, code: str) -> Concept:
        """Return the concept for ``code``.

        Raises:
            ConceptNotFoundError: No concept with this code.
        """
        concept = self._by_code.get(code)
        if concept is None:
            raise ConceptNotFoundError(code)
        return concept

    def concepts(
        self,
        concept_type: ConceptType | None = None,
        active: bool | None = None,
        mandatory: bool | None = None,
    ) -> tuple[Concept, ...]:
        """Concepts matching every filter given; ``None`` means "any"."""
        return tuple(
            c
            for c in self._ordered
            if (concept_type is None or c.concept_type == concept_type)
            and (active is None or c.active == active)
            and (mandatory is None or c.is_mandatory == mandatory)
        )

    @property
    def fingerprint(self) -> str:
        """Deterministic hash of the catalog's contents."""
        return self._fingerprint

    def _compute_fingerprint(self) -> str:
        parts = [repr(c) for c in sorted(self._ordered, key=lambda c: c.code)]
        return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()[:16]

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    @staticmethod
    def resolve_rate(concept: Concept, rate: Decimal | None) -> Decimal:
        """Explicit rate, else the concept's default rate, else zero."""
        if rate is not None:
            return rate
        if concept.default_rate is not None:
            return concept.default_rate
        return ZERO

    def calculate_amount(
        self,
        concept: Concept,
        base_amount: Decimal,
        rate: Decimal | None = None,
        quantity: Decimal = ONE,
    ) -> Decimal:
        """Compute a concept's amount: strategy, then clamp, then round.

        Strategies:
            fixed       default_value * quantity
            percentage  base_amount * rate / 100 * quantity
            rate        rate * quantity
            formula     evaluated with baseAmount, rate, quantity,
                        defaultAmount and defaultRate
        """
        effective_rate = self.resolve_rate(concept, rate)
        calc = concept.calculation_type

        if calc == CalculationType.FIXED:
            raw = concept.default_value * quantity
        elif calc == CalculationType.PERCENTAGE:
            raw = base_amount * effective_rate / HUNDRED * quantity
        elif calc == CalculationType.RATE:
            raw = effective_rate * quantity
        else:
            return self._formula_amount(concept, base_amount, effective_rate, quantity)

        return self._bounded(concept, raw)

    @staticmethod
    def _bounded(concept: Concept, raw: Decimal) -> Decimal:
        amount = clamp(raw, concept.minimum_amount, concept.maximum_amount)
        check_range(amount, "amount")
        return round_money(amount)

    def _formula_amount(
        self,
        concept: Concept,
        base_amount: Decimal,
        rate: Decimal,
        quantity: Decimal,
    ) -> Decimal:
        expression = concept.formula or ""
        variables = {
            "baseAmount": base_amount,
            "rate": rate,
            "quantity": quantity,
            "defaultAmount": concept.default_value,
            "defaultRate": concept.default_rate if concept.default_rate is not None else ZERO,
        }
        raw, error = self._evaluator.evaluate_or_zero(
            concept.code, expression, variables, compiled=self._compiled.get(expression),
        )
        if error is not None:
            return round_money(ZERO)
        try:
            return self._bounded(concept, raw)
        except (InvalidOperation, PayrollValidationError) as e:
            self._evaluator.report_failure(
                concept.code, FormulaEvaluationError(expression, f"result {raw} cannot be stored: {e}"),
            )
            return round_money(ZERO)

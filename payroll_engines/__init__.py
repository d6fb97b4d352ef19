"""
Module: payroll_engines
Responsibility:
    Package entrypoint that re-exports the pure payroll engines.  This is the
    canonical import surface for payroll_module and payroll_config.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import payroll_kernel (domain values, exceptions, logging).
    MUST NOT import payroll_module.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Dates are passed in as explicit parameters.
    - Decimal-only arithmetic; floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from payroll_engines import ConceptCatalog, PayrollCalculator

    catalog = ConceptCatalog(concepts)
    result = PayrollCalculator(catalog).calculate(
        employee=employee, period_end=period.end_date, worked=worked,
    )
"""

from payroll_engines.aggregator import PayrollAggregator, PeriodTotals, TotalsVerification
from payroll_engines.benefits import (
    DEFAULT_FREQUENCY_FACTORS,
    BenefitAssigner,
    ResolvedBenefit,
)
from payroll_engines.calculator import (
    DEFAULT_WITHHOLDING_BRACKETS,
    BracketWithholding,
    HourlyMultiplierOvertime,
    OvertimePolicy,
    PayrollCalculation,
    PayrollCalculator,
    WithholdingBracket,
    WithholdingPolicy,
)
from payroll_engines.concepts import ConceptCatalog, clamp
from payroll_engines.formula import (
    ALLOWED_VARIABLES,
    Formula,
    FormulaEvaluator,
    compile_formula,
    evaluate,
)
from payroll_engines.tracer import traced_engine

__all__ = [
    "ALLOWED_VARIABLES",
    "BenefitAssigner",
    "BracketWithholding",
    "ConceptCatalog",
    "DEFAULT_FREQUENCY_FACTORS",
    "DEFAULT_WITHHOLDING_BRACKETS",
    "Formula",
    "FormulaEvaluator",
    "HourlyMultiplierOvertime",
    "OvertimePolicy",
    "PayrollAggregator",
    "PayrollCalculation",
    "PayrollCalculator",
    "PeriodTotals",
    "ResolvedBenefit",
    "TotalsVerification",
    "WithholdingBracket",
    "WithholdingPolicy",
    "clamp",
    "compile_formula",
    "evaluate",
    "traced_engine",
]

"""
Pure domain layer.

Immutable value records, money rounding, the clock abstraction and workflow
value types.  Nothing here imports SQLAlchemy or performs I/O.
"""

from payroll_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payroll_kernel.domain.values import (
    BenefitAssignment,
    CalculationType,
    Concept,
    ConceptType,
    EmployeeInput,
    Frequency,
    LineSource,
    PayrollLine,
    PayrollTotals,
    QuantitySource,
    WorkedTime,
    round_money,
)
from payroll_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Guard",
    "Transition",
    "Workflow",
    "BenefitAssignment",
    "CalculationType",
    "Concept",
    "ConceptType",
    "EmployeeInput",
    "Frequency",
    "LineSource",
    "PayrollLine",
    "PayrollTotals",
    "QuantitySource",
    "WorkedTime",
    "round_money",
]

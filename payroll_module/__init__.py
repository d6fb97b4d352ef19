"""
Payroll module: records, persistence, workflows and services.

Public entry points:

* ``PayrollService`` -- previews, creation, recalculation, approval workflow.
* ``PayrollPeriodManager`` -- period lifecycle and rollups.
* ``ConceptService`` -- concept catalog and benefit assignments.
* ``PayrollBatchProcessor`` -- whole-period processing on a worker pool.
"""

from payroll_module.batch import BatchResult, EmployeeOutcome, PayrollBatchProcessor
from payroll_module.concepts_service import ConceptService
from payroll_module.directory import EmployeeDirectory, StaticEmployeeDirectory
from payroll_module.models import (
    FROZEN_STATUSES,
    Payroll,
    PayrollResult,
    PayrollStatus,
    Period,
    PeriodStatus,
    PeriodSummary,
)
from payroll_module.periods import PayrollPeriodManager
from payroll_module.service import PayrollService, coerce_worked
from payroll_module.workflows import (
    PAYROLL_REOPEN_WORKFLOW,
    PAYROLL_WORKFLOW,
    PERIOD_WORKFLOW,
    PayrollLifecycle,
)

__all__ = [
    "BatchResult",
    "ConceptService",
    "EmployeeDirectory",
    "EmployeeOutcome",
    "FROZEN_STATUSES",
    "PAYROLL_REOPEN_WORKFLOW",
    "PAYROLL_WORKFLOW",
    "PERIOD_WORKFLOW",
    "Payroll",
    "PayrollBatchProcessor",
    "PayrollLifecycle",
    "PayrollPeriodManager",
    "PayrollResult",
    "PayrollService",
    "PayrollStatus",
    "Period",
    "PeriodStatus",
    "PeriodSummary",
    "StaticEmployeeDirectory",
    "coerce_worked",
]

"""Kernel services: base service and workflow execution."""

from payroll_kernel.services.base import BaseService
from payroll_kernel.services.workflow_executor import (
    GuardExecutor,
    TransitionResult,
    WorkflowExecutor,
)

__all__ = [
    "BaseService",
    "GuardExecutor",
    "TransitionResult",
    "WorkflowExecutor",
]

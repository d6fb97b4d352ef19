"""
BaseService -- abstract base for payroll services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` from the caller.

Invariants enforced:
    - Kernel-level helpers only ``flush()``.  Module services that own a
      use case (PayrollService, PayrollPeriodManager, ConceptService,
      PayrollBatchProcessor) own the transaction boundary: commit on
      success, rollback and re-raise on failure.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from payroll_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong in
          ``payroll_module.selectors``.
    """

    def __init__(self, session: Session):
        self.session = session

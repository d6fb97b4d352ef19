"""Employee base data source.

The engine does not own employee records; it asks an ``EmployeeDirectory``
for the id and base salary of the employee being paid.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Protocol, runtime_checkable

from payroll_kernel.domain.values import EmployeeInput
from payroll_kernel.exceptions import EmployeeNotFoundError


@runtime_checkable
class EmployeeDirectory(Protocol):
    """Read access to employee base data."""

    def get_employee(self, employee_id: str) -> EmployeeInput: ...


class StaticEmployeeDirectory:
    """In-memory directory keyed by employee id."""

    def __init__(self, employees: Iterable[EmployeeInput] = ()) -> None:
        self._employees: dict[str, EmployeeInput] = {}
        for employee in employees:
            self.add(employee)

    @classmethod
    def from_salaries(cls, salaries: Mapping[str, Decimal | str | int]) -> "StaticEmployeeDirectory":
        return cls(EmployeeInput(id=eid, base_salary=salary) for eid, salary in salaries.items())

    def add(self, employee: EmployeeInput) -> None:
        self._employees[employee.id] = employee

    def get_employee(self, employee_id: str) -> EmployeeInput:
        try:
            return self._employees[employee_id]
        except KeyError:
            raise EmployeeNotFoundError(employee_id) from None

    def __contains__(self, employee_id: object) -> bool:
        return employee_id in self._employees

    def __len__(self) -> int:
        return len(self._employees)

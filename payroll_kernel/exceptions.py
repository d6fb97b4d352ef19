"""
Typed Exception Hierarchy for the Payroll Kernel.

Every error the engine reports has a TYPED exception class, a machine-readable
``code`` class attribute, and structured attributes carrying the identifiers
a caller needs to act on it.  Callers catch by type, never by message text:

    try:
        service.create_or_update_payroll(employee_id, period_id, worked, actor_id)
    except ClosedPeriodError as e:
        api_response(code=e.code, period=e.period_code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PayrollKernelError (base)
    |
    +-- PayrollValidationError
    |
    +-- EmployeeNotFoundError
    |
    +-- ConceptError
    |   +-- ConceptNotFoundError
    |   +-- ConceptInactiveError
    |   +-- ConceptImmutableError
    |   +-- DuplicateConceptError
    |
    +-- FormulaError
    |   +-- FormulaSyntaxError
    |   +-- UnsafeFormulaError
    |   +-- FormulaEvaluationError
    |
    +-- PayrollError
    |   +-- PayrollNotFoundError
    |   +-- DuplicatePayrollError
    |   +-- PayrollImmutableError
    |   +-- InvalidPayrollTransitionError
    |   +-- NegativeNetSalaryError
    |   +-- TotalsMismatchError
    |
    +-- PeriodError
        +-- PeriodNotFoundError
        +-- ClosedPeriodError
        +-- InvalidPeriodTransitionError
        +-- PeriodOverlapError
        +-- PeriodHasPendingPayrollsError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                          | When Raised
-----------|-------------------------------|---------------------------------------
Validation | VALIDATION_ERROR              | Bad input shape / missing worked time
Employee   | EMPLOYEE_NOT_FOUND            | Directory has no such employee
-----------|-------------------------------|---------------------------------------
Concept    | CONCEPT_NOT_FOUND             | Unknown concept code
           | CONCEPT_INACTIVE              | Concept deactivated
           | CONCEPT_IMMUTABLE             | Concept referenced by finalized payroll
           | DUPLICATE_CONCEPT             | Code already has an active version
-----------|-------------------------------|---------------------------------------
Formula    | FORMULA_SYNTAX                | Expression does not parse
           | UNSAFE_FORMULA                | Characters/nodes outside the whitelist
           | FORMULA_EVALUATION            | Division by zero, unknown variable,
           |                               | result out of range
-----------|-------------------------------|---------------------------------------
Payroll    | PAYROLL_NOT_FOUND             | Payroll ID does not exist
           | DUPLICATE_PAYROLL             | Second payroll for (employee, period)
           | PAYROLL_IMMUTABLE             | Mutation of approved-or-later payroll
           | INVALID_PAYROLL_TRANSITION    | Action not allowed from current status
           | NEGATIVE_NET_SALARY           | Approval with net < 0
           | TOTALS_MISMATCH               | Stored totals differ from line items
-----------|-------------------------------|---------------------------------------
Period     | PERIOD_NOT_FOUND              | Period ID does not exist
           | CLOSED_PERIOD                 | Creation/mutation under closed period
           | INVALID_PERIOD_TRANSITION     | Action not allowed from current status
           | PERIOD_OVERLAP                | Date window overlaps another period
           | PERIOD_HAS_PENDING_PAYROLLS   | Close with draft or calculated payrolls

===============================================================================
HANDLING PATTERNS
===============================================================================

Formula errors are contained at concept granularity by the calculator: they
are logged and the concept contributes zero.  Every other error propagates to
the caller immediately.  Nothing in the engine retries automatically.
"""


class PayrollKernelError(Exception):
    """
    Base exception for all payroll kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYROLL_KERNEL_ERROR"


# Validation


class PayrollValidationError(PayrollKernelError):
    """Input rejected before any calculation ran."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class EmployeeNotFoundError(PayrollKernelError):
    """Employee directory has no record for the given ID."""

    code: str = "EMPLOYEE_NOT_FOUND"

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        super().__init__(f"Employee not found: {employee_id}")


# Concept-related exceptions


class ConceptError(PayrollKernelError):
    """Base exception for concept catalog errors."""

    code: str = "CONCEPT_ERROR"


class ConceptNotFoundError(ConceptError):
    """Concept with given code was not found."""

    code: str = "CONCEPT_NOT_FOUND"

    def __init__(self, concept_code: str):
        self.concept_code = concept_code
        super().__init__(f"Concept not found: {concept_code}")


class ConceptInactiveError(ConceptError):
    """Concept has been deactivated and cannot be used."""

    code: str = "CONCEPT_INACTIVE"

    def __init__(self, concept_code: str):
        self.concept_code = concept_code
        super().__init__(f"Concept '{concept_code}' is inactive")


class ConceptImmutableError(ConceptError):
    """
    Concept is referenced by a finalized payroll.

    Concepts are versioned by soft-deactivation; a referenced version is
    never edited or removed.
    """

    code: str = "CONCEPT_IMMUTABLE"

    def __init__(self, concept_code: str, version: int, operation: str):
        self.concept_code = concept_code
        self.version = version
        self.operation = operation
        super().__init__(
            f"Cannot {operation} concept {concept_code} v{version}: "
            "referenced by a finalized payroll"
        )


class DuplicateConceptError(ConceptError):
    """An active version of the concept code already exists."""

    code: str = "DUPLICATE_CONCEPT"

    def __init__(self, concept_code: str):
        self.concept_code = concept_code
        super().__init__(f"Concept '{concept_code}' already has an active version")


# Formula-related exceptions


class FormulaError(PayrollKernelError):
    """Base exception for formula compilation and evaluation errors."""

    code: str = "FORMULA_ERROR"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Formula {expression!r}: {reason}")


class FormulaSyntaxError(FormulaError):
    """Expression does not parse as arithmetic."""

    code: str = "FORMULA_SYNTAX"


class UnsafeFormulaError(FormulaError):
    """Expression uses characters or constructs outside the whitelist."""

    code: str = "UNSAFE_FORMULA"


class FormulaEvaluationError(FormulaError):
    """Expression parsed but could not be evaluated (e.g. division by zero)."""

    code: str = "FORMULA_EVALUATION"


# Payroll-related exceptions


class PayrollError(PayrollKernelError):
    """Base exception for payroll record errors."""

    code: str = "PAYROLL_ERROR"


class PayrollNotFoundError(PayrollError):
    """Payroll with given ID was not found."""

    code: str = "PAYROLL_NOT_FOUND"

    def __init__(self, payroll_id: str):
        self.payroll_id = payroll_id
        super().__init__(f"Payroll not found: {payroll_id}")


class DuplicatePayrollError(PayrollError):
    """A payroll already exists for the (employee, period) pair."""

    code: str = "DUPLICATE_PAYROLL"

    def __init__(self, employee_id: str, period_id: str, existing_payroll_id: str | None):
        self.employee_id = employee_id
        self.period_id = period_id
        self.existing_payroll_id = existing_payroll_id
        super().__init__(
            f"Payroll already exists for employee {employee_id} in period {period_id}"
            + (f" ({existing_payroll_id})" if existing_payroll_id else "")
        )


class PayrollImmutableError(PayrollError):
    """Attempted to change a payroll whose line items are frozen."""

    code: str = "PAYROLL_IMMUTABLE"

    def __init__(self, payroll_id: str, status: str, operation: str):
        self.payroll_id = payroll_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} payroll {payroll_id} in status '{status}'"
        )


class InvalidPayrollTransitionError(PayrollError):
    """Workflow action is not valid from the payroll's current status."""

    code: str = "INVALID_PAYROLL_TRANSITION"

    def __init__(self, payroll_id: str, current_status: str, action: str, reason: str = ""):
        self.payroll_id = payroll_id
        self.current_status = current_status
        self.action = action
        self.reason = reason
        super().__init__(
            f"Cannot {action} payroll {payroll_id} from status '{current_status}'"
            + (f": {reason}" if reason else "")
        )


class NegativeNetSalaryError(PayrollError):
    """
    Net salary is negative at approval time.

    Signals a misconfigured concept set.  Requires human review; the amount
    is never clamped.
    """

    code: str = "NEGATIVE_NET_SALARY"

    def __init__(self, payroll_id: str, net_salary: str):
        self.payroll_id = payroll_id
        self.net_salary = net_salary
        super().__init__(
            f"Payroll {payroll_id} has negative net salary {net_salary}; "
            "review the concept configuration"
        )


class TotalsMismatchError(PayrollError):
    """Stored totals disagree with the totals recomputed from line items."""

    code: str = "TOTALS_MISMATCH"

    def __init__(self, payroll_id: str, mismatches: dict[str, tuple[str, str]]):
        self.payroll_id = payroll_id
        self.mismatches = mismatches
        fields = ", ".join(
            f"{name} stored={stored} recomputed={recomputed}"
            for name, (stored, recomputed) in sorted(mismatches.items())
        )
        super().__init__(f"Totals mismatch for payroll {payroll_id}: {fields}")


# Period-related exceptions


class PeriodError(PayrollKernelError):
    """Base exception for period-related errors."""

    code: str = "PERIOD_ERROR"


class PeriodNotFoundError(PeriodError):
    """Period with given ID was not found."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Payroll period not found: {period_id}")


class ClosedPeriodError(PeriodError):
    """Attempted to create or modify a payroll under a closed period."""

    code: str = "CLOSED_PERIOD"

    def __init__(self, period_code: str, operation: str):
        self.period_code = period_code
        self.operation = operation
        super().__init__(
            f"Cannot {operation} under closed period {period_code}"
        )


class InvalidPeriodTransitionError(PeriodError):
    """Period action is not valid from the period's current status."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, period_code: str, current_status: str, action: str):
        self.period_code = period_code
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} period {period_code} from status '{current_status}'"
        )


class PeriodOverlapError(PeriodError):
    """New period date window overlaps an existing period."""

    code: str = "PERIOD_OVERLAP"

    def __init__(
        self,
        new_period_code: str,
        existing_period_code: str,
        overlap_start: str,
        overlap_end: str,
    ):
        self.new_period_code = new_period_code
        self.existing_period_code = existing_period_code
        self.overlap_start = overlap_start
        self.overlap_end = overlap_end
        super().__init__(
            f"Period {new_period_code} overlaps with {existing_period_code} "
            f"({overlap_start} to {overlap_end})"
        )


class PeriodHasPendingPayrollsError(PeriodError):
    """Close refused while payrolls of the period are still draft or calculated."""

    code: str = "PERIOD_HAS_PENDING_PAYROLLS"

    def __init__(self, period_code: str, pending_count: int):
        self.period_code = period_code
        self.pending_count = pending_count
        super().__init__(
            f"Cannot close period {period_code}: {pending_count} payroll(s) "
            f"still draft or calculated"
        )

"""
Payroll Kernel

Shared foundation for the payroll engine:
- Structured logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- Money rounding and immutable value records
- Workflow value types and executor
- SQLAlchemy declarative base, engine and session management
"""

__version__ = "0.1.0"

"""
Module: payroll_kernel.db.types
Responsibility: Column types for monetary values.  Centralizes precision so
    that every payroll table stores amounts identically.
Architecture position: Kernel > DB.  May be imported by payroll_module ORM
    models.  MUST NOT import from outer layers.

Invariants enforced:
    - No floats anywhere.  Amounts are stored as exact decimals on every
      backend: Numeric(38, 9) on PostgreSQL, and as text on SQLite, whose
      numeric affinity would otherwise round-trip through binary floats.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator


class ExactDecimal(TypeDecorator):
    """
    Decimal column that never passes through float.

    Contract:
        Python side is always ``Decimal`` (or None).  PostgreSQL stores
        NUMERIC(precision, scale); SQLite stores the canonical string form.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = Decimal(value)
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


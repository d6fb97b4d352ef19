"""
Payroll ORM Persistence Models (``payroll_module.orm``).

Responsibility:
    SQLAlchemy ORM models that persist the frozen value records.  Each ORM
    class mirrors a DTO and provides ``to_dto()`` / ``from_dto()``
    conversion.

Architecture position:
    **Modules layer** -- persistence adapter for the pure records.
    Inherits from ``TrackedBase`` (kernel DB base) which provides:
    id (UUID PK), created_at, updated_at, created_by_id (NOT NULL UUID),
    updated_by_id (nullable UUID).

Invariants enforced:
    - At most one non-rejected payroll per (employee_id, period_id):
      partial unique index ``uq_payroll_employee_period_live``.  A rejected
      payroll stays on record and a replacement may be created.
    - Line items belong to exactly one payroll and are replaced as a set
      (``cascade="all, delete-orphan"``); (payroll_id, sequence) is unique.
    - Concepts are versioned: (code, version) is unique.
    - Period codes are unique.
    - All monetary fields are exact decimals -- NEVER float.
    - Enum fields stored as String(50) containing the enum .value string.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_kernel.db.base import TrackedBase
from payroll_kernel.domain.values import (
    BenefitAssignment,
    CalculationType,
    Concept,
    ConceptType,
    Frequency,
    LineSource,
    PayrollLine,
    QuantitySource,
    canonical_scale,
    round_money,
)
from payroll_module.models import Payroll, PayrollStatus, Period, PeriodStatus


def _money(value: Decimal | None) -> Decimal | None:
    """Stored amounts carry 9 places; records expose 2."""
    return round_money(value) if value is not None else None


def _exact(value: Decimal | None) -> Decimal | None:
    """Strip the column's zero padding; rates and quantities keep their own scale."""
    return canonical_scale(value) if value is not None else None


# ---------------------------------------------------------------------------
# ConceptModel
# ---------------------------------------------------------------------------

class ConceptModel(TrackedBase):
    """
    ORM model for ``Concept`` -- one version of a compensation rule.

    Contract:
        A concept code may have many versions; at most one is active
        (enforced by ConceptService under lock).  A version referenced by a
        finalized payroll is never edited.
    """

    __tablename__ = "payroll_concepts"

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(String(4000), nullable=False, default="")
    concept_type: Mapped[str] = mapped_column(String(50), nullable=False)
    calculation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    default_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    default_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    formula: Mapped[str | None] = mapped_column(String(500), nullable=True)
    minimum_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    maximum_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    salary_ceiling: Mapped[Decimal | None] = mapped_column(nullable=True)
    quantity_source: Mapped[str] = mapped_column(String(50), nullable=False, default="one")
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("code", "version", name="uq_payroll_concept_code_version"),
        Index("idx_payroll_concept_active", "active"),
        Index("idx_payroll_concept_type", "concept_type"),
    )

    def to_dto(self) -> Concept:
        return Concept(
            code=self.code,
            name=self.name,
            concept_type=ConceptType(self.concept_type),
            calculation_type=CalculationType(self.calculation_type),
            default_value=_exact(self.default_value),
            default_rate=_exact(self.default_rate),
            formula=self.formula,
            minimum_amount=_exact(self.minimum_amount),
            maximum_amount=_exact(self.maximum_amount),
            is_taxable=self.is_taxable,
            is_mandatory=self.is_mandatory,
            active=self.active,
            description=self.description or "",
            display_order=self.display_order,
            quantity_source=QuantitySource(self.quantity_source),
            salary_ceiling=_exact(self.salary_ceiling),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Concept, created_by_id: UUID) -> "ConceptModel":
        model = cls(created_by_id=created_by_id)
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: Concept) -> None:
        self.code = dto.code
        self.version = dto.version
        self.name = dto.name
        self.description = dto.description
        self.concept_type = dto.concept_type.value
        self.calculation_type = dto.calculation_type.value
        self.default_value = dto.default_value
        self.default_rate = dto.default_rate
        self.formula = dto.formula
        self.minimum_amount = dto.minimum_amount
        self.maximum_amount = dto.maximum_amount
        self.salary_ceiling = dto.salary_ceiling
        self.quantity_source = dto.quantity_source.value
        self.display_order = dto.display_order
        self.is_taxable = dto.is_taxable
        self.is_mandatory = dto.is_mandatory
        self.active = dto.active

    def __repr__(self) -> str:
        return f"<ConceptModel {self.code} v{self.version} active={self.active}>"


# ---------------------------------------------------------------------------
# BenefitAssignmentModel
# ---------------------------------------------------------------------------

class BenefitAssignmentModel(TrackedBase):
    """
    ORM model for ``BenefitAssignment`` -- a recurring per-employee concept.

    Contract:
        Read-only input for the calculator.  References the concept by code
        so that a superseded concept version is picked up automatically.
    """

    __tablename__ = "payroll_benefit_assignments"

    employee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    concept_code: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    frequency: Mapped[str] = mapped_column(String(50), nullable=False, default="monthly")
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    __table_args__ = (
        Index("idx_payroll_benefit_employee", "employee_id"),
        Index("idx_payroll_benefit_concept", "concept_code"),
    )

    def to_dto(self) -> BenefitAssignment:
        return BenefitAssignment(
            id=self.id,
            employee_id=self.employee_id,
            concept_code=self.concept_code,
            effective_date=self.effective_date,
            frequency=Frequency(self.frequency),
            amount=_exact(self.amount),
            rate=_exact(self.rate),
            end_date=self.end_date,
            active=self.active,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: BenefitAssignment, created_by_id: UUID) -> "BenefitAssignmentModel":
        return cls(
            id=dto.id,
            employee_id=dto.employee_id,
            concept_code=dto.concept_code,
            amount=dto.amount,
            rate=dto.rate,
            frequency=dto.frequency.value,
            effective_date=dto.effective_date,
            end_date=dto.end_date,
            active=dto.active,
            notes=dto.notes,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<BenefitAssignmentModel {self.employee_id}:{self.concept_code} "
            f"{self.effective_date}..{self.end_date} active={self.active}>"
        )


# ---------------------------------------------------------------------------
# PayrollPeriodModel
# ---------------------------------------------------------------------------

class PayrollPeriodModel(TrackedBase):
    """
    ORM model for ``Period``.

    Contract:
        The rollup columns are a cache refreshed from the contained payrolls
        by ``PayrollPeriodManager.refresh_period_totals``; they are never
        written independently.
    """

    __tablename__ = "payroll_periods"

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_taxes: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_net: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("code", name="uq_payroll_period_code"),
        Index("idx_payroll_period_dates", "start_date", "end_date"),
        Index("idx_payroll_period_status", "status"),
    )

    def to_dto(self) -> Period:
        return Period(
            id=self.id,
            code=self.code,
            name=self.name,
            start_date=self.start_date,
            end_date=self.end_date,
            pay_date=self.pay_date,
            status=PeriodStatus(self.status),
            total_employees=self.total_employees,
            total_gross=_money(self.total_gross),
            total_deductions=_money(self.total_deductions),
            total_taxes=_money(self.total_taxes),
            total_net=_money(self.total_net),
            closed_at=self.closed_at,
            closed_by=self.closed_by_id,
            description=self.description,
        )

    @classmethod
    def from_dto(cls, dto: Period, created_by_id: UUID) -> "PayrollPeriodModel":
        model = cls(id=dto.id, created_by_id=created_by_id)
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: Period) -> None:
        self.code = dto.code
        self.name = dto.name
        self.description = dto.description
        self.start_date = dto.start_date
        self.end_date = dto.end_date
        self.pay_date = dto.pay_date
        self.status = dto.status.value
        self.total_employees = dto.total_employees
        self.total_gross = dto.total_gross
        self.total_deductions = dto.total_deductions
        self.total_taxes = dto.total_taxes
        self.total_net = dto.total_net
        self.closed_at = dto.closed_at
        self.closed_by_id = dto.closed_by

    def __repr__(self) -> str:
        return f"<PayrollPeriodModel {self.code} {self.start_date}..{self.end_date} ({self.status})>"


# ---------------------------------------------------------------------------
# PayrollModel
# ---------------------------------------------------------------------------

class PayrollModel(TrackedBase):
    """
    ORM model for ``Payroll``.

    Contract:
        Totals are written only together with the full line-item set they
        were folded from, in one SAVEPOINT.
    """

    __tablename__ = "payrolls"

    payroll_number: Mapped[str] = mapped_column(String(100), nullable=False)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_periods.id"), nullable=False,
    )
    base_salary: Mapped[Decimal] = mapped_column(nullable=False)
    worked_days: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    worked_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    overtime_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    overtime_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_earnings: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    gross_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_taxes: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    net_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    rejection_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    reopen_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    catalog_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    period: Mapped["PayrollPeriodModel"] = relationship(
        "PayrollPeriodModel", lazy="select",
    )
    lines: Mapped[list["PayrollLineModel"]] = relationship(
        "PayrollLineModel",
        back_populates="payroll",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="PayrollLineModel.sequence",
    )

    __table_args__ = (
        Index(
            "uq_payroll_employee_period_live",
            "employee_id", "period_id",
            unique=True,
            postgresql_where=text("status <> 'rejected'"),
            sqlite_where=text("status <> 'rejected'"),
        ),
        Index("idx_payroll_period", "period_id"),
        Index("idx_payroll_status", "status"),
        Index("idx_payroll_number", "payroll_number"),
    )

    def to_dto(self) -> Payroll:
        return Payroll(
            id=self.id,
            payroll_number=self.payroll_number,
            employee_id=self.employee_id,
            period_id=self.period_id,
            base_salary=_exact(self.base_salary),
            worked_days=_exact(self.worked_days),
            worked_hours=_exact(self.worked_hours),
            overtime_hours=_exact(self.overtime_hours),
            overtime_amount=_money(self.overtime_amount),
            total_earnings=_money(self.total_earnings),
            gross_salary=_money(self.gross_salary),
            total_deductions=_money(self.total_deductions),
            total_taxes=_money(self.total_taxes),
            net_salary=_money(self.net_salary),
            status=PayrollStatus(self.status),
            lines=tuple(line.to_dto() for line in self.lines),
            rejection_reason=self.rejection_reason,
            reopen_reason=self.reopen_reason,
            calculated_at=self.calculated_at,
            approved_at=self.approved_at,
            approved_by=self.approved_by_id,
            processed_at=self.processed_at,
            paid_at=self.paid_at,
            rejected_at=self.rejected_at,
            catalog_fingerprint=self.catalog_fingerprint,
        )

    @classmethod
    def from_dto(cls, dto: Payroll, created_by_id: UUID) -> "PayrollModel":
        model = cls(
            id=dto.id,
            payroll_number=dto.payroll_number,
            employee_id=dto.employee_id,
            period_id=dto.period_id,
            created_by_id=created_by_id,
        )
        model.apply_dto(dto, created_by_id)
        return model

    def apply_dto(self, dto: Payroll, actor_id: UUID) -> None:
        """Copy status, stamps and totals; replace the line set if it changed."""
        self.base_salary = dto.base_salary
        self.worked_days = dto.worked_days
        self.worked_hours = dto.worked_hours
        self.overtime_hours = dto.overtime_hours
        self.overtime_amount = dto.overtime_amount
        self.total_earnings = dto.total_earnings
        self.gross_salary = dto.gross_salary
        self.total_deductions = dto.total_deductions
        self.total_taxes = dto.total_taxes
        self.net_salary = dto.net_salary
        self.status = dto.status.value
        self.rejection_reason = dto.rejection_reason
        self.reopen_reason = dto.reopen_reason
        self.calculated_at = dto.calculated_at
        self.approved_at = dto.approved_at
        self.approved_by_id = dto.approved_by
        self.processed_at = dto.processed_at
        self.paid_at = dto.paid_at
        self.rejected_at = dto.rejected_at
        self.catalog_fingerprint = dto.catalog_fingerprint
        self.updated_by_id = actor_id

        current = tuple(line.to_dto() for line in self.lines)
        if current != dto.lines:
            self.lines = [
                PayrollLineModel.from_dto(line, created_by_id=actor_id)
                for line in dto.lines
            ]

    def __repr__(self) -> str:
        return f"<PayrollModel {self.payroll_number} ({self.status})>"


# ---------------------------------------------------------------------------
# PayrollLineModel
# ---------------------------------------------------------------------------

class PayrollLineModel(TrackedBase):
    """
    ORM model for ``PayrollLine`` -- one concept's contribution.

    Contract:
        Belongs to exactly one payroll.  Records the concept version it was
        computed with, so finalized payrolls pin their concept versions.
    """

    __tablename__ = "payroll_lines"

    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("payrolls.id", ondelete="CASCADE"), nullable=False,
    )
    concept_code: Mapped[str] = mapped_column(String(50), nullable=False)
    concept_name: Mapped[str] = mapped_column(String(200), nullable=False)
    concept_type: Mapped[str] = mapped_column(String(50), nullable=False)
    concept_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)

    payroll: Mapped["PayrollModel"] = relationship(
        "PayrollModel", back_populates="lines",
    )

    __table_args__ = (
        UniqueConstraint("payroll_id", "sequence", name="uq_payroll_line_sequence"),
        Index("idx_payroll_line_concept", "concept_code", "concept_version"),
    )

    def to_dto(self) -> PayrollLine:
        return PayrollLine(
            concept_code=self.concept_code,
            concept_name=self.concept_name,
            concept_type=ConceptType(self.concept_type),
            base_amount=self.base_amount,
            rate=self.rate,
            quantity=self.quantity,
            amount=_money(self.amount),
            sequence=self.sequence,
            source=LineSource(self.source),
            concept_version=self.concept_version,
        )

    @classmethod
    def from_dto(cls, dto: PayrollLine, created_by_id: UUID) -> "PayrollLineModel":
        return cls(
            concept_code=dto.concept_code,
            concept_name=dto.concept_name,
            concept_type=dto.concept_type.value,
            concept_version=dto.concept_version,
            base_amount=dto.base_amount,
            rate=dto.rate,
            quantity=dto.quantity,
            amount=dto.amount,
            sequence=dto.sequence,
            source=dto.source.value,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<PayrollLineModel #{self.sequence} {self.concept_code} {self.amount}>"

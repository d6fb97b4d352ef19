"""
Concept Service (``payroll_module.concepts_service``).

Responsibility
--------------
Maintains the concept catalog and employee benefit assignments: register,
edit, supersede and deactivate concepts; seed a catalog from YAML; assign
and end benefits; and build the active ``ConceptCatalog`` the calculator
runs against.

Architecture position
---------------------
**Modules layer** -- owns the transaction boundary for catalog writes.
Reads through ``payroll_module.selectors``; formula validation through
``payroll_engines.formula``.

Invariants enforced
-------------------
* Concepts are never hard-deleted.  Deactivation is a flag; a change to a
  version referenced by a finalized payroll goes through
  ``supersede_concept`` (deactivate vN, insert vN+1).
* In-place edits are refused once any approved, processed or paid payroll
  holds a line computed with that version (``ConceptImmutableError``).
* At most one active version per code; the current row is locked
  ``FOR UPDATE`` before any change.
* A formula concept is only stored if its expression compiles.

Failure modes
-------------
* Unknown code  -> ``ConceptNotFoundError``.
* Edit of an inactive version  -> ``ConceptInactiveError``.
* Registering an existing code  -> ``DuplicateConceptError``.
* Bad expression  -> ``FormulaSyntaxError`` / ``UnsafeFormulaError``.
* Any exception  -> session rolled back, exception re-raised.
"""

from __future__ import annotations

import dataclasses
from datetime import date
from pathlib import Path
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.values import BenefitAssignment, CalculationType, Concept
from payroll_kernel.exceptions import (
    ConceptImmutableError,
    ConceptInactiveError,
    ConceptNotFoundError,
    DuplicateConceptError,
    PayrollValidationError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.services.base import BaseService
from payroll_engines.concepts import ConceptCatalog
from payroll_engines.formula import FormulaEvaluator
from payroll_config.loader import load_concepts
from payroll_module.orm import BenefitAssignmentModel, ConceptModel
from payroll_module.selectors import ConceptSelector

logger = get_logger("modules.payroll.concepts")

_IDENTITY_FIELDS = frozenset({"code", "version", "active"})


class ConceptService(BaseService[ConceptModel]):
    """
    Catalog maintenance and benefit assignment.

    Contract:
        Every public write method commits on success and rolls back and
        re-raises on failure.  ``active_catalog`` is read-only.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        evaluator: FormulaEvaluator | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._evaluator = evaluator or FormulaEvaluator()
        self._concepts = ConceptSelector(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_formula(self, concept: Concept) -> None:
        if concept.calculation_type == CalculationType.FORMULA:
            self._evaluator.compile(concept.formula)

    def _get_active_for_update(self, code: str) -> ConceptModel:
        model = self.session.execute(
            select(ConceptModel)
            .where(ConceptModel.code == code)
            .order_by(ConceptModel.version.desc())
            .with_for_update()
        ).scalars().first()
        if model is None:
            raise ConceptNotFoundError(code)
        if not model.active:
            raise ConceptInactiveError(code)
        return model

    @staticmethod
    def _check_changes(changes: dict) -> None:
        forbidden = sorted(_IDENTITY_FIELDS & changes.keys())
        if forbidden:
            raise PayrollValidationError(
                forbidden[0], "cannot be changed through a concept edit",
            )

    # ------------------------------------------------------------------
    # Concepts
    # ------------------------------------------------------------------

    def active_catalog(self) -> ConceptCatalog:
        """The catalog of every active concept version."""
        return ConceptCatalog(self._concepts.list_concepts(active=True), self._evaluator)

    def register_concept(self, concept: Concept, actor_id: UUID) -> Concept:
        """Store a new concept code as version 1."""
        try:
            if self._concepts.get_current(concept.code) is not None:
                raise DuplicateConceptError(concept.code)
            concept = dataclasses.replace(concept, version=1)
            self._validate_formula(concept)

            model = ConceptModel.from_dto(concept, created_by_id=actor_id)
            self.session.add(model)
            self.session.flush()
            self.session.commit()

            logger.info("concept_registered", extra={
                "concept_code": concept.code,
                "concept_type": concept.concept_type.value,
                "calculation_type": concept.calculation_type.value,
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def update_concept(self, code: str, actor_id: UUID, **changes) -> Concept:
        """
        Edit the active version in place.

        Allowed only while no finalized payroll references the version.
        Draft and calculated payrolls see the change on their next
        recalculation; their stored lines are not rewritten.
        """
        try:
            self._check_changes(changes)
            model = self._get_active_for_update(code)
            references = self._concepts.count_finalized_references(code, model.version)
            if references:
                raise ConceptImmutableError(code, model.version, "update")

            updated = dataclasses.replace(model.to_dto(), **changes)
            self._validate_formula(updated)
            model.apply_dto(updated)
            model.updated_by_id = actor_id
            self.session.flush()
            self.session.commit()

            logger.info("concept_updated", extra={
                "concept_code": code,
                "version": updated.version,
                "fields": sorted(changes),
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def supersede_concept(self, code: str, actor_id: UUID, **changes) -> Concept:
        """Deactivate the active version and insert version + 1 with ``changes``."""
        try:
            self._check_changes(changes)
            current = self._get_active_for_update(code)
            successor = dataclasses.replace(
                current.to_dto(), version=current.version + 1, active=True, **changes,
            )
            self._validate_formula(successor)

            current.active = False
            current.updated_by_id = actor_id
            self.session.flush()

            model = ConceptModel.from_dto(successor, created_by_id=actor_id)
            self.session.add(model)
            self.session.flush()
            self.session.commit()

            logger.info("concept_superseded", extra={
                "concept_code": code,
                "previous_version": current.version,
                "version": successor.version,
                "fields": sorted(changes),
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def deactivate_concept(self, code: str, actor_id: UUID) -> Concept:
        """Soft-deactivate the active version.  Payroll history keeps it."""
        try:
            model = self._get_active_for_update(code)
            model.active = False
            model.updated_by_id = actor_id
            self.session.flush()
            self.session.commit()

            logger.info("concept_deactivated", extra={
                "concept_code": code,
                "version": model.version,
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def load_catalog(self, actor_id: UUID, path: Path | None = None) -> list[Concept]:
        """
        Seed concepts from a YAML catalog (the packaged default if ``path``
        is None), all in one transaction.

        New codes are registered; codes whose active version already matches
        the file are left alone; codes that differ are superseded.

        Returns:
            The concepts written by this call.
        """
        written: list[Concept] = []
        try:
            for concept in load_concepts(path):
                self._validate_formula(concept)
                current = self._concepts.get_current(concept.code)

                if current is None:
                    model = ConceptModel.from_dto(
                        dataclasses.replace(concept, version=1), created_by_id=actor_id,
                    )
                elif dataclasses.replace(concept, version=current.version) == current:
                    continue
                else:
                    previous = self.session.execute(
                        select(ConceptModel)
                        .where(
                            ConceptModel.code == concept.code,
                            ConceptModel.version == current.version,
                        )
                        .with_for_update()
                    ).scalar_one()
                    previous.active = False
                    previous.updated_by_id = actor_id
                    self.session.flush()
                    model = ConceptModel.from_dto(
                        dataclasses.replace(concept, version=current.version + 1),
                        created_by_id=actor_id,
                    )

                self.session.add(model)
                self.session.flush()
                written.append(model.to_dto())

            self.session.commit()
            logger.info("concept_catalog_seeded", extra={
                "path": str(path) if path is not None else "default",
                "written": [c.code for c in written],
                "actor_id": str(actor_id),
            })
            return written
        except Exception:
            self.session.rollback()
            raise

    # ------------------------------------------------------------------
    # Benefits
    # ------------------------------------------------------------------

    def assign_benefit(
        self,
        employee_id: str,
        concept_code: str,
        effective_date: date,
        actor_id: UUID,
        **fields,
    ) -> BenefitAssignment:
        """
        Assign a recurring concept to an employee.

        ``fields`` are the optional ``BenefitAssignment`` attributes
        (``amount``, ``rate``, ``frequency``, ``end_date``, ``notes``).
        """
        try:
            concept = self._concepts.get_current(concept_code)
            if concept is None:
                raise ConceptNotFoundError(concept_code)
            if not concept.active:
                raise ConceptInactiveError(concept_code)

            assignment = BenefitAssignment(
                id=uuid4(),
                employee_id=employee_id,
                concept_code=concept_code,
                effective_date=effective_date,
                **fields,
            )
            model = BenefitAssignmentModel.from_dto(assignment, created_by_id=actor_id)
            self.session.add(model)
            self.session.flush()
            self.session.commit()

            logger.info("benefit_assigned", extra={
                "assignment_id": str(assignment.id),
                "employee_id": employee_id,
                "concept_code": concept_code,
                "effective_date": effective_date.isoformat(),
                "frequency": assignment.frequency.value,
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

    def end_benefit(
        self,
        assignment_id: UUID,
        end_date: date,
        actor_id: UUID,
    ) -> BenefitAssignment:
        """Close an assignment's effective window at ``end_date`` (inclusive)."""
        try:
            model = self.session.execute(
                select(BenefitAssignmentModel)
                .where(BenefitAssignmentModel.id == assignment_id)
                .with_for_update()
            ).scalar_one_or_none()
            if model is None:
                raise PayrollValidationError(
                    "assignment_id", f"no benefit assignment {assignment_id}",
                )

            ended = dataclasses.replace(model.to_dto(), end_date=end_date)
            model.end_date = ended.end_date
            model.updated_by_id = actor_id
            self.session.flush()
            self.session.commit()

            logger.info("benefit_ended", extra={
                "assignment_id": str(assignment_id),
                "employee_id": model.employee_id,
                "end_date": end_date.isoformat(),
                "actor_id": str(actor_id),
            })
            return model.to_dto()
        except Exception:
            self.session.rollback()
            raise

"""Tests for the transactional session scope (payroll_kernel/db/engine.py)."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from payroll_kernel.db.engine import get_session, session_scope
from payroll_kernel.domain.values import CalculationType, Concept, ConceptType
from payroll_module.orm import ConceptModel


def _concept(code: str) -> Concept:
    return Concept(
        code=code,
        name=code.title(),
        concept_type=ConceptType.EARNING,
        calculation_type=CalculationType.FIXED,
        default_value=Decimal("1000"),
    )


def _count(code: str) -> int:
    session = get_session()
    try:
        return session.execute(
            select(func.count(ConceptModel.id)).where(ConceptModel.code == code)
        ).scalar_one()
    finally:
        session.close()


class TestSessionScope:

    def test_commits_on_success(self, engine, test_actor_id, captured_logs):
        with session_scope() as session:
            session.add(ConceptModel.from_dto(_concept("BONO"), test_actor_id))

        assert _count("BONO") == 1
        assert "transaction_committed" in [r["message"] for r in captured_logs()]

    def test_rolls_back_and_reraises(self, engine, test_actor_id, captured_logs):
        with pytest.raises(RuntimeError, match="boom"):
            with session_scope() as session:
                session.add(ConceptModel.from_dto(_concept("BONO"), test_actor_id))
                session.flush()
                raise RuntimeError("boom")

        assert _count("BONO") == 0
        assert "transaction_rolled_back" in [r["message"] for r in captured_logs()]

    def test_session_closed_after_scope(self, engine):
        with session_scope() as session:
            pass

        assert not session.in_transaction()

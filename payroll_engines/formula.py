"""
payroll_engines.formula -- Restricted arithmetic formulas for concepts.

Responsibility:
    Compile a concept's formula text into a small typed AST once, and
    evaluate it with exact ``Decimal`` arithmetic against a fixed variable
    set.  The formula language is deliberately tiny: numeric literals,
    ``+ - * /``, parentheses, unary sign, and the variables below.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Allowed variables (with accepted spellings):
    baseAmount     base_amount     {base_amount}
    rate           rate            {rate}
    quantity       quantity        {quantity}
    defaultAmount  default_amount  {default_amount}
    defaultRate    default_rate    {default_rate}

Invariants enforced:
    - Once allowed variable names are removed, the text must consist only
      of characters in ``[0-9+\\-*/().\\s]``.  Anything else is rejected
      before parsing.
    - Python's parser is used for tokenizing only.  The resulting tree is
      converted node by node; any node type outside the whitelist
      (calls, attributes, power, floor division, comparisons, ...) is
      rejected.  Nothing is ever executed.
    - Evaluation is a pure interpreter over ``Decimal``.

Failure modes:
    - FormulaSyntaxError: text does not parse.
    - UnsafeFormulaError: character or node outside the whitelist.
    - FormulaEvaluationError: division by zero, missing variable, a result
      at or above ``MAX_AMOUNT`` in magnitude.
    - ``FormulaEvaluator.evaluate_or_zero`` contains all of the above: it
      logs ``formula_evaluation_failed`` and returns zero.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation, Overflow, localcontext

from payroll_kernel.domain.values import MAX_AMOUNT
from payroll_kernel.exceptions import (
    FormulaError,
    FormulaEvaluationError,
    FormulaSyntaxError,
    UnsafeFormulaError,
)
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.formula")

# Accepted spelling -> canonical variable name
VARIABLE_ALIASES: dict[str, str] = {
    "baseAmount": "baseAmount",
    "base_amount": "baseAmount",
    "rate": "rate",
    "quantity": "quantity",
    "defaultAmount": "defaultAmount",
    "default_amount": "defaultAmount",
    "defaultRate": "defaultRate",
    "default_rate": "defaultRate",
}

ALLOWED_VARIABLES: frozenset[str] = frozenset(VARIABLE_ALIASES.values())

_PLACEHOLDER = re.compile(r"\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}")
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_SAFE_TEXT = re.compile(r"[0-9+\-*/().\s]*")

_OPERATORS: dict[type, str] = {
    ast.Add: "+",
    ast.Sub: "-",
    ast.Mult: "*",
    ast.Div: "/",
}

_MAX_LENGTH = 500


# ---------------------------------------------------------------------------
# Typed AST
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Decimal


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Negate:
    operand: Node


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: Node
    right: Node


Node = Literal | Variable | Negate | BinaryOp


@dataclass(frozen=True)
class Formula:
    """A compiled formula: the raw text plus its typed AST."""
    expression: str
    tree: Node
    variables: frozenset[str]


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def _normalize(expression: str) -> str:
    """Replace ``{name}`` placeholders with the bare name."""
    return _PLACEHOLDER.sub(lambda m: m.group(1), expression)


def _check_characters(expression: str, text: str) -> None:
    stripped = _IDENTIFIER.sub(
        lambda m: "" if m.group(0) in VARIABLE_ALIASES else m.group(0),
        text,
    )
    if not _SAFE_TEXT.fullmatch(stripped):
        bad = sorted({ch for ch in stripped if not _SAFE_TEXT.fullmatch(ch)})
        raise UnsafeFormulaError(
            expression, f"disallowed characters or names: {''.join(bad)!r}"
        )


def _convert(node: ast.AST, text: str, expression: str) -> Node:
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise UnsafeFormulaError(expression, f"disallowed literal {node.value!r}")
        segment = ast.get_source_segment(text, node)
        return Literal(Decimal(segment if segment else str(node.value)))

    if isinstance(node, ast.Name):
        canonical = VARIABLE_ALIASES.get(node.id)
        if canonical is None:
            raise UnsafeFormulaError(expression, f"unknown variable {node.id!r}")
        return Variable(canonical)

    if isinstance(node, ast.UnaryOp):
        operand = _convert(node.operand, text, expression)
        if isinstance(node.op, ast.USub):
            return Negate(operand)
        if isinstance(node.op, ast.UAdd):
            return operand
        raise UnsafeFormulaError(
            expression, f"disallowed unary operator {type(node.op).__name__}"
        )

    if isinstance(node, ast.BinOp):
        op = _OPERATORS.get(type(node.op))
        if op is None:
            raise UnsafeFormulaError(
                expression, f"disallowed binary operator {type(node.op).__name__}"
            )
        return BinaryOp(
            op,
            _convert(node.left, text, expression),
            _convert(node.right, text, expression),
        )

    raise UnsafeFormulaError(expression, f"disallowed construct {type(node).__name__}")


def _collect_variables(node: Node, out: set[str]) -> None:
    if isinstance(node, Variable):
        out.add(node.name)
    elif isinstance(node, Negate):
        _collect_variables(node.operand, out)
    elif isinstance(node, BinaryOp):
        _collect_variables(node.left, out)
        _collect_variables(node.right, out)


def compile_formula(expression: str) -> Formula:
    """Compile formula text into a ``Formula``.

    Raises:
        UnsafeFormulaError: Disallowed characters, names or constructs.
        FormulaSyntaxError: Text does not parse as an arithmetic expression.
    """
    if expression is None or not expression.strip():
        raise FormulaSyntaxError(expression or "", "empty expression")
    if len(expression) > _MAX_LENGTH:
        raise UnsafeFormulaError(expression, f"longer than {_MAX_LENGTH} characters")

    text = _normalize(expression).strip()
    _check_characters(expression, text)

    try:
        parsed = ast.parse(text, mode="eval")
    except SyntaxError as e:
        raise FormulaSyntaxError(expression, f"syntax error: {e.msg}") from e

    tree = _convert(parsed.body, text, expression)
    names: set[str] = set()
    _collect_variables(tree, names)
    return Formula(expression=expression, tree=tree, variables=frozenset(names))


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _interpret(node: Node, variables: Mapping[str, Decimal], expression: str) -> Decimal:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Variable):
        value = variables.get(node.name)
        if value is None:
            raise FormulaEvaluationError(expression, f"variable {node.name!r} has no value")
        return value
    if isinstance(node, Negate):
        return -_interpret(node.operand, variables, expression)

    left = _interpret(node.left, variables, expression)
    right = _interpret(node.right, variables, expression)
    if node.op == "+":
        return left + right
    if node.op == "-":
        return left - right
    if node.op == "*":
        return left * right
    if right == 0:
        raise FormulaEvaluationError(expression, "division by zero")
    return left / right


def evaluate(formula: Formula, variables: Mapping[str, Decimal]) -> Decimal:
    """Evaluate a compiled formula.

    Raises:
        FormulaEvaluationError: Division by zero, a missing variable, or a
            result outside the payroll amount range.
    """
    with localcontext() as ctx:
        ctx.prec = 28
        try:
            result = _interpret(formula.tree, variables, formula.expression)
        except (DivisionByZero, InvalidOperation, Overflow) as e:
            raise FormulaEvaluationError(formula.expression, str(e)) from e
    if abs(result) >= MAX_AMOUNT:
        raise FormulaEvaluationError(
            formula.expression, f"result {result:E} is outside the payroll amount range",
        )
    return result


class FormulaEvaluator:
    """Calculator-facing formula entry point that fails closed."""

    def compile(self, expression: str) -> Formula:
        return compile_formula(expression)

    def evaluate(self, formula: Formula, variables: Mapping[str, Decimal]) -> Decimal:
        return evaluate(formula, variables)

    def evaluate_or_zero(
        self,
        concept_code: str,
        expression: str,
        variables: Mapping[str, Decimal],
        compiled: Formula | FormulaError | None = None,
    ) -> tuple[Decimal, FormulaError | None]:
        """Evaluate, containing any failure as a zero contribution.

        ``compiled`` may carry a precompiled formula (or the error its
        compilation produced); otherwise ``expression`` is compiled here.

        Returns:
            ``(value, None)`` on success, ``(Decimal("0"), error)`` on failure.
        """
        error = compiled if isinstance(compiled, FormulaError) else None
        if error is None:
            try:
                formula = compiled if compiled is not None else compile_formula(expression)
                return evaluate(formula, variables), None
            except FormulaError as e:
                error = e

        self.report_failure(concept_code, error)
        return Decimal("0"), error

    def report_failure(self, concept_code: str, error: FormulaError) -> None:
        logger.warning(
            "formula_evaluation_failed",
            extra={
                "concept_code": concept_code,
                "expression": error.expression,
                "error_code": error.code,
                "error": error.reason,
            },
        )

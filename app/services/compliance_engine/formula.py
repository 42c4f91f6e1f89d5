"""
DigiComply - Penalty Formula Interpreter

Evaluates ``formula`` penalty specs. The language is deliberately narrow:

- numeric literals and the variables ``overdueDays``, ``baseAmount``, ``rate``
- binary ``+ - * / %``, unary ``-``/``+`` and parentheses
- comparisons ``< <= > >= == !=`` evaluating to 1 or 0

Expressions are parsed with :mod:`ast` and walked by a whitelist interpreter;
nothing is ever handed to ``eval``.

Example:
    >>> evaluate_formula("baseAmount * rate / 100 + (overdueDays > 30) * 500",
    ...                  {"overdueDays": 45, "baseAmount": 10000, "rate": 2})
    Decimal('700')
"""

import ast
import operator
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Dict, Optional, Union

from app.utils.error_handling import CalculationError


FORMULA_VARIABLES = frozenset({"overdueDays", "baseAmount", "rate"})

Number = Union[int, float, Decimal]

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_COMPARE_OPERATORS = {
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
}


class FormulaSyntaxError(ValueError):
    """Expression is not parseable."""


@lru_cache(maxsize=512)
def compile_formula(expression: str) -> ast.Expression:
    """Parse an expression once; raises FormulaSyntaxError on bad syntax."""
    try:
        return ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        raise FormulaSyntaxError(f"Invalid penalty formula '{expression}': {exc.msg}") from exc


def evaluate_formula(
    expression: str,
    variables: Dict[str, Number],
    rule_code: Optional[str] = None,
) -> Decimal:
    """
    Evaluate a penalty expression.

    Raises:
        CalculationError: bad syntax, unsupported construct, unknown
            identifier or division by zero
    """
    try:
        tree = compile_formula(expression)
    except FormulaSyntaxError as exc:
        raise CalculationError(str(exc), rule_code=rule_code, original_error=exc) from exc

    scope = {name: Decimal(str(value)) for name, value in variables.items() if name in FORMULA_VARIABLES}
    return _Interpreter(scope, rule_code).visit(tree.body)


class _Interpreter:
    def __init__(self, scope: Dict[str, Decimal], rule_code: Optional[str]):
        self.scope = scope
        self.rule_code = rule_code

    def fail(self, message: str, error: Optional[Exception] = None) -> CalculationError:
        return CalculationError(message, rule_code=self.rule_code, original_error=error)

    def visit(self, node: ast.AST) -> Decimal:
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise self.fail(f"Unsupported literal {node.value!r} in penalty formula")
            return Decimal(str(node.value))

        if isinstance(node, ast.Name):
            if node.id not in FORMULA_VARIABLES:
                raise self.fail(f"Unknown identifier '{node.id}' in penalty formula")
            if node.id not in self.scope:
                raise self.fail(f"Variable '{node.id}' has no value")
            return self.scope[node.id]

        if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
            operand = self.visit(node.operand)
            return -operand if isinstance(node.op, ast.USub) else operand

        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
            left = self.visit(node.left)
            right = self.visit(node.right)
            if isinstance(node.op, (ast.Div, ast.Mod)) and right == 0:
                raise self.fail("Division by zero in penalty formula")
            try:
                return _BINARY_OPERATORS[type(node.op)](left, right)
            except (ArithmeticError, InvalidOperation) as exc:
                raise self.fail(f"Arithmetic error in penalty formula: {exc}", exc) from exc

        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                if type(op) not in _COMPARE_OPERATORS:
                    raise self.fail(f"Unsupported comparison {type(op).__name__} in penalty formula")
                right = self.visit(comparator)
                if not _COMPARE_OPERATORS[type(op)](left, right):
                    return Decimal("0")
                left = right
            return Decimal("1")

        raise self.fail(f"Unsupported syntax {type(node).__name__} in penalty formula")

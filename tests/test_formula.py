"""
DigiComply - Penalty Formula Tests

Unit tests for the restricted penalty expression interpreter.
"""

import pytest
from decimal import Decimal

from app.services.compliance_engine.formula import (
    FormulaSyntaxError,
    compile_formula,
    evaluate_formula,
)
from app.utils.error_handling import CalculationError


VARIABLES = {"overdueDays": 45, "baseAmount": 10000, "rate": 2}


class TestFormulaEvaluation:
    """Supported constructs."""

    def test_arithmetic_with_variables(self):
        assert evaluate_formula("baseAmount * rate / 100", VARIABLES) == Decimal("200")

    def test_comparison_evaluates_to_one_or_zero(self):
        assert evaluate_formula("(overdueDays > 30) * 500", VARIABLES) == Decimal("500")
        assert evaluate_formula("(overdueDays > 60) * 500", VARIABLES) == Decimal("0")

    def test_combined_expression(self):
        expression = "baseAmount * rate / 100 + (overdueDays > 30) * 500"
        assert evaluate_formula(expression, VARIABLES) == Decimal("700")

    def test_chained_comparison(self):
        assert evaluate_formula("30 < overdueDays <= 60", VARIABLES) == Decimal("1")
        assert evaluate_formula("0 < overdueDays < 30", VARIABLES) == Decimal("0")

    def test_unary_minus_and_modulo(self):
        assert evaluate_formula("-overdueDays + 50", VARIABLES) == Decimal("5")
        assert evaluate_formula("overdueDays % 30", VARIABLES) == Decimal("15")

    def test_decimal_literals_are_exact(self):
        assert evaluate_formula("0.1 + 0.2", VARIABLES) == Decimal("0.3")

    def test_same_inputs_same_result(self):
        first = evaluate_formula("overdueDays * 12.5", VARIABLES)
        second = evaluate_formula("overdueDays * 12.5", VARIABLES)
        assert first == second == Decimal("562.5")


class TestFormulaRejection:
    """Anything outside the whitelist fails as a calculation error."""

    @pytest.mark.parametrize("expression", [
        "__import__('os').system('true')",
        "overdueDays.__class__",
        "max(overdueDays, 10)",
        "[overdueDays]",
        "overdueDays if rate else baseAmount",
        "overdueDays ** 2",
        "'text'",
        "True",
        "lambda: 1",
    ])
    def test_unsupported_constructs(self, expression):
        with pytest.raises(CalculationError):
            evaluate_formula(expression, VARIABLES)

    def test_unknown_identifier(self):
        with pytest.raises(CalculationError) as exc_info:
            evaluate_formula("overdueDays * penaltyRate", VARIABLES, rule_code="ROC-AOC4")
        assert "penaltyRate" in exc_info.value.message
        assert exc_info.value.rule_code == "ROC-AOC4"

    def test_division_by_zero(self):
        with pytest.raises(CalculationError):
            evaluate_formula("baseAmount / (overdueDays - 45)", VARIABLES)

    def test_syntax_error(self):
        with pytest.raises(CalculationError):
            evaluate_formula("overdueDays * ", VARIABLES)

    def test_compile_raises_formula_syntax_error(self):
        with pytest.raises(FormulaSyntaxError):
            compile_formula("(baseAmount")

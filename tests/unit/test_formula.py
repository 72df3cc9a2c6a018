"""
定价公式与取整测试
"""
import pytest

from autoquote.domain.entities.pricing import RoundingStrategy
from autoquote.domain.exceptions import FormulaError
from autoquote.domain.services.formula import apply_rounding, compile_formula, evaluate


class TestCompileFormula:

    @pytest.mark.parametrize("formula,cost,price,expected", [
        ("cost * 1.2", 2.5, 0, 3.0),
        ("COST * 1.5", 2.0, 0, 3.0),
        ("price + 0.5", 0, 3.0, 3.5),
        ("3.5", 10, 10, 3.5),
        ("(cost + 1) * 2", 2.5, 0, 7.0),
        ("-cost + 10", 2.0, 0, 8.0),
        ("price / 2", 0, 5.0, 2.5),
    ])
    def test_evaluate(self, formula, cost, price, expected):
        expression = compile_formula(formula)
        assert evaluate(expression, cost, price) == pytest.approx(expected)

    @pytest.mark.parametrize("formula", [
        "",
        "   ",
        None,
        "__import__('os').system('ls')",
        "x * 2",
        "cost ** 2",
        "cost *",
        "cost.real",
        "cost; 1",
    ])
    def test_rejects_invalid(self, formula):
        with pytest.raises(FormulaError):
            compile_formula(formula)

    def test_formula_error_is_value_error(self):
        with pytest.raises(ValueError):
            compile_formula("abs(cost)")

    def test_compiled_once_evaluated_many(self):
        expression = compile_formula("cost * 1.2")
        assert evaluate(expression, 1.0, 0) == pytest.approx(1.2)
        assert evaluate(expression, 10.0, 0) == pytest.approx(12.0)


class TestEvaluate:

    def test_division_by_zero(self):
        with pytest.raises(FormulaError):
            evaluate(compile_formula("cost / 0"), 2.0, 0)

    def test_negative_result(self):
        with pytest.raises(FormulaError):
            evaluate(compile_formula("cost - 10"), 2.0, 0)


class TestRounding:

    @pytest.mark.parametrize("strategy,value,expected", [
        (RoundingStrategy.ROUND_TO_1, 2.5, 3.0),
        (RoundingStrategy.ROUND_TO_1, 3.49, 3.0),
        (RoundingStrategy.ROUND_TO_HALF, 2.875, 3.0),
        (RoundingStrategy.ROUND_TO_HALF, 2.6, 2.5),
        (RoundingStrategy.ROUND_TO_HALF, 2.75, 3.0),
        (RoundingStrategy.FLOOR_TO_1, 2.9, 2.0),
        (RoundingStrategy.CEIL_TO_1, 2.4, 3.0),
        (RoundingStrategy.CEIL_TO_1, 3.0000000001, 3.0),
        (RoundingStrategy.FLOOR_TO_HALF, 2.9, 2.5),
        (RoundingStrategy.NONE, 2.3456, 2.35),
    ])
    def test_strategies(self, strategy, value, expected):
        assert apply_rounding(value, strategy) == pytest.approx(expected)

    @pytest.mark.parametrize("strategy", list(RoundingStrategy))
    @pytest.mark.parametrize("value", [0.3, 2.5, 2.74, 3.0, 7.25])
    def test_idempotent(self, strategy, value):
        once = apply_rounding(value, strategy)
        assert apply_rounding(once, strategy) == once

    @pytest.mark.parametrize("text,expected", [
        ("round_to_0.5", RoundingStrategy.ROUND_TO_HALF),
        ("CEIL_TO_1", RoundingStrategy.CEIL_TO_1),
        ("bogus", RoundingStrategy.ROUND_TO_1),
        (None, RoundingStrategy.ROUND_TO_1),
    ])
    def test_from_string(self, text, expected):
        assert RoundingStrategy.from_string(text) == expected

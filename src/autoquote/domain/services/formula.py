"""
定价公式与取整。
公式在规则加载时编译成表达式树，报价时只做求值。
公式里 cost 代表成本，price 代表按默认毛利算出的基准价；也可以是一个固定价格。
"""
import ast
import math
import re
from dataclasses import dataclass
from typing import Union

from ..entities.pricing import RoundingStrategy
from ..exceptions import FormulaError

_TOKEN = re.compile(r"cost|price|\d+(?:\.\d+)?|[-+*/()]")
_ALLOWED_CHARS = re.compile(r"^[\sa-z\d.+\-*/()]*$")


@dataclass(frozen=True)
class Literal:
    value: float

    def evaluate(self, cost: float, price: float) -> float:
        return self.value


@dataclass(frozen=True)
class BaseValue:
    """cost 或 price"""
    name: str

    def evaluate(self, cost: float, price: float) -> float:
        return cost if self.name == "cost" else price


@dataclass(frozen=True)
class Negate:
    operand: "Expression"

    def evaluate(self, cost: float, price: float) -> float:
        return -self.operand.evaluate(cost, price)


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Expression"
    right: "Expression"

    def evaluate(self, cost: float, price: float) -> float:
        left = self.left.evaluate(cost, price)
        right = self.right.evaluate(cost, price)
        if self.op == "+":
            return left + right
        if self.op == "-":
            return left - right
        if self.op == "*":
            return left * right
        if right == 0:
            raise FormulaError("公式除数为 0")
        return left / right


Expression = Union[Literal, BaseValue, Negate, BinaryOp]

_BIN_OPS = {ast.Add: "+", ast.Sub: "-", ast.Mult: "*", ast.Div: "/"}


def compile_formula(formula: str) -> Expression:
    """
    编译公式。

    Args:
        formula: 如 "cost * 1.2"、"price + 0.5"、"3.5"

    Returns:
        表达式树

    Raises:
        FormulaError: 含有不允许的内容或语法错误
    """
    if formula is None or not str(formula).strip():
        raise FormulaError("公式为空")
    text = str(formula).strip().lower()
    if not _ALLOWED_CHARS.match(text):
        raise FormulaError(f"公式包含非法字符: {formula}")

    tokens = _TOKEN.findall(text)
    if "".join(tokens) != re.sub(r"\s+", "", text):
        raise FormulaError(f"公式包含非法内容: {formula}")

    try:
        tree = ast.parse(" ".join(tokens), mode="eval")
    except SyntaxError as e:
        raise FormulaError(f"公式语法错误: {formula}") from e
    return _build(tree.body)


def _build(node: ast.AST) -> Expression:
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        return BinaryOp(_BIN_OPS[type(node.op)], _build(node.left), _build(node.right))
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
        operand = _build(node.operand)
        return Negate(operand) if isinstance(node.op, ast.USub) else operand
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return Literal(float(node.value))
    if isinstance(node, ast.Name) and node.id in ("cost", "price"):
        return BaseValue(node.id)
    raise FormulaError(f"公式中不支持的表达式: {ast.dump(node)}")


def evaluate(expression: Expression, cost: float, price: float) -> float:
    """
    求值；结果必须是有限的非负数。

    Raises:
        FormulaError: 除零、非有限值或负数
    """
    value = expression.evaluate(cost, price)
    if not math.isfinite(value) or value < 0:
        raise FormulaError(f"公式结果无效: {value}")
    return value


def _half_up(value: float) -> float:
    return math.floor(value + 0.5)


def apply_rounding(value: float, strategy: RoundingStrategy) -> float:
    """
    按策略取整。四舍五入为"五入"而非银行家舍入。
    对已取整的值再次取整结果不变。

    Example:
        >>> apply_rounding(2.875, RoundingStrategy.ROUND_TO_HALF)
        3.0
        >>> apply_rounding(2.4, RoundingStrategy.CEIL_TO_1)
        3.0
    """
    # 先消掉浮点误差，避免 3.0000000001 被向上取整到 4
    value = round(value, 6)
    if strategy == RoundingStrategy.FLOOR_TO_1:
        return float(math.floor(value))
    if strategy == RoundingStrategy.CEIL_TO_1:
        return float(math.ceil(value))
    if strategy == RoundingStrategy.ROUND_TO_1:
        return float(_half_up(value))
    if strategy == RoundingStrategy.ROUND_TO_HALF:
        return _half_up(value * 2) / 2
    if strategy == RoundingStrategy.FLOOR_TO_HALF:
        return math.floor(value * 2) / 2
    return round(value, 2)

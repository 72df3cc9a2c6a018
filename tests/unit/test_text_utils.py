"""
文本工具测试：归一化、花括号转义、代码块去除与金额格式化。
"""
import pytest

from autoquote.infrastructure.utils.text_utils import (
    escape_braces, format_amount, normalize_utterance, safe_format, strip_code_fence
)


class TestNormalizeUtterance:
    """normalize_utterance"""

    def test_strips_punctuation_and_whitespace(self):
        assert normalize_utterance(" 可乐，多少钱？ ") == "可乐多少钱"

    def test_keeps_decimal_point(self):
        assert normalize_utterance("按2.5块算。") == "按2.5块算"

    def test_lowercases_latin(self):
        assert normalize_utterance("OK") == "ok"

    def test_non_string_input(self):
        assert normalize_utterance(None) == ""


class TestEscapeBraces:
    """escape_braces"""

    def test_escape_single_braces(self):
        assert escape_braces("商品 {名称}") == "商品 {{名称}}"

    def test_escape_nested_braces(self):
        assert escape_braces("对象: {data: {value}}") == "对象: {{data: {{value}}}}"

    def test_no_braces(self):
        text = "普通文本"
        assert escape_braces(text) == text

    def test_non_string_input(self):
        assert escape_braces(123) == "123"
        assert escape_braces(None) == "None"


class TestSafeFormat:
    """safe_format"""

    def test_braces_in_value_are_kept(self):
        result = safe_format("用户说：{text}", text="来{两}瓶")
        assert result == "用户说：来{两}瓶"

    def test_json_in_value(self):
        result = safe_format("输出：{content}", content='{"intent": "confirm"}')
        assert result == '输出：{"intent": "confirm"}'

    def test_non_string_value(self):
        assert safe_format("共 {count} 件", count=3) == "共 3 件"

    def test_missing_placeholder_raises(self):
        with pytest.raises(KeyError):
            safe_format("{text}{missing}", text="x")


class TestStripCodeFence:
    """strip_code_fence"""

    def test_json_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fence(' {"a": 1} ') == '{"a": 1}'

    def test_empty(self):
        assert strip_code_fence("") == ""


class TestFormatAmount:
    """format_amount"""

    @pytest.mark.parametrize("value,expected", [
        (3.0, "3"),
        (2.5, "2.5"),
        (2.50, "2.5"),
        (10.25, "10.25"),
        (0, "0"),
    ])
    def test_format(self, value, expected):
        assert format_amount(value) == expected

"""
文本工具。
包括话语归一化、金额格式化、提示词安全填充以及去除模型输出中的 markdown 代码块。
"""
import re

_PUNCTUATION = re.compile(r"[,，。！!？?、~～;；:：]|\.(?!\d)")
_WHITESPACE = re.compile(r"\s+")
_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def normalize_utterance(text: str) -> str:
    """
    归一化用户话语：去首尾空白、转小写、去空白与标点。
    小数点保留，以免 "2.5块" 变成 "25块"。

    Example:
        >>> normalize_utterance(" 可乐，多少钱？ ")
        '可乐多少钱'
        >>> normalize_utterance("按2.5块算。")
        '按2.5块算'
    """
    if not isinstance(text, str):
        return ""
    text = _WHITESPACE.sub("", text.strip().lower())
    return _PUNCTUATION.sub("", text)


def escape_braces(text: str) -> str:
    """
    转义花括号，使文本可以安全地作为 str.format() 模板的一部分。

    Example:
        >>> escape_braces('{"intent": "confirm"}')
        '{{"intent": "confirm"}}'
    """
    if not isinstance(text, str):
        return str(text)

    return text.replace("{", "{{").replace("}", "}}")


def safe_format(template: str, **kwargs) -> str:
    """
    填充模板。值中的花括号原样保留，不会被当作占位符。

    Args:
        template: 模板，字面花括号需写成 {{ }}
        **kwargs: 要填充的值

    Example:
        >>> safe_format("用户说：{text}", text="来{两}瓶")
        '用户说：来{两}瓶'
    """
    # format 只解析模板本身，值不会再被解析
    values = {key: value if isinstance(value, str) else str(value) for key, value in kwargs.items()}
    return template.format(**values)


def strip_code_fence(text: str) -> str:
    """
    去掉模型输出外层的 ```json ... ``` 包裹。

    Example:
        >>> strip_code_fence('```json\\n{"a": 1}\\n```')
        '{"a": 1}'
    """
    if not text:
        return ""
    return _CODE_FENCE.sub("", text.strip()).strip()


def format_amount(value: float) -> str:
    """
    以中文口语习惯格式化金额：整数不带小数，其余最多两位。

    Example:
        >>> format_amount(3.0)
        '3'
        >>> format_amount(2.50)
        '2.5'
    """
    rounded = round(float(value), 2)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:.2f}".rstrip("0").rstrip(".")


def format_quantity(value: float) -> str:
    """数量格式化，规则同金额"""
    return format_amount(value)

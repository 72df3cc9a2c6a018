"""
autoquote：小店语音/文字报价核心。
混合 NLU（规则 + 可选 AI）、作用域定价规则引擎、历史价格学习与多轮对话状态机。
"""
from .bootstrap import AutoQuoteApp, build_application

__version__ = "0.1.0"

__all__ = [
    "AutoQuoteApp",
    "build_application",
    "__version__",
]

"""
领域异常
"""
from typing import Optional


class AutoQuoteError(Exception):
    """报价系统基础异常"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class FormulaError(AutoQuoteError, ValueError):
    """公式无法解析或求值"""
    pass


class TransactionSaveError(AutoQuoteError):
    """成交记录写入失败"""
    pass

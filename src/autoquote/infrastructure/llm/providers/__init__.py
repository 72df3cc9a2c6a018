"""
AI 提供方。
"""
from .base import (
    AIProvider, AIError, AIProviderError, AITimeoutError, AIRateLimitError, AIResponseFormatError
)
from .openai_provider import OpenAICompatibleProvider
from .aliyun_provider import AliyunProvider

__all__ = [
    "AIProvider",
    "AIError",
    "AIProviderError",
    "AITimeoutError",
    "AIRateLimitError",
    "AIResponseFormatError",
    "OpenAICompatibleProvider",
    "AliyunProvider",
]

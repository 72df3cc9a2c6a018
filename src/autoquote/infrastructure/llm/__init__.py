"""
AI 提供方基础设施：接口、实现、工厂与提示词。
"""
from .providers import (
    AIProvider, AIError, AIProviderError, AITimeoutError, AIRateLimitError, AIResponseFormatError,
    OpenAICompatibleProvider, AliyunProvider
)
from .factory import AIProviderFactory, create_ai_provider
from .response_parser import parse_nlu_response

__all__ = [
    "AIProvider",
    "AIError",
    "AIProviderError",
    "AITimeoutError",
    "AIRateLimitError",
    "AIResponseFormatError",
    "OpenAICompatibleProvider",
    "AliyunProvider",
    "AIProviderFactory",
    "create_ai_provider",
    "parse_nlu_response",
]

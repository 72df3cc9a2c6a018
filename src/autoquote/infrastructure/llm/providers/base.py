"""
AI 提供方的统一接口。
所有实现返回与规则层相同结构的 NLUResult；NLU 编排只依赖这个接口。
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ....domain.entities.nlu import NLUContext, NLUResult


class AIProvider(ABC):
    """
    抽象 AI 提供方。
    调用是尽力而为的：任何失败都以 AIError 抛出，由调用方降级。
    """

    def __init__(self, config: Dict[str, Any]) -> None:
        """
        初始化提供方。

        Args:
            config: 提供方配置（api_key、model、timeout 等）
        """
        self.config = config
        self.provider_name = self._get_provider_name()

    @abstractmethod
    def _get_provider_name(self) -> str:
        """返回提供方名称。"""
        pass

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        发送一次对话请求，返回模型的文本输出。

        Args:
            system_prompt: 系统提示词
            user_prompt: 用户提示词

        Returns:
            模型输出原文

        Raises:
            AIProviderError: 网络、鉴权或非 2xx 响应
            AITimeoutError: 请求超时
            AIRateLimitError: 触发限流
        """
        pass

    @abstractmethod
    async def parse(self, text: str, context: Optional[NLUContext] = None) -> NLUResult:
        """
        结构化解析一句话。

        Args:
            text: 用户原话
            context: 会话提示

        Returns:
            source="ai" 的 NLUResult

        Raises:
            AIError: 任何失败
        """
        pass

    async def is_healthy(self) -> bool:
        """
        检查提供方是否可用。

        Returns:
            True 表示可用
        """
        return bool(self.config.get("api_key"))

    async def close(self) -> None:
        """释放底层连接"""
        pass


class AIError(Exception):
    """AI 调用的基础异常"""
    pass


class AIProviderError(AIError):
    """提供方返回错误"""

    def __init__(self, provider: str, message: str, original_error: Optional[Exception] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(f"[{provider}] {message}")


class AITimeoutError(AIError):
    """请求超时"""
    pass


class AIRateLimitError(AIError):
    """触发限流"""
    pass


class AIResponseFormatError(AIProviderError):
    """输出不是约定的 JSON"""
    pass

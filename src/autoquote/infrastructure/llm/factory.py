"""
AI 提供方工厂。
按配置创建提供方并缓存实例；auto 模式下 OpenAI 兼容接口优先，其次阿里云。
"""
import logging
from typing import Any, Dict, List, Optional

from .providers import AIProvider, AliyunProvider, OpenAICompatibleProvider, AIProviderError
from ...config.settings import Settings, settings as default_settings

SUPPORTED_PROVIDERS = ("openai", "aliyun")


class AIProviderFactory:
    """
    创建并缓存 AI 提供方。
    """

    def __init__(self, config: Optional[Settings] = None) -> None:
        self._settings = config or default_settings
        self._providers_cache: Dict[str, AIProvider] = {}
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def available_providers(self) -> List[str]:
        """已配置 API Key 的提供方，按优先级排列"""
        available = []
        if self._settings.is_openai_configured:
            available.append("openai")
        if self._settings.is_aliyun_configured:
            available.append("aliyun")
        return available

    def create_default_provider(self) -> Optional[AIProvider]:
        """
        按 AI_ENABLED / AI_PROVIDER 创建提供方。

        Returns:
            提供方；AI 关闭或没有可用配置时为 None
        """
        if not self._settings.ai_enabled:
            self._logger.info("AI 已关闭，仅使用规则识别")
            return None

        requested = self._settings.ai_provider.lower()
        if requested == "auto":
            candidates = self.available_providers()
        else:
            candidates = [requested]

        for name in candidates:
            try:
                return self.create_provider(name)
            except (ValueError, AIProviderError) as e:
                self._logger.warning(f"提供方 {name} 创建失败: {e}")

        self._logger.info("没有可用的 AI 提供方，仅使用规则识别")
        return None

    def create_provider(self, provider_name: str, config: Optional[Dict[str, Any]] = None) -> AIProvider:
        """
        按名称创建提供方。

        Args:
            provider_name: openai 或 aliyun
            config: 覆盖默认配置

        Returns:
            提供方实例（同配置复用缓存）
        """
        name = provider_name.lower()
        if name not in SUPPORTED_PROVIDERS:
            raise AIProviderError("factory", f"不支持的提供方: {provider_name}")

        config = config or self._default_config(name)
        cache_key = f"{name}_{hash(str(sorted(config.items())))}"
        if cache_key in self._providers_cache:
            self._logger.debug(f"复用缓存的提供方: {name}")
            return self._providers_cache[cache_key]

        if name == "openai":
            provider = OpenAICompatibleProvider(config)
        else:
            provider = AliyunProvider(config)

        self._providers_cache[cache_key] = provider
        self._logger.info(f"创建 AI 提供方: {name}")
        return provider

    def _default_config(self, name: str) -> Dict[str, Any]:
        s = self._settings
        if name == "openai":
            return {
                "api_key": s.openai_api_key,
                "base_url": s.openai_api_base,
                "model": s.openai_model,
                "temperature": s.openai_temperature,
                "max_tokens": s.openai_max_tokens,
                "timeout": s.ai_timeout_seconds,
            }
        return {
            "api_key": s.dashscope_api_key,
            "model": s.aliyun_model,
            "intent_model": s.aliyun_intent_model,
            "use_intent_model": s.aliyun_use_intent_model,
            "timeout": s.ai_timeout_seconds,
        }

    async def close_all(self) -> None:
        for provider in self._providers_cache.values():
            try:
                await provider.close()
            except Exception as e:
                self._logger.error(f"关闭提供方 {provider.provider_name} 失败: {e}")
        self._providers_cache.clear()


def create_ai_provider(config: Optional[Settings] = None) -> Optional[AIProvider]:
    """按配置创建默认提供方，没有可用配置时返回 None"""
    return AIProviderFactory(config).create_default_provider()

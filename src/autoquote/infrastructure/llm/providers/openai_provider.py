"""
OpenAI 兼容接口的 AI 提供方。
通过 base_url 可对接 OpenAI、DeepSeek、Moonshot 等兼容服务。
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI

from .base import AIProvider, AIProviderError, AITimeoutError, AIRateLimitError
from ..prompts import build_system_prompt, build_user_prompt
from ..response_parser import parse_nlu_response
from ....domain.entities.nlu import NLUContext, NLUResult


class OpenAICompatibleProvider(AIProvider):
    """
    OpenAI 兼容提供方。
    要求模型以 JSON 对象格式输出。
    """

    def __init__(self, config: Dict[str, Any], client: Optional[AsyncOpenAI] = None) -> None:
        """
        初始化提供方。

        Args:
            config: api_key、base_url、model、temperature、max_tokens、timeout
            client: 预先创建的客户端（测试时注入）
        """
        super().__init__(config)

        self.api_key = config.get("api_key")
        if not self.api_key and client is None:
            raise ValueError("OpenAI 兼容接口未配置 API Key")

        self.base_url = config.get("base_url", "https://api.openai.com/v1")
        self.model = config.get("model", "gpt-3.5-turbo")
        self.temperature = config.get("temperature", 0.3)
        self.max_tokens = config.get("max_tokens", 512)
        self.timeout = config.get("timeout", 15)

        self.client = client or AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
        )

        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _get_provider_name(self) -> str:
        return "openai"

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            self._logger.debug(f"请求 {self.base_url} 模型 {self.model}")

            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )

            content = response.choices[0].message.content or ""
            self._logger.debug(f"收到响应: {len(content)} 字符")
            return content

        except openai.RateLimitError as e:
            self._logger.warning(f"触发限流: {e}")
            raise AIRateLimitError(f"触发限流: {e}")

        except openai.APITimeoutError as e:
            self._logger.error(f"请求超时: {e}")
            raise AITimeoutError(f"请求 {self.provider_name} 超时: {e}")

        except Exception as e:
            self._logger.error(f"接口调用失败: {e}")
            raise AIProviderError(self.provider_name, f"接口调用失败: {e}", e)

    async def parse(self, text: str, context: Optional[NLUContext] = None) -> NLUResult:
        content = await self.complete(build_system_prompt(), build_user_prompt(text, context))
        return parse_nlu_response(content, text, self.provider_name)

    async def is_healthy(self) -> bool:
        try:
            content = await asyncio.wait_for(
                self.complete("只返回 JSON。", '返回 {"ok": true}'),
                timeout=10,
            )
            return len(content) > 0
        except Exception as e:
            self._logger.error(f"健康检查失败: {e}")
            return False

    async def close(self) -> None:
        await self.client.close()

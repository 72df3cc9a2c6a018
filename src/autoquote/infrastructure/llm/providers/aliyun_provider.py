"""
阿里云 DashScope（通义千问）AI 提供方。
优先调用意图理解专用模型，非 2xx 时降级到通用大模型。
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .base import AIProvider, AIProviderError, AITimeoutError, AIRateLimitError
from ..prompts import build_system_prompt, build_user_prompt
from ..response_parser import AINLUPayload, parse_nlu_response, payload_to_result
from ....domain.entities.nlu import IntentType, NLUContext, NLUResult

DASHSCOPE_BASE_URL = "https://dashscope.aliyuncs.com/api/v1"
GENERATION_PATH = "/services/aigc/text-generation/generation"

INTENT_DEFINITIONS = [
    {"name": IntentType.RETAIL_QUOTE.value, "description": "零售报价"},
    {"name": IntentType.PURCHASE_PRICE_CHECK.value, "description": "进货核价"},
    {"name": IntentType.SINGLE_ITEM_QUERY.value, "description": "单品查询"},
    {"name": IntentType.PRICE_CORRECTION.value, "description": "纠错改价"},
    {"name": IntentType.CONFIRM.value, "description": "确认"},
    {"name": IntentType.DENY.value, "description": "否定"},
]
SLOT_DEFINITIONS = [
    {"name": "partner", "description": "顾客或供货商名称"},
    {"name": "product", "description": "商品名称"},
    {"name": "quantity", "description": "数量"},
    {"name": "unit", "description": "单位"},
    {"name": "price", "description": "价格"},
]


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


class AliyunProvider(AIProvider):
    """
    通义千问提供方。
    use_intent_model=True 时先走 tongyi-intent-detect，失败再走 qwen 通用模型。
    """

    def __init__(self, config: Dict[str, Any], client: Optional[httpx.AsyncClient] = None) -> None:
        """
        初始化提供方。

        Args:
            config: api_key、model、intent_model、use_intent_model、timeout
            client: 预先创建的 httpx 客户端（测试时注入）
        """
        super().__init__(config)

        self.api_key = config.get("api_key")
        if not self.api_key:
            raise ValueError("阿里云 API Key 未配置，请设置 DASHSCOPE_API_KEY")

        self.model = config.get("model", "qwen-flash")
        self.intent_model = config.get("intent_model", "tongyi-intent-detect-v3")
        self.use_intent_model = config.get("use_intent_model", True)
        self.timeout = config.get("timeout", 15)
        self.base_url = config.get("base_url", DASHSCOPE_BASE_URL)
        self._client = client

        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _get_provider_name(self) -> str:
        return "aliyun"

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-DashScope-SSE": "disable",
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        try:
            return await self.client.post(
                f"{self.base_url}{GENERATION_PATH}",
                json=payload,
                headers=self._headers,
            )
        except httpx.TimeoutException:
            self._logger.error("DashScope 请求超时")
            raise AITimeoutError("请求 DashScope 超时")
        except httpx.HTTPError as e:
            self._logger.error(f"DashScope 网络错误: {e}")
            raise AIProviderError(self.provider_name, f"网络错误: {e}", e)

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code == 429:
            raise AIRateLimitError("DashScope 触发限流")
        if response.status_code >= 400:
            raise AIProviderError(
                self.provider_name,
                f"HTTP {response.status_code}: {response.text[:200]}",
            )

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        response = await self._post({
            "model": self.model,
            "input": {
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ]
            },
            "parameters": {
                "result_format": "message",
                "temperature": 0.1,
                "max_tokens": 1000,
            },
        })
        self._raise_for_status(response)

        try:
            result = response.json()
            return result["output"]["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AIProviderError(self.provider_name, f"响应格式异常: {e}", e)

    async def parse(self, text: str, context: Optional[NLUContext] = None) -> NLUResult:
        if self.use_intent_model:
            result = await self._parse_with_intent_model(text)
            if result is not None:
                return result
        content = await self.complete(build_system_prompt(), build_user_prompt(text, context))
        return parse_nlu_response(content, text, self.provider_name)

    async def _parse_with_intent_model(self, text: str) -> Optional[NLUResult]:
        """意图理解模型；非 2xx 或结构不符时返回 None 以降级"""
        response = await self._post({
            "model": self.intent_model,
            "input": {
                "prompt": text,
                "intents": INTENT_DEFINITIONS,
                "slots": SLOT_DEFINITIONS,
            },
            "parameters": {"result_format": "message"},
        })
        if response.status_code == 429:
            raise AIRateLimitError("DashScope 触发限流")
        if response.status_code >= 400:
            self._logger.warning(f"意图模型返回 {response.status_code}，降级到 {self.model}")
            return None

        try:
            output = response.json().get("output") or {}
        except ValueError:
            self._logger.warning("意图模型响应不是 JSON，降级")
            return None

        choices = output.get("choices")
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""
            return parse_nlu_response(content, text, self.provider_name)
        if "intent" not in output:
            return None
        return self._slots_to_result(output, text)

    def _slots_to_result(self, output: Dict[str, Any], text: str) -> Optional[NLUResult]:
        slots = output.get("slots") or {}
        names = _as_list(slots.get("product"))
        quantities = _as_list(slots.get("quantity"))
        units = _as_list(slots.get("unit"))
        products = []
        for index, name in enumerate(names):
            products.append({
                "name": name,
                "quantity": quantities[index] if index < len(quantities) else 1,
                "unit": units[index] if index < len(units) else "个",
            })
        data = {
            "intent": output.get("intent"),
            "confidence": output.get("confidence"),
            "partner": slots.get("partner"),
            "products": products,
            "prices": _as_list(slots.get("price")),
        }
        try:
            payload = AINLUPayload(**data)
        except (ValidationError, TypeError, ValueError) as e:
            self._logger.warning(f"意图模型槽位不合法，降级: {e}")
            return None
        return payload_to_result(payload, text, self.provider_name)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

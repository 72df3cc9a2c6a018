"""
NLU 编排：规则识别为主，AI 识别尽力而为。
规则结果置信度不足时才调用 AI；AI 的任何失败（超时、坏 JSON、非 2xx）都静默降级为规则结果。
"""
import asyncio
import logging
from typing import Dict, List, Optional

from ..entities.nlu import (
    IntentType, NLUContext, NLUResult, PriceEntity, ProductEntity
)
from .entity_extractor import EntityExtractor, NameDictionary
from .intent_classifier import IntentClassifier
from ...infrastructure.llm.providers.base import AIProvider

DEFAULT_CONFIDENCE_THRESHOLD = 0.6
CLARIFY_CONFIDENCE = 0.4
LONG_TEXT_LENGTH = 10

PROMPT_NOT_UNDERSTOOD = "抱歉，我没太听懂。你是想问商品价格，还是要结账报价？"
PROMPT_MISSING_PRODUCTS = "你想要什么商品？可以说具体的商品名和数量。"
PROMPT_MISSING_PARTNER = "请问是哪位顾客？"
PROMPT_REPEAT = "请再说一遍，我没太听清。"


class NLUService:
    """
    混合 NLU 服务。
    依赖通过构造函数注入，AI 提供方可在运行时切换或关闭。
    """

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        extractor: Optional[EntityExtractor] = None,
        ai_provider: Optional[AIProvider] = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        ai_timeout: float = 15.0,
        ai_enabled: bool = True,
    ) -> None:
        """
        Args:
            classifier: 意图分类器
            extractor: 实体抽取器
            ai_provider: AI 提供方，None 表示只用规则
            confidence_threshold: 低于该置信度时调用 AI
            ai_timeout: AI 调用超时（秒）
            ai_enabled: 是否启用 AI
        """
        self.classifier = classifier or IntentClassifier()
        self.extractor = extractor or EntityExtractor()
        self._ai_provider = ai_provider
        self._ai_enabled = ai_enabled
        self.confidence_threshold = confidence_threshold
        self.ai_timeout = ai_timeout
        self._stats: Dict[str, int] = {"total": 0, "ai_calls": 0, "ai_failures": 0}
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def ai_active(self) -> bool:
        return self._ai_enabled and self._ai_provider is not None

    async def parse(self, text: str, context: Optional[NLUContext] = None) -> NLUResult:
        """
        解析一句话。

        Args:
            text: 用户原话
            context: 会话提示（当前客户、购物车、上一轮意图）

        Returns:
            NLUResult
        """
        self._stats["total"] += 1
        result = self.parse_with_rules(text)

        if self.ai_active and self.should_use_ai(result):
            ai_result = await self._parse_with_ai(text, context)
            if ai_result is not None:
                result = self.merge(result, ai_result)

        return self._apply_context(result, context)

    def parse_with_rules(self, text: str) -> NLUResult:
        """只用规则识别"""
        intent = self.classifier.classify(text)
        entities = self.extractor.extract_all(text)
        return NLUResult.from_parts(intent, entities, raw_text=text, source="rule")

    def should_use_ai(self, result: NLUResult) -> bool:
        """规则置信度低、意图未知、或长句却没抽到商品时调用 AI"""
        if result.intent.confidence < self.confidence_threshold:
            return True
        if result.intent.intent == IntentType.UNKNOWN:
            return True
        if not result.products and len(result.raw_text or "") > LONG_TEXT_LENGTH:
            return True
        return False

    async def _parse_with_ai(self, text: str, context: Optional[NLUContext]) -> Optional[NLUResult]:
        provider = self._ai_provider
        self._stats["ai_calls"] += 1
        try:
            return await asyncio.wait_for(provider.parse(text, context), timeout=self.ai_timeout)
        except asyncio.TimeoutError:
            self._logger.warning(f"AI 识别超时 ({self.ai_timeout}s)，使用规则结果")
        except Exception as e:
            self._logger.warning(f"AI 识别失败，使用规则结果: {e}")
        self._stats["ai_failures"] += 1
        return None

    @staticmethod
    def merge(rule_result: NLUResult, ai_result: NLUResult) -> NLUResult:
        """
        合并规则与 AI 结果。
        意图取置信度高者，相同时取规则层；客户优先取 AI；
        商品按小写名合并保留高置信度；价格按数值去重。
        """
        if rule_result.intent.confidence >= ai_result.intent.confidence:
            intent = rule_result.intent
        else:
            intent = ai_result.intent

        products: Dict[str, ProductEntity] = {}
        for product in list(rule_result.products) + list(ai_result.products):
            existing = products.get(product.key)
            if existing is None or product.confidence > existing.confidence:
                products[product.key] = product

        prices: List[PriceEntity] = []
        seen_values = set()
        for price in list(rule_result.prices) + list(ai_result.prices):
            if price.value not in seen_values:
                seen_values.add(price.value)
                prices.append(price)

        return NLUResult(
            intent=intent,
            products=list(products.values()),
            partner=ai_result.partner or rule_result.partner,
            prices=prices,
            raw_text=rule_result.raw_text,
            source="merged",
            metadata=dict(ai_result.metadata),
        )

    def _apply_context(self, result: NLUResult, context: Optional[NLUContext]) -> NLUResult:
        """本句没提到客户时沿用会话中的当前客户"""
        if context is None or result.partner is not None or context.current_partner is None:
            return result
        if result.intent.intent.is_quoting:
            result.partner = context.current_partner
        return result

    def needs_clarification(self, result: NLUResult) -> bool:
        intent = result.intent
        if intent.intent == IntentType.UNKNOWN or intent.confidence < CLARIFY_CONFIDENCE:
            return True
        if intent.intent == IntentType.RETAIL_QUOTE and not result.products:
            return True
        return False

    def get_clarification_prompt(self, result: NLUResult) -> str:
        """按缺失的信息选择固定的追问话术"""
        intent = result.intent
        if intent.intent == IntentType.UNKNOWN or intent.confidence < CLARIFY_CONFIDENCE:
            return PROMPT_NOT_UNDERSTOOD
        if intent.intent == IntentType.RETAIL_QUOTE and not result.products:
            return PROMPT_MISSING_PRODUCTS
        if intent.intent.is_quoting and result.partner is None:
            return PROMPT_MISSING_PARTNER
        return PROMPT_REPEAT

    def set_dictionary(self, dictionary: NameDictionary) -> None:
        self.extractor.set_dictionary(dictionary)

    def enable_ai(self) -> None:
        self._ai_enabled = True
        self._logger.info("AI 识别已开启")

    def disable_ai(self) -> None:
        self._ai_enabled = False
        self._logger.info("AI 识别已关闭")

    def switch_ai_provider(self, provider: Optional[AIProvider]) -> None:
        """切换 AI 提供方，None 表示移除"""
        old = self._ai_provider.provider_name if self._ai_provider else None
        self._ai_provider = provider
        new = provider.provider_name if provider else None
        self._logger.info(f"AI 提供方切换: {old} -> {new}")

    def ai_status(self) -> Dict[str, object]:
        return {
            "enabled": self._ai_enabled,
            "provider": self._ai_provider.provider_name if self._ai_provider else None,
            "threshold": self.confidence_threshold,
            "timeout": self.ai_timeout,
            **self._stats,
        }

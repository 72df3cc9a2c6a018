"""
NLU 领域实体：意图、商品、客户、价格以及一次解析的完整结果。
纯数据结构，不依赖基础设施。
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class IntentType(str, Enum):
    """用户话语的意图"""
    RETAIL_QUOTE = "retail_quote"                   # 零售报价：给张三两瓶可乐多少钱
    PURCHASE_PRICE_CHECK = "purchase_price_check"   # 查进价：可乐进价多少
    SINGLE_ITEM_QUERY = "single_item_query"         # 单品询价：可乐怎么卖
    PRICE_CORRECTION = "price_correction"           # 改价：按8块算
    CONFIRM = "confirm"                             # 确认：好的
    DENY = "deny"                                   # 否认：不对
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "IntentType":
        """宽松转换，无法识别时返回 UNKNOWN"""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_quoting(self) -> bool:
        """需要客户与商品信息的报价类意图"""
        return self in (IntentType.RETAIL_QUOTE, IntentType.PURCHASE_PRICE_CHECK)


@dataclass
class IntentResult:
    """意图识别结果"""
    intent: IntentType
    confidence: float
    raw_text: str = ""


@dataclass
class ProductEntity:
    """商品实体。购物车中按小写名称合并，数量相加"""
    name: str
    quantity: float = 1
    unit: str = "个"
    confidence: float = 0.0
    product_id: Optional[int] = None

    @property
    def key(self) -> str:
        return self.name.lower()


@dataclass
class PartnerEntity:
    """客户/供应商实体，每句话最多一个"""
    name: str
    confidence: float = 0.0
    partner_id: Optional[int] = None
    level: Optional[str] = None


@dataclass
class PriceEntity:
    """话语中出现的价格，仅在改价时使用"""
    value: float
    unit: str = "元"
    context: str = ""


@dataclass
class ExtractedEntities:
    """实体抽取的汇总结果"""
    products: List[ProductEntity] = field(default_factory=list)
    partner: Optional[PartnerEntity] = None
    prices: List[PriceEntity] = field(default_factory=list)


@dataclass
class NLUResult:
    """一次 NLU 解析的完整结果"""
    intent: IntentResult
    products: List[ProductEntity] = field(default_factory=list)
    partner: Optional[PartnerEntity] = None
    prices: List[PriceEntity] = field(default_factory=list)
    raw_text: str = ""
    source: str = "rule"  # rule | ai | merged
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def confidence(self) -> float:
        return self.intent.confidence

    @classmethod
    def from_parts(
        cls,
        intent: IntentResult,
        entities: ExtractedEntities,
        raw_text: str,
        source: str = "rule",
    ) -> "NLUResult":
        return cls(
            intent=intent,
            products=list(entities.products),
            partner=entities.partner,
            prices=list(entities.prices),
            raw_text=raw_text,
            source=source,
        )


@dataclass
class NLUContext:
    """会话提示，随每次解析传给 NLU 与 AI 提供方"""
    current_partner: Optional[PartnerEntity] = None
    cart_items: List[ProductEntity] = field(default_factory=list)
    last_intent: Optional[IntentType] = None

"""
定价领域实体：规则、商品与客户信息、报价以及历史价格分布。
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .nlu import PartnerEntity, ProductEntity


class ScopeType(str, Enum):
    """定价规则作用域"""
    GLOBAL = "global"       # 全店
    CATEGORY = "category"   # 商品类别
    LEVEL = "level"         # 客户等级
    SPECIAL = "special"     # 客户 + 商品专用

    @property
    def rank(self) -> int:
        """作用域优先级：special > level > category > global"""
        return _SCOPE_RANK[self]


_SCOPE_RANK = {
    ScopeType.GLOBAL: 0,
    ScopeType.CATEGORY: 1,
    ScopeType.LEVEL: 2,
    ScopeType.SPECIAL: 3,
}


class RoundingStrategy(str, Enum):
    """取整策略，粒度为 1 元或 0.5 元"""
    NONE = "none"
    FLOOR_TO_1 = "floor_to_1"
    CEIL_TO_1 = "ceil_to_1"
    ROUND_TO_1 = "round_to_1"
    ROUND_TO_HALF = "round_to_0.5"
    FLOOR_TO_HALF = "floor_to_0.5"

    @classmethod
    def from_string(
        cls,
        value: Optional[str],
        default: "RoundingStrategy" = None,
    ) -> "RoundingStrategy":
        if default is None:
            default = cls.ROUND_TO_1
        if not value:
            return default
        try:
            return cls(value.strip().lower())
        except ValueError:
            return default


class PartnerLevel(str, Enum):
    """客户等级"""
    NORMAL = "normal"
    REGULAR = "regular"
    SMALL_BUSINESS = "small_business"
    BIG_CUSTOMER = "big_customer"


@dataclass
class PricingRule:
    """
    定价规则。
    formula 为包含 cost/price 的算术表达式，或一个固定价格数字。
    special 规则通过 product_id + partner_id 精确匹配。
    """
    scope_type: ScopeType
    formula: str
    scope_value: Optional[str] = None
    rounding: RoundingStrategy = RoundingStrategy.ROUND_TO_1
    priority: int = 0
    enabled: bool = True
    product_id: Optional[int] = None
    partner_id: Optional[int] = None
    description: str = ""
    id: Optional[int] = None


@dataclass
class ProductInfo:
    """商品主数据（成本、类别）"""
    name: str
    base_cost: float = 0.0
    category: str = ""
    unit: str = "个"
    aliases: List[str] = field(default_factory=list)
    id: Optional[int] = None


@dataclass
class PartnerInfo:
    """客户主数据"""
    name: str
    level: str = PartnerLevel.NORMAL.value
    type: str = "customer"
    id: Optional[int] = None

    def to_entity(self, confidence: float = 1.0) -> PartnerEntity:
        return PartnerEntity(
            name=self.name,
            confidence=confidence,
            partner_id=self.id,
            level=self.level,
        )


@dataclass
class PricingContext:
    """报价请求"""
    products: List[ProductEntity] = field(default_factory=list)
    partner: Optional[PartnerEntity] = None


@dataclass
class QuoteItem:
    """报价明细行"""
    product_name: str
    quantity: float
    unit: str
    base_cost: float
    suggested_price: float
    subtotal: float
    confidence: float
    rule_id: Optional[int] = None
    rule_description: str = ""
    product_id: Optional[int] = None
    historical_price: Optional[float] = None
    actual_price: Optional[float] = None

    @property
    def effective_price(self) -> float:
        """改价后以实际价格为准"""
        return self.actual_price if self.actual_price is not None else self.suggested_price


@dataclass
class QuoteResponse:
    """完整报价"""
    items: List[QuoteItem]
    total_suggested_price: float
    message: str
    confidence: float
    needs_confirmation: bool
    partner: Optional[PartnerEntity] = None
    rounding_suggestion: Optional[str] = None


@dataclass
class PriceDistribution:
    """单个商品（可按客户细分）的历史价格分布"""
    product_name: str
    min: float
    max: float
    avg: float
    median: float
    mode: float
    std_dev: float
    weighted_avg: float
    confidence: float
    sample_count: int
    last_updated: datetime
    partner_id: Optional[int] = None


@dataclass
class PriceSample:
    """一次成交中某商品的单价"""
    price: float
    timestamp: datetime


@dataclass
class PriceCheckResult:
    """价格合理性检查结果"""
    is_reasonable: bool
    deviation: float
    suggestion: Optional[str] = None


class RecommendationType(str, Enum):
    """规则推荐类型"""
    SPECIAL = "special"     # 某客户买某商品的固定价
    CATEGORY = "category"   # 某类商品的统一加价率


@dataclass
class RuleRecommendation:
    """
    从成交历史中发现的规则建议，规则本身默认不启用，应用时才启用。
    current_price / recommended_price 只对单个商品的建议有意义。
    """
    id: str
    type: RecommendationType
    rule: PricingRule
    reason: str
    confidence: float
    sample_count: int
    stability: float
    estimated_profit_change: float = 0.0
    current_price: Optional[float] = None
    recommended_price: Optional[float] = None

"""
定价引擎。
对每个商品：查成本与类别 → 匹配作用域最具体、优先级最高的规则 → 计算公式
→ 与历史价格加权混合 → 按规则取整 → 计算小计。
任何数据缺失都有兜底，报价永远不会失败。
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..entities.nlu import PartnerEntity, ProductEntity
from ..entities.pricing import (
    PricingContext, PricingRule, ProductInfo, QuoteItem, QuoteResponse, RoundingStrategy, ScopeType
)
from ..interfaces.repositories import ProductCatalog, RuleStore
from .formula import Expression, FormulaError, apply_rounding, compile_formula, evaluate
from .history_learning import HistoryLearningService
from ...infrastructure.utils.text_utils import format_amount, format_quantity

NOT_FOUND_PENALTY = 0.7
CONFIRMATION_THRESHOLD = 0.7
ROUNDING_SUGGESTION_LIMIT = 0.5


def default_rules() -> List[PricingRule]:
    """规则存储不可用时的内置规则"""
    return [
        PricingRule(
            scope_type=ScopeType.GLOBAL,
            formula="cost * 1.2",
            rounding=RoundingStrategy.ROUND_TO_1,
            priority=0,
            description="全店默认加价 20%",
        ),
        PricingRule(
            scope_type=ScopeType.CATEGORY,
            scope_value="饮料",
            formula="cost * 1.15",
            rounding=RoundingStrategy.ROUND_TO_HALF,
            priority=10,
            description="饮料加价 15%",
        ),
        PricingRule(
            scope_type=ScopeType.CATEGORY,
            scope_value="日用品",
            formula="cost * 1.25",
            rounding=RoundingStrategy.ROUND_TO_1,
            priority=10,
            description="日用品加价 25%",
        ),
    ]


@dataclass(frozen=True)
class CompiledRule:
    """规则及其编译后的公式"""
    rule: PricingRule
    expression: Expression

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.rule.scope_type.rank, self.rule.priority)

    def matches(self, product_id: Optional[int], category: str, partner: Optional[PartnerEntity]) -> bool:
        rule = self.rule
        if not rule.enabled:
            return False
        if rule.scope_type == ScopeType.SPECIAL:
            return (
                rule.product_id is not None
                and partner is not None
                and rule.partner_id is not None
                and rule.product_id == product_id
                and rule.partner_id == partner.partner_id
            )
        if rule.scope_type == ScopeType.LEVEL:
            return partner is not None and bool(partner.level) and partner.level == rule.scope_value
        if rule.scope_type == ScopeType.CATEGORY:
            return bool(category) and category == rule.scope_value
        return True


def compile_rules(rules: Sequence[PricingRule], logger: Optional[logging.Logger] = None) -> Tuple[CompiledRule, ...]:
    """编译并排序；公式非法的规则被跳过"""
    compiled = []
    for rule in rules:
        try:
            compiled.append(CompiledRule(rule=rule, expression=compile_formula(rule.formula)))
        except FormulaError as e:
            if logger:
                logger.warning(f"规则 {rule.id or rule.description} 公式非法，已跳过: {e}")
    compiled.sort(key=lambda c: c.sort_key, reverse=True)
    return tuple(compiled)


class PricingEngine:
    """
    定价引擎。规则快照为不可变元组，刷新时整体替换。
    """

    def __init__(
        self,
        rule_store: Optional[RuleStore] = None,
        product_catalog: Optional[ProductCatalog] = None,
        history: Optional[HistoryLearningService] = None,
        default_margin: float = 0.2,
        historical_weight: float = 0.3,
        enable_historical_learning: bool = True,
        default_rounding: RoundingStrategy = RoundingStrategy.ROUND_TO_1,
    ) -> None:
        """
        Args:
            rule_store: 规则存储
            product_catalog: 商品查询
            history: 历史价格服务
            default_margin: 无规则时的默认毛利率
            historical_weight: 历史价格混合权重
            enable_historical_learning: 是否混合历史价格
            default_rounding: 无规则时的取整策略
        """
        self._rule_store = rule_store
        self._catalog = product_catalog
        self._history = history
        self.default_margin = default_margin
        self.historical_weight = historical_weight
        self.enable_historical_learning = enable_historical_learning
        self.default_rounding = default_rounding
        self._rules: Tuple[CompiledRule, ...] = ()
        self._loaded = False
        self._refresh_lock = asyncio.Lock()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def rules(self) -> List[PricingRule]:
        return [compiled.rule for compiled in self._rules]

    async def initialize(self) -> None:
        if not self._loaded:
            await self.refresh()

    async def refresh(self) -> int:
        """
        重新加载规则。
        存储不可用时：已有缓存则保留缓存，否则使用内置规则。

        Returns:
            当前规则数
        """
        async with self._refresh_lock:
            if self._rule_store is None:
                if not self._loaded:
                    self._rules = compile_rules(default_rules(), self._logger)
            else:
                try:
                    loaded = await self._rule_store.load_enabled_rules()
                    self._rules = compile_rules(loaded, self._logger)
                    self._logger.info(f"加载了 {len(self._rules)} 条定价规则")
                except Exception as e:
                    if self._loaded:
                        self._logger.error(f"加载定价规则失败，继续使用缓存规则: {e}")
                    else:
                        self._logger.error(f"加载定价规则失败，使用内置规则: {e}")
                        self._rules = compile_rules(default_rules(), self._logger)
            self._loaded = True
            return len(self._rules)

    def add_rule(self, rule: PricingRule) -> None:
        """
        运行时加入规则（不持久化）。

        Raises:
            FormulaError: 公式非法
        """
        compiled = CompiledRule(rule=rule, expression=compile_formula(rule.formula))
        rules = list(self._rules) + [compiled]
        rules.sort(key=lambda c: c.sort_key, reverse=True)
        self._rules = tuple(rules)
        self._loaded = True

    def match_rule(
        self,
        product_id: Optional[int],
        category: str,
        partner: Optional[PartnerEntity],
    ) -> Optional[CompiledRule]:
        for compiled in self._rules:
            if compiled.matches(product_id, category, partner):
                return compiled
        return None

    def rule_price(self, info: ProductInfo, partner: Optional[PartnerEntity] = None) -> float:
        """只按当前规则计算并取整的单价，不混合历史价格"""
        compiled = self.match_rule(info.id, info.category, partner)
        rounding = compiled.rule.rounding if compiled else self.default_rounding
        return apply_rounding(self.calculate_price(info.base_cost, compiled), rounding)

    async def resolve_product(self, name: str) -> Optional[ProductInfo]:
        """名称 → 别名 → 候选商品，第一个命中即返回"""
        if self._catalog is None:
            return None
        try:
            info = await self._catalog.find_by_name_or_alias(name)
            if info is None:
                info = await self._catalog.find_candidate(name)
            return info
        except Exception as e:
            self._logger.error(f"查询商品 {name} 失败: {e}")
            return None

    async def quote(self, context: PricingContext) -> QuoteResponse:
        """
        生成报价。

        Args:
            context: 商品列表与客户

        Returns:
            QuoteResponse
        """
        await self.initialize()

        items = []
        for product in context.products:
            items.append(await self._quote_product(product, context.partner))

        total = round(sum(item.subtotal for item in items), 2)
        confidence = sum(item.confidence for item in items) / len(items) if items else 0.0

        return QuoteResponse(
            items=items,
            total_suggested_price=total,
            message=build_quote_message(items, total, context.partner),
            confidence=confidence,
            needs_confirmation=confidence < CONFIRMATION_THRESHOLD,
            partner=context.partner,
            rounding_suggestion=rounding_suggestion(total),
        )

    async def _quote_product(self, product: ProductEntity, partner: Optional[PartnerEntity]) -> QuoteItem:
        info = await self.resolve_product(product.name)
        base_cost = info.base_cost if info else 0.0
        category = info.category if info else ""
        product_id = info.id if info else product.product_id

        compiled = self.match_rule(product_id, category, partner)
        price = self.calculate_price(base_cost, compiled)

        historical = None
        if self.enable_historical_learning and self._history is not None:
            historical = await self._historical_price(product.name, partner)
            if historical is not None:
                w = self.historical_weight
                price = price * (1 - w) + historical * w

        rounding = compiled.rule.rounding if compiled else self.default_rounding
        price = apply_rounding(price, rounding)

        return QuoteItem(
            product_name=product.name,
            quantity=product.quantity,
            unit=product.unit or (info.unit if info else "个"),
            base_cost=base_cost,
            suggested_price=price,
            subtotal=round(price * product.quantity, 2),
            confidence=product.confidence * (1.0 if info else NOT_FOUND_PENALTY),
            rule_id=compiled.rule.id if compiled else None,
            rule_description=compiled.rule.description if compiled else "",
            product_id=product_id,
            historical_price=historical,
        )

    def calculate_price(self, base_cost: float, compiled: Optional[CompiledRule]) -> float:
        """按规则公式计算；无规则或公式出错时用 成本 × (1 + 默认毛利)"""
        fallback = base_cost * (1 + self.default_margin)
        if compiled is None:
            return fallback
        try:
            return evaluate(compiled.expression, cost=base_cost, price=fallback)
        except FormulaError as e:
            self._logger.warning(f"规则公式 '{compiled.rule.formula}' 计算失败: {e}")
            return fallback

    async def _historical_price(self, product_name: str, partner: Optional[PartnerEntity]) -> Optional[float]:
        """先取该客户的历史价，没有再取全部客户的"""
        try:
            if partner is not None and partner.partner_id is not None:
                distribution = await self._history.get_price_distribution(product_name, partner.partner_id)
                if distribution is not None:
                    return distribution.weighted_avg
            distribution = await self._history.get_price_distribution(product_name)
            return distribution.weighted_avg if distribution is not None else None
        except Exception as e:
            self._logger.error(f"获取 {product_name} 历史价格失败: {e}")
            return None


def rounding_suggestion(total: float) -> Optional[str]:
    """总价离整数差 0.5 元以内时给出取整建议"""
    rounded = apply_rounding(total, RoundingStrategy.ROUND_TO_1)
    diff = round(rounded - total, 2)
    if diff == 0 or abs(diff) > ROUNDING_SUGGESTION_LIMIT:
        return None
    direction = "多收" if diff > 0 else "少收"
    return f"取整到 {format_amount(rounded)} 元（{direction} {abs(diff):.1f} 元）"


def build_quote_message(items: List[QuoteItem], total: float, partner: Optional[PartnerEntity]) -> str:
    """
    播报文本，如 "张三，2瓶可乐6块，纸巾3块，一共9块"。
    """
    prefix = f"{partner.name}，" if partner and partner.name else ""
    phrases = []
    for item in items:
        price = item.effective_price
        if item.quantity == 1:
            phrases.append(f"{item.product_name}{format_amount(price)}块")
        else:
            phrases.append(
                f"{format_quantity(item.quantity)}{item.unit}{item.product_name}{format_amount(item.subtotal)}块"
            )
    message = prefix + "，".join(phrases)
    if len(items) > 1:
        message += f"，一共{format_amount(total)}块"
    return message

"""
规则推荐：从成交历史中找出稳定的成交价，与当前规则算出的价格比较，给出新规则建议。

- 某客户买某商品总是同一个价 → special 固定价规则
- 某类商品实际售价相对成本有统一的加价率 → category 加价规则

建议默认不启用；apply_recommendation 时写入规则存储并加入定价引擎。
"""
import logging
import statistics
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..entities.nlu import PartnerEntity
from ..entities.pricing import (
    PriceDistribution, PricingRule, ProductInfo, RecommendationType, RoundingStrategy,
    RuleRecommendation, ScopeType
)
from ..interfaces.repositories import PartnerDirectory, PriceHistoryStore, RuleStore
from .formula import apply_rounding
from .history_learning import HistoryLearningService
from .pricing_engine import PricingEngine
from ...infrastructure.logging.hybrid_logger import HybridLogger, hybrid_logger
from ...infrastructure.utils.text_utils import format_amount

SPECIAL_RULE_PRIORITY = 100
CATEGORY_RULE_PRIORITY = 20
SPECIAL_FULL_CONFIDENCE_SAMPLES = 10
CATEGORY_FULL_CONFIDENCE_PRODUCTS = 5
MIN_CATEGORY_PRODUCTS = 3
CATEGORY_STABILITY_FACTOR = 0.7
PRICE_TOLERANCE = 0.05


def price_stability(avg: float, std_dev: float) -> float:
    """稳定性 = 1 - 变异系数；均值非正时为 0"""
    return 1 - std_dev / avg if avg > 0 else 0.0


class RuleRecommendationService:
    """根据历史价格分布推荐定价规则"""

    def __init__(
        self,
        history: HistoryLearningService,
        engine: PricingEngine,
        store: Optional[PriceHistoryStore] = None,
        partner_directory: Optional[PartnerDirectory] = None,
        rule_store: Optional[RuleStore] = None,
        days_to_analyze: int = 30,
        min_sample_size: int = 5,
        min_confidence: float = 0.6,
        stability_threshold: float = 0.8,
        event_logger: Optional[HybridLogger] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        """
        Args:
            history: 历史价格服务（计算分布）
            engine: 定价引擎（当前规则价、应用规则）
            store: 成交历史
            partner_directory: 客户查询
            rule_store: 规则存储，应用推荐时写入
            days_to_analyze: 分析的天数
            min_sample_size: 最少样本数
            min_confidence: 低于此置信度的推荐被丢弃
            stability_threshold: 价格稳定性阈值
            event_logger: 业务事件日志
            clock: 时钟（测试时替换）
        """
        self.history = history
        self.engine = engine
        self._store = store
        self._partners = partner_directory
        self._rule_store = rule_store
        self.days_to_analyze = days_to_analyze
        self.min_sample_size = min_sample_size
        self.min_confidence = min_confidence
        self.stability_threshold = stability_threshold
        self._events = event_logger or hybrid_logger
        self._clock = clock
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def generate_recommendations(self) -> List[RuleRecommendation]:
        """
        生成规则推荐，按置信度从高到低。

        Returns:
            置信度不低于 min_confidence 的推荐
        """
        if self._store is None:
            return []
        await self.engine.initialize()

        now = self._clock()
        since = now - timedelta(days=self.days_to_analyze)

        recommendations = await self._discover_special_rules(since, now)
        recommendations += await self._discover_category_rules(since, now)

        filtered = [r for r in recommendations if r.confidence >= self.min_confidence]
        filtered.sort(key=lambda r: r.confidence, reverse=True)
        self._logger.info(f"生成了 {len(filtered)} 条规则推荐（候选 {len(recommendations)} 条）")
        return filtered

    async def apply_recommendation(self, recommendation_id: str) -> Optional[PricingRule]:
        """
        把推荐启用为正式规则。

        Returns:
            启用后的规则；推荐不存在或保存失败时为 None
        """
        recommendations = await self.generate_recommendations()
        recommendation = next((r for r in recommendations if r.id == recommendation_id), None)
        if recommendation is None:
            self._logger.warning(f"未找到推荐: {recommendation_id}")
            return None

        rule = replace(recommendation.rule, enabled=True)
        if self._rule_store is not None:
            try:
                rule.id = await self._rule_store.save_rule(rule)
            except Exception as e:
                self._logger.error(f"保存推荐规则 {recommendation_id} 失败: {e}")
                return None

        self.engine.add_rule(rule)
        await self._events.business(
            "应用推荐规则",
            {"recommendation_id": recommendation_id, "rule_id": rule.id, "formula": rule.formula},
        )
        return rule

    async def _discover_special_rules(self, since: datetime, now: datetime) -> List[RuleRecommendation]:
        try:
            combos = await self._store.list_partner_purchases(since)
        except Exception as e:
            self._logger.error(f"加载客户成交组合失败: {e}")
            return []

        recommendations = []
        for partner_id, product_name in combos:
            distribution = await self._distribution(product_name, since, now, partner_id)
            if distribution is None:
                continue
            stability = price_stability(distribution.avg, distribution.std_dev)
            if stability < self.stability_threshold:
                continue

            # special 规则按商品ID匹配
            info = await self.engine.resolve_product(product_name)
            if info is None or info.id is None:
                continue

            partner = await self._resolve_partner(partner_id)
            current = self.engine.rule_price(info, partner)
            recommended = distribution.mode
            if abs(recommended - current) < PRICE_TOLERANCE:
                continue

            count = distribution.sample_count
            price_text = format_amount(recommended)
            rule = PricingRule(
                scope_type=ScopeType.SPECIAL,
                formula=price_text,
                scope_value=f"{partner.name}_{info.name}",
                rounding=RoundingStrategy.NONE,
                priority=SPECIAL_RULE_PRIORITY,
                enabled=False,
                product_id=info.id,
                partner_id=partner_id,
                description=f"{partner.name}专用价：{info.name} {price_text}元",
            )
            recommendations.append(RuleRecommendation(
                id=f"special_{partner_id}_{info.name.lower()}",
                type=RecommendationType.SPECIAL,
                rule=rule,
                reason=f"{partner.name} 经常以 ¥{recommended:.1f} 购买 {info.name}，价格稳定（现规则 ¥{current:.1f}）",
                confidence=min(1.0, stability * count / SPECIAL_FULL_CONFIDENCE_SAMPLES),
                sample_count=count,
                stability=stability,
                estimated_profit_change=round((recommended - current) * count, 2),
                current_price=current,
                recommended_price=recommended,
            ))
        return recommendations

    async def _discover_category_rules(self, since: datetime, now: datetime) -> List[RuleRecommendation]:
        try:
            names = await self._store.list_sold_products(since)
        except Exception as e:
            self._logger.error(f"加载成交商品列表失败: {e}")
            return []

        by_category: Dict[str, List[Tuple[ProductInfo, PriceDistribution, float]]] = defaultdict(list)
        for name in names:
            info = await self.engine.resolve_product(name)
            if info is None or not info.category or info.base_cost <= 0:
                continue
            distribution = await self._distribution(name, since, now)
            if distribution is None:
                continue
            margin = distribution.mode / info.base_cost - 1
            by_category[info.category].append((info, distribution, margin))

        recommendations = []
        for category, entries in by_category.items():
            if len(entries) < MIN_CATEGORY_PRODUCTS:
                continue
            margins = [margin for _, _, margin in entries]
            avg_margin = sum(margins) / len(margins)
            stability = price_stability(avg_margin, statistics.stdev(margins))
            if stability < self.stability_threshold * CATEGORY_STABILITY_FACTOR:
                continue

            multiplier = round(1 + avg_margin, 2)
            changed = False
            profit_change = 0.0
            for info, distribution, _ in entries:
                current = self.engine.rule_price(info)
                proposed = apply_rounding(info.base_cost * multiplier, RoundingStrategy.ROUND_TO_HALF)
                if abs(proposed - current) >= PRICE_TOLERANCE:
                    changed = True
                profit_change += (proposed - current) * distribution.sample_count
            if not changed:
                continue

            rule = PricingRule(
                scope_type=ScopeType.CATEGORY,
                formula=f"cost * {multiplier:.2f}",
                scope_value=category,
                rounding=RoundingStrategy.ROUND_TO_HALF,
                priority=CATEGORY_RULE_PRIORITY,
                enabled=False,
                description=f"{category}加价 {avg_margin * 100:.0f}%",
            )
            recommendations.append(RuleRecommendation(
                id=f"category_{category}",
                type=RecommendationType.CATEGORY,
                rule=rule,
                reason=f"{category} 类商品平均加价 {avg_margin * 100:.0f}%",
                confidence=min(1.0, stability * len(entries) / CATEGORY_FULL_CONFIDENCE_PRODUCTS),
                sample_count=sum(distribution.sample_count for _, distribution, _ in entries),
                stability=stability,
                estimated_profit_change=round(profit_change, 2),
            ))
        return recommendations

    async def _distribution(
        self,
        product_name: str,
        since: datetime,
        now: datetime,
        partner_id: Optional[int] = None,
    ) -> Optional[PriceDistribution]:
        """窗口内样本足够时的价格分布"""
        try:
            samples = await self._store.load_price_samples(product_name, since, partner_id)
        except Exception as e:
            self._logger.error(f"加载 {product_name} 历史价格失败: {e}")
            return None
        distribution = self.history.compute_distribution(product_name, samples, partner_id=partner_id, now=now)
        if distribution is None or distribution.sample_count < self.min_sample_size:
            return None
        return distribution

    async def _resolve_partner(self, partner_id: int) -> PartnerEntity:
        if self._partners is not None:
            try:
                info = await self._partners.find_by_id(partner_id)
                if info is not None:
                    return info.to_entity()
            except Exception as e:
                self._logger.error(f"查询客户 {partner_id} 失败: {e}")
        return PartnerEntity(name=f"客户{partner_id}", confidence=1.0, partner_id=partner_id)

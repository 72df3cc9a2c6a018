"""
历史价格学习。
从成交记录计算每个商品（可按客户细分）的价格分布，作为报价混合和改价校验的参考。
近期样本权重更高：weight = 0.5 ^ (天数 / 半衰期)。
"""
import asyncio
import logging
import math
import statistics
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..entities.pricing import PriceCheckResult, PriceDistribution, PriceSample
from ..interfaces.repositories import PriceHistoryStore

REASONABLE_DEVIATION = 0.1
WARNING_DEVIATION = 0.2
FRESHNESS_DAYS = 7
STALENESS_SPAN_DAYS = 30
MIN_VOLATILITY_FACTOR = 0.3
MIN_STALENESS_FACTOR = 0.5


class HistoryLearningService:
    """
    价格分布服务，结果按 (商品, 客户) 缓存，默认 1 小时过期。
    """

    def __init__(
        self,
        store: Optional[PriceHistoryStore] = None,
        half_life_days: float = 14,
        min_sample_size: int = 3,
        window_days: int = 60,
        volatility_threshold: float = 0.2,
        cache_ttl_minutes: int = 60,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._store = store
        self.half_life_days = half_life_days
        self.min_sample_size = min_sample_size
        self.window_days = window_days
        self.volatility_threshold = volatility_threshold
        self._cache_ttl = timedelta(minutes=cache_ttl_minutes)
        self._clock = clock
        self._cache: Dict[str, Tuple[Optional[PriceDistribution], datetime]] = {}
        self._refresh_lock = asyncio.Lock()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @staticmethod
    def _cache_key(product_name: str, partner_id: Optional[int]) -> str:
        return f"{product_name.lower()}_{partner_id if partner_id is not None else 'all'}"

    async def get_price_distribution(
        self,
        product_name: str,
        partner_id: Optional[int] = None,
    ) -> Optional[PriceDistribution]:
        """
        获取价格分布。

        Args:
            product_name: 商品名
            partner_id: 客户ID，None 为全部客户

        Returns:
            分布；没有历史数据时为 None
        """
        key = self._cache_key(product_name, partner_id)
        now = self._clock()
        cached = self._cache.get(key)
        if cached is not None and now - cached[1] < self._cache_ttl:
            return cached[0]

        distribution = await self._load_and_compute(product_name, partner_id, now)
        self._cache[key] = (distribution, now)
        return distribution

    async def _load_and_compute(
        self,
        product_name: str,
        partner_id: Optional[int],
        now: datetime,
    ) -> Optional[PriceDistribution]:
        if self._store is None:
            return None
        since = now - timedelta(days=self.window_days)
        try:
            samples = await self._store.load_price_samples(product_name, since, partner_id)
        except Exception as e:
            self._logger.error(f"加载 {product_name} 历史价格失败: {e}")
            return None
        return self.compute_distribution(product_name, samples, partner_id=partner_id, now=now)

    def compute_distribution(
        self,
        product_name: str,
        samples: Sequence[PriceSample],
        partner_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[PriceDistribution]:
        """由样本计算分布，纯函数"""
        samples = [s for s in samples if s.price is not None and s.price > 0]
        if not samples:
            return None
        now = now or self._clock()

        prices = [s.price for s in samples]
        count = len(prices)
        avg = sum(prices) / count
        std_dev = statistics.stdev(prices) if count > 1 else 0.0

        total_weight = 0.0
        weighted_sum = 0.0
        for sample in samples:
            weight = self._decay_weight(sample.timestamp, now)
            total_weight += weight
            weighted_sum += sample.price * weight
        weighted_avg = weighted_sum / total_weight if total_weight > 0 else avg

        newest = max(s.timestamp for s in samples)
        confidence = self.calculate_confidence(count, std_dev, avg, _days_between(newest, now))

        return PriceDistribution(
            product_name=product_name,
            partner_id=partner_id,
            min=min(prices),
            max=max(prices),
            avg=avg,
            median=statistics.median(prices),
            mode=calculate_mode(prices),
            std_dev=std_dev,
            weighted_avg=weighted_avg,
            confidence=confidence,
            sample_count=count,
            last_updated=now,
        )

    def _decay_weight(self, timestamp: datetime, now: datetime) -> float:
        days_ago = _days_between(timestamp, now)
        return math.pow(0.5, days_ago / self.half_life_days)

    def calculate_confidence(
        self,
        sample_count: int,
        std_dev: float,
        avg: float,
        days_since_newest: float,
    ) -> float:
        """
        置信度 = 样本量因子 × 波动因子 × 时效因子，截断到 [0, 1]。
        最新样本越旧，置信度越低（单调不增）。
        """
        confidence = 1.0

        if sample_count < self.min_sample_size:
            confidence *= sample_count / self.min_sample_size

        cv = std_dev / avg if avg > 0 else 0.0
        if cv > self.volatility_threshold:
            confidence *= max(MIN_VOLATILITY_FACTOR, 1 - cv)

        if days_since_newest > FRESHNESS_DAYS:
            confidence *= max(MIN_STALENESS_FACTOR, 1 - (days_since_newest - FRESHNESS_DAYS) / STALENESS_SPAN_DAYS)

        return max(0.0, min(1.0, confidence))

    async def is_price_reasonable(
        self,
        product_name: str,
        price: float,
        partner_id: Optional[int] = None,
    ) -> PriceCheckResult:
        """
        与历史均价比较：偏差 10% 以内合理，20% 以内合理但提示，超过 20% 标记并给出建议。
        样本不足时一律视为合理。
        """
        distribution = await self.get_price_distribution(product_name, partner_id)
        if distribution is None or distribution.sample_count < self.min_sample_size or distribution.avg <= 0:
            return PriceCheckResult(is_reasonable=True, deviation=0.0)

        deviation = (price - distribution.avg) / distribution.avg
        if abs(deviation) <= REASONABLE_DEVIATION:
            return PriceCheckResult(is_reasonable=True, deviation=deviation)

        avg_text = f"{distribution.avg:.1f}"
        if abs(deviation) <= WARNING_DEVIATION:
            direction = "偏高" if deviation > 0 else "偏低"
            return PriceCheckResult(
                is_reasonable=True,
                deviation=deviation,
                suggestion=f"价格{direction}，历史平均价 ¥{avg_text}",
            )

        if deviation > 0:
            suggestion = f"价格明显偏高！历史平均价 ¥{avg_text}，建议 ¥{distribution.mode:.1f}"
        else:
            suggestion = f"价格明显偏低！历史平均价 ¥{avg_text}，可能亏本"
        return PriceCheckResult(is_reasonable=False, deviation=deviation, suggestion=suggestion)

    async def update_all_distributions(self) -> int:
        """
        重新计算窗口内所有有成交商品的分布（整体价格，不分客户）。

        Returns:
            更新的商品数
        """
        if self._store is None:
            return 0
        async with self._refresh_lock:
            now = self._clock()
            try:
                names = await self._store.list_sold_products(now - timedelta(days=self.window_days))
            except Exception as e:
                self._logger.error(f"加载成交商品列表失败: {e}")
                return 0

            updated = 0
            for name in names:
                distribution = await self._load_and_compute(name, None, now)
                self._cache[self._cache_key(name, None)] = (distribution, now)
                if distribution is not None:
                    updated += 1
            self._logger.info(f"价格分布已更新: {updated}/{len(names)} 个商品")
            return updated

    def clear_cache(self, product_name: Optional[str] = None) -> None:
        """清除缓存；指定商品时只清除该商品（含各客户）"""
        if product_name is None:
            self._cache = {}
            return
        prefix = f"{product_name.lower()}_"
        self._cache = {key: value for key, value in self._cache.items() if not key.startswith(prefix)}


def calculate_mode(prices: List[float]) -> float:
    """众数：价格按 0.1 元取整后出现最多的值，并列时取最先出现的"""
    rounded = [round(p, 1) for p in prices]
    counts = Counter(rounded)
    top = max(counts.values())
    return next(value for value in rounded if counts[value] == top)


def _days_between(earlier: datetime, later: datetime) -> float:
    return max(0.0, (later - earlier).total_seconds() / 86400)

"""
定时刷新价格分布缓存、定价规则与热词词典。
"""
from typing import Optional

from .periodic import PeriodicTask
from ...domain.services.history_learning import HistoryLearningService
from ...domain.services.hotword_service import HotwordService
from ...domain.services.pricing_engine import PricingEngine


class DistributionRefreshTask(PeriodicTask):
    """
    每小时重算一次所有在售商品的价格分布，并顺带重载定价规则。
    """

    name = "distribution_refresh"

    def __init__(
        self,
        history: HistoryLearningService,
        engine: Optional[PricingEngine] = None,
        interval_minutes: float = 60,
    ) -> None:
        super().__init__(interval_minutes)
        self.history = history
        self.engine = engine

    async def run_once(self) -> None:
        updated = await self.history.update_all_distributions()
        if self.engine is not None:
            await self.engine.refresh()
        self._logger.info(f"价格分布刷新完成: {updated} 个商品")


class HotwordRefreshTask(PeriodicTask):
    """按热词服务的刷新周期重建实体词典"""

    name = "hotword_refresh"

    def __init__(self, hotwords: HotwordService, interval_minutes: float = 10) -> None:
        super().__init__(interval_minutes)
        self.hotwords = hotwords

    async def run_once(self) -> None:
        await self.hotwords.refresh_if_needed()

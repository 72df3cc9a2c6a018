"""
热词服务：从商品与客户数据构建实体词典快照，同时为 ASR 提供热词表。
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from ..interfaces.repositories import HotwordSource
from .entity_extractor import NameDictionary

DEFAULT_UNITS = ("瓶", "包", "袋", "箱", "盒", "个", "只", "条", "根", "块", "斤", "克", "公斤")
DEFAULT_COMMON_WORDS = (
    "多少钱", "卖", "买", "要", "给", "来", "拿", "找", "算", "报价",
    "进货", "进价", "成本", "零售", "批发",
    "熟客", "老顾客", "普通", "散客",
)


class HotwordService:
    """
    维护词典快照。
    每次刷新生成新的 NameDictionary（版本号递增），由订阅者整体替换。
    """

    def __init__(
        self,
        source: Optional[HotwordSource] = None,
        refresh_interval_minutes: int = 10,
        extra_words: Iterable[str] = (),
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._source = source
        self._refresh_interval = timedelta(minutes=refresh_interval_minutes)
        self._clock = clock
        self._temporary: List[str] = list(extra_words)
        self._products: List[str] = []
        self._partners: List[str] = []
        self._version = 0
        self._last_refresh: Optional[datetime] = None
        self._snapshot = NameDictionary()
        self._lock = asyncio.Lock()
        self._listeners: List[Callable[[NameDictionary], None]] = []
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def snapshot(self) -> NameDictionary:
        return self._snapshot

    @property
    def last_refresh(self) -> Optional[datetime]:
        return self._last_refresh

    def subscribe(self, listener: Callable[[NameDictionary], None]) -> None:
        """注册快照更新回调（通常是 EntityExtractor.set_dictionary）"""
        self._listeners.append(listener)
        listener(self._snapshot)

    def needs_refresh(self) -> bool:
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh >= self._refresh_interval

    async def refresh(self) -> NameDictionary:
        """
        从数据源重新加载。
        加载失败时保留旧快照，只记录日志。

        Returns:
            当前快照
        """
        async with self._lock:
            if self._source is not None:
                try:
                    self._products = list(await self._source.load_product_names())
                    self._partners = list(await self._source.load_partner_names())
                except Exception as e:
                    self._logger.error(f"热词加载失败，继续使用旧词典: {e}")
                    self._last_refresh = self._clock()
                    return self._snapshot
            self._publish()
            self._last_refresh = self._clock()
            return self._snapshot

    async def refresh_if_needed(self) -> NameDictionary:
        if self.needs_refresh():
            return await self.refresh()
        return self._snapshot

    def add_temporary_hotwords(self, words: Iterable[str]) -> None:
        """加入临时商品热词（如新品），下次刷新不会丢失"""
        added = [w.strip() for w in words if w and w.strip() and w.strip() not in self._temporary]
        if not added:
            return
        self._temporary.extend(added)
        self._publish()
        self._logger.info(f"添加临时热词: {', '.join(added)}")

    def get_hotwords(self) -> List[str]:
        """ASR 热词表：商品、客户、单位、常用词"""
        words: List[str] = []
        seen = set()
        for word in (
            list(self._snapshot.products)
            + list(self._snapshot.partners)
            + list(DEFAULT_UNITS)
            + list(DEFAULT_COMMON_WORDS)
        ):
            if word not in seen:
                seen.add(word)
                words.append(word)
        return words

    def _publish(self) -> None:
        self._version += 1
        self._snapshot = NameDictionary.build(
            products=self._products + self._temporary,
            partners=self._partners,
            version=self._version,
        )
        for listener in self._listeners:
            try:
                listener(self._snapshot)
            except Exception as e:
                self._logger.error(f"词典订阅者更新失败: {e}")

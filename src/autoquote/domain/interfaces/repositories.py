"""
外部协作者的协议：规则存储、商品与客户查询、成交与历史价格、热词来源。
领域服务只依赖这些协议，具体实现见 infrastructure.database.repositories。
"""
from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from ..entities.pricing import PartnerInfo, PriceSample, PricingRule, ProductInfo
from ..entities.transaction import CreateTransactionRequest


class RuleStore(Protocol):
    """定价规则存储"""

    async def load_enabled_rules(self) -> List[PricingRule]:
        """
        加载所有启用的规则。

        Raises:
            Exception: 存储不可用时，由定价引擎兜底
        """
        ...

    async def save_rule(self, rule: PricingRule) -> int:
        """
        新增一条规则。

        Returns:
            新规则 ID
        """
        ...


class ProductCatalog(Protocol):
    """商品主数据查询"""

    async def find_by_name_or_alias(self, name: str) -> Optional[ProductInfo]:
        """
        先按名称精确匹配，再按别名匹配。

        Args:
            name: 商品名

        Returns:
            商品信息，未找到为 None
        """
        ...

    async def find_candidate(self, name: str) -> Optional[ProductInfo]:
        """在待确认的候选商品中模糊查找"""
        ...


class PartnerDirectory(Protocol):
    """客户查询"""

    async def find_by_name(self, name: str) -> Optional[PartnerInfo]:
        ...

    async def find_by_id(self, partner_id: int) -> Optional[PartnerInfo]:
        ...


class TransactionStore(Protocol):
    """成交记录存储"""

    async def save(self, request: CreateTransactionRequest) -> int:
        """
        保存成交记录。

        Returns:
            新记录 ID
        """
        ...


class PriceHistoryStore(Protocol):
    """历史成交价格来源"""

    async def load_price_samples(
        self,
        product_name: str,
        since: datetime,
        partner_id: Optional[int] = None,
    ) -> List[PriceSample]:
        """
        加载时间窗口内某商品的成交单价。

        Args:
            product_name: 商品名（不区分大小写）
            since: 窗口起点
            partner_id: 只取该客户的成交，None 为全部
        """
        ...

    async def list_sold_products(self, since: datetime) -> List[str]:
        """时间窗口内有成交的商品名"""
        ...

    async def list_partner_purchases(self, since: datetime) -> List[Tuple[int, str]]:
        """时间窗口内出现过的 (客户ID, 商品名) 组合"""
        ...


class HotwordSource(Protocol):
    """实体词典来源"""

    async def load_product_names(self) -> List[str]:
        """商品名、别名以及未确认的候选商品名"""
        ...

    async def load_partner_names(self) -> List[str]:
        """客户名以及候选客户名"""
        ...

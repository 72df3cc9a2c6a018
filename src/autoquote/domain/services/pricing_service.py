"""
面向对话的定价服务：客户解析、零售报价、单品询价与进价查询。
"""
import logging
from typing import List, Optional

from ..entities.nlu import PartnerEntity, ProductEntity
from ..entities.pricing import PricingContext, QuoteResponse
from ..interfaces.repositories import PartnerDirectory
from .pricing_engine import PricingEngine
from ...infrastructure.utils.text_utils import format_amount

PROMPT_WHICH_PRODUCT = "你想问哪个商品的价格？"
PROMPT_WHICH_PURCHASE = "你想查哪个商品的进价？"


class PricingService:
    """
    包装定价引擎，补充客户信息并生成各类回复文本。
    """

    def __init__(self, engine: PricingEngine, partners: Optional[PartnerDirectory] = None) -> None:
        self.engine = engine
        self._partners = partners
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def resolve_partner(
        self,
        partner: Optional[PartnerEntity] = None,
        partner_id: Optional[int] = None,
    ) -> Optional[PartnerEntity]:
        """
        用客户库补全 ID 与等级。
        查不到时原样返回识别结果。
        """
        if self._partners is None:
            return partner
        try:
            info = None
            if partner_id is not None:
                info = await self._partners.find_by_id(partner_id)
            elif partner is not None and partner.partner_id is None:
                info = await self._partners.find_by_name(partner.name)
            if info is None:
                return partner
            confidence = partner.confidence if partner else 1.0
            return info.to_entity(confidence=confidence)
        except Exception as e:
            self._logger.error(f"查询客户失败: {e}")
            return partner

    async def quote_retail(
        self,
        products: List[ProductEntity],
        partner: Optional[PartnerEntity] = None,
    ) -> QuoteResponse:
        return await self.engine.quote(PricingContext(products=list(products), partner=partner))

    async def quote_single(
        self,
        products: List[ProductEntity],
        partner: Optional[PartnerEntity] = None,
    ) -> Optional[str]:
        """
        单品询价，数量固定为 1，不影响购物车。

        Returns:
            回复文本；没有商品时为 None
        """
        if not products:
            return None
        singles = [
            ProductEntity(
                name=p.name,
                quantity=1,
                unit=p.unit,
                confidence=p.confidence,
                product_id=p.product_id,
            )
            for p in products
        ]
        quote = await self.engine.quote(PricingContext(products=singles, partner=partner))
        phrases = [
            f"{item.product_name}，{format_amount(item.suggested_price)}块一{item.unit}"
            for item in quote.items
        ]
        return "；".join(phrases)

    async def check_purchase_price(self, products: List[ProductEntity]) -> str:
        """进价查询，只查成本，不生成报价"""
        if not products:
            return PROMPT_WHICH_PURCHASE
        phrases = []
        for product in products:
            info = await self.engine.resolve_product(product.name)
            if info is None or not info.base_cost:
                phrases.append(f"抱歉，没找到{product.name}的进价信息")
            else:
                phrases.append(f"{product.name}进价{format_amount(info.base_cost)}块")
        return "；".join(phrases)

"""
成交服务：把确认后的报价写入成交记录，并让历史价格缓存失效。
"""
import logging
from typing import Optional

from ..entities.nlu import IntentType, PartnerEntity
from ..entities.pricing import QuoteResponse
from ..entities.transaction import CreateTransactionRequest, TransactionItem
from ..exceptions import TransactionSaveError
from ..interfaces.repositories import TransactionStore
from .history_learning import HistoryLearningService


class TransactionService:
    """成交记录"""

    def __init__(
        self,
        store: Optional[TransactionStore] = None,
        history: Optional[HistoryLearningService] = None,
    ) -> None:
        self._store = store
        self._history = history
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @staticmethod
    def build_request(
        quote: QuoteResponse,
        partner: Optional[PartnerEntity] = None,
        raw_text: str = "",
        intent: IntentType = IntentType.RETAIL_QUOTE,
    ) -> CreateTransactionRequest:
        """由报价生成成交请求，改过价的明细以实际价格为准"""
        items = []
        total_price = 0.0
        total_cost = 0.0
        for item in quote.items:
            unit_price = item.effective_price
            subtotal = round(unit_price * item.quantity, 2)
            items.append(TransactionItem(
                product_name=item.product_name,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=unit_price,
                subtotal=subtotal,
                cost=item.base_cost,
                product_id=item.product_id,
            ))
            total_price += subtotal
            total_cost += item.base_cost * item.quantity

        partner = partner or quote.partner
        return CreateTransactionRequest(
            items=items,
            partner_id=partner.partner_id if partner else None,
            partner_name=partner.name if partner else None,
            total_price=round(total_price, 2),
            total_cost=round(total_cost, 2),
            raw_text=raw_text,
            intent=intent.value,
        )

    async def create_from_quote(
        self,
        quote: QuoteResponse,
        partner: Optional[PartnerEntity] = None,
        raw_text: str = "",
    ) -> Optional[int]:
        """
        保存成交。

        Returns:
            成交记录 ID；未配置存储时为 None

        Raises:
            TransactionSaveError: 校验或写入失败
        """
        try:
            request = self.build_request(quote, partner, raw_text)
        except ValueError as e:
            raise TransactionSaveError(f"成交数据不合法: {e}", e)

        if self._store is None:
            self._logger.warning("未配置成交存储，成交未持久化")
            return None

        try:
            transaction_id = await self._store.save(request)
        except Exception as e:
            self._logger.error(f"成交记录写入失败: {e}")
            raise TransactionSaveError(f"成交记录写入失败: {e}", e)

        if self._history is not None:
            for item in request.items:
                self._history.clear_cache(item.product_name)

        self._logger.info(
            f"成交 #{transaction_id}: {len(request.items)} 件商品, 合计 {request.total_price} 元"
        )
        return transaction_id

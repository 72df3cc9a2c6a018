"""
对话管理：每个会话一个状态机，负责 报价 → 确认/否定/改价 → 成交 的多轮流程。
同一会话的输入串行处理，保证同一时刻最多只有一个待确认报价。
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..entities.conversation import (
    ConfirmationType, ConversationInput, ConversationOutput, ConversationState,
    ConversationTurn, SessionContext
)
from ..entities.nlu import IntentType, NLUResult, PriceEntity
from ..entities.pricing import QuoteItem, QuoteResponse
from ..exceptions import TransactionSaveError
from .history_learning import HistoryLearningService
from .nlu_service import NLUService
from .pricing_engine import build_quote_message, rounding_suggestion
from .pricing_service import PROMPT_WHICH_PRODUCT, PricingService
from .transaction_service import TransactionService
from ...infrastructure.logging.hybrid_logger import HybridLogger, hybrid_logger
from ...infrastructure.utils.text_utils import format_amount

REPLY_ERROR = "抱歉，处理出错了，请重新说一遍。"
REPLY_COMMITTED = "好嘞，成交！还要别的吗？"
REPLY_COMMITTED_UNSAVED = "好嘞！还要别的吗？"
REPLY_SAVE_FAILED = "成交记录保存失败了，请再说一次确认。"
REPLY_DENIED = "好的，重新说一遍吧。"
REPLY_NOTHING_TO_CONFIRM = "现在没有需要确认的报价。"
REPLY_NOTHING_TO_CORRECT = "还没有报价呢，你想改什么价格？"
REPLY_WHICH_ITEM = "你要改哪个商品的价格？"
REPLY_WHICH_PRICE = "你想改成多少钱？"
QUOTE_ACTIONS = ["确认", "修改价格", "取消"]


class ConversationManager:
    """
    会话状态机。
    会话保存在进程内存中，超时后由后台任务清理。
    """

    def __init__(
        self,
        nlu: NLUService,
        pricing: PricingService,
        history: Optional[HistoryLearningService] = None,
        transactions: Optional[TransactionService] = None,
        session_timeout_minutes: int = 30,
        max_history: int = 50,
        clock: Callable[[], datetime] = datetime.utcnow,
        event_logger: Optional[HybridLogger] = None,
    ) -> None:
        """
        Args:
            nlu: NLU 服务
            pricing: 定价服务
            history: 历史价格服务，用于改价校验
            transactions: 成交服务
            session_timeout_minutes: 会话超时时间
            max_history: 每个会话保留的发言条数
            clock: 时钟（测试时替换）
            event_logger: 业务事件日志
        """
        self.nlu = nlu
        self.pricing = pricing
        self.history = history
        self.transactions = transactions or TransactionService()
        self.session_timeout = timedelta(minutes=session_timeout_minutes)
        self.max_history = max_history
        self._clock = clock
        self._events = event_logger or hybrid_logger
        self._sessions: Dict[str, SessionContext] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def get_session(self, session_id: str) -> Optional[SessionContext]:
        return self._sessions.get(session_id)

    def clear_session(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        # 处理中的会话保留锁，后续输入仍排在当前这轮之后
        if lock is None or not lock.locked():
            self._locks.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None

    @property
    def active_session_count(self) -> int:
        return len(self._sessions)

    def _get_or_create_session(self, session_id: str) -> SessionContext:
        session = self._sessions.get(session_id)
        if session is None:
            now = self._clock()
            session = SessionContext(session_id=session_id, created_at=now, last_active_at=now)
            self._sessions[session_id] = session
            self._logger.debug(f"新会话: {session_id}")
        return session

    async def process_input(self, input_data: ConversationInput) -> ConversationOutput:
        """
        处理一次输入。
        任何异常都不会抛给调用方：会话进入 error 状态并返回通用重试提示。
        """
        lock = self._locks.setdefault(input_data.session_id, asyncio.Lock())
        async with lock:
            session = self._get_or_create_session(input_data.session_id)
            session.state = ConversationState.PROCESSING
            session.last_active_at = self._clock()
            try:
                return await self._process_turn(session, input_data)
            except Exception as e:
                self._logger.exception(f"会话 {session.session_id} 处理失败: {e}")
                await self._events.error(
                    f"对话处理失败: {e}",
                    {"session_id": session.session_id, "text": input_data.text},
                )
                session.state = ConversationState.ERROR
                return ConversationOutput(text=REPLY_ERROR, state=ConversationState.ERROR)

    async def _process_turn(self, session: SessionContext, input_data: ConversationInput) -> ConversationOutput:
        if input_data.partner_id is not None:
            partner = await self.pricing.resolve_partner(partner_id=input_data.partner_id)
            if partner is not None:
                session.current_partner = partner

        session.last_raw_text = input_data.text
        result = await self.nlu.parse(input_data.text, session.to_nlu_context())
        intent = result.intent.intent
        self._add_turn(session, "user", input_data.text, intent)

        if session.awaiting_confirmation:
            output = await self._handle_confirmation(session, result)
        else:
            output = await self._handle_intent(session, result)

        self._add_turn(session, "assistant", output.text)
        session.state = output.state
        session.last_intent = intent
        session.last_active_at = self._clock()
        return output

    async def _handle_intent(self, session: SessionContext, result: NLUResult) -> ConversationOutput:
        intent = result.intent.intent
        if intent == IntentType.RETAIL_QUOTE:
            return await self._handle_retail_quote(session, result)
        if intent == IntentType.SINGLE_ITEM_QUERY:
            return await self._handle_single_item_query(session, result)
        if intent == IntentType.PURCHASE_PRICE_CHECK:
            return await self._handle_purchase_price_check(result)
        if intent == IntentType.PRICE_CORRECTION:
            return await self._handle_price_correction(session, result)
        if intent in (IntentType.CONFIRM, IntentType.DENY):
            return ConversationOutput(text=REPLY_NOTHING_TO_CONFIRM, state=ConversationState.IDLE)
        return ConversationOutput(
            text=self.nlu.get_clarification_prompt(result),
            state=ConversationState.AWAITING_INPUT,
        )

    async def _handle_confirmation(self, session: SessionContext, result: NLUResult) -> ConversationOutput:
        intent = result.intent.intent

        if intent == IntentType.CONFIRM:
            if session.current_quote is None:
                session.clear_confirmation()
                return ConversationOutput(text=REPLY_NOTHING_TO_CONFIRM, state=ConversationState.IDLE)
            return await self._commit(session, result)

        if intent == IntentType.DENY:
            session.discard_quote()
            return ConversationOutput(text=REPLY_DENIED, state=ConversationState.IDLE)

        # 其他意图视为新请求，报价保留以便随后改价
        session.clear_confirmation()
        return await self._handle_intent(session, result)

    async def _commit(self, session: SessionContext, result: NLUResult) -> ConversationOutput:
        quote = session.current_quote
        partner = quote.partner or session.current_partner
        try:
            transaction_id = await self.transactions.create_from_quote(quote, partner, result.raw_text)
        except TransactionSaveError as e:
            self._logger.error(f"会话 {session.session_id} 成交保存失败: {e}")
            await self._events.error(
                "成交保存失败",
                {"session_id": session.session_id, "error": str(e)},
            )
            return ConversationOutput(
                text=REPLY_SAVE_FAILED,
                state=ConversationState.AWAITING_CONFIRM,
                needs_confirmation=True,
                quote=quote,
                suggested_actions=list(QUOTE_ACTIONS),
            )

        total = sum(item.effective_price * item.quantity for item in quote.items)
        await self._events.business(
            "成交",
            {
                "session_id": session.session_id,
                "transaction_id": transaction_id,
                "partner": partner.name if partner else None,
                "items": len(quote.items),
                "total": round(total, 2),
            },
        )
        session.reset_after_commit()
        text = REPLY_COMMITTED if transaction_id is not None else REPLY_COMMITTED_UNSAVED
        return ConversationOutput(text=text, state=ConversationState.COMPLETED)

    async def _handle_retail_quote(self, session: SessionContext, result: NLUResult) -> ConversationOutput:
        if self.nlu.needs_clarification(result):
            return ConversationOutput(
                text=self.nlu.get_clarification_prompt(result),
                state=ConversationState.AWAITING_INPUT,
            )

        if result.partner is not None:
            session.current_partner = await self.pricing.resolve_partner(result.partner)
        session.stage_quote_products(result.products)

        quote = await self.pricing.quote_retail(session.cart_items, session.current_partner)
        session.current_quote = quote
        session.awaiting_confirmation = True
        session.confirmation_type = ConfirmationType.QUOTE

        return ConversationOutput(
            text=quote.message,
            speech_text=quote.message,
            quote=quote,
            state=ConversationState.AWAITING_CONFIRM,
            needs_confirmation=True,
            suggested_actions=list(QUOTE_ACTIONS),
        )

    async def _handle_single_item_query(self, session: SessionContext, result: NLUResult) -> ConversationOutput:
        partner = session.current_partner
        if result.partner is not None:
            partner = await self.pricing.resolve_partner(result.partner)
        text = await self.pricing.quote_single(result.products, partner)
        if text is None:
            return ConversationOutput(text=PROMPT_WHICH_PRODUCT, state=ConversationState.AWAITING_INPUT)
        return ConversationOutput(text=text, speech_text=text, state=ConversationState.IDLE)

    async def _handle_purchase_price_check(self, result: NLUResult) -> ConversationOutput:
        text = await self.pricing.check_purchase_price(result.products)
        return ConversationOutput(text=text, speech_text=text, state=ConversationState.IDLE)

    async def _handle_price_correction(self, session: SessionContext, result: NLUResult) -> ConversationOutput:
        quote = session.current_quote
        if quote is None:
            return ConversationOutput(text=REPLY_NOTHING_TO_CORRECT, state=ConversationState.IDLE)

        price = _pick_price(result.prices)
        item = _pick_item(quote, result)
        if price is None or item is None:
            session.awaiting_confirmation = True
            session.confirmation_type = ConfirmationType.PRICE_CORRECTION
            return ConversationOutput(
                text=REPLY_WHICH_PRICE if price is None else REPLY_WHICH_ITEM,
                quote=quote,
                state=ConversationState.AWAITING_CONFIRM,
                needs_confirmation=True,
            )

        item.actual_price = price.value
        item.subtotal = round(price.value * item.quantity, 2)
        total = round(sum(i.subtotal for i in quote.items), 2)
        quote.total_suggested_price = total
        quote.message = build_quote_message(quote.items, total, quote.partner)
        quote.rounding_suggestion = rounding_suggestion(total)

        session.awaiting_confirmation = True
        session.confirmation_type = ConfirmationType.PRICE_CORRECTION

        text = f"好的，按你说的价格算。总共{format_amount(total)}块，对吗？"
        warning = await self._check_corrected_price(session, item)
        if warning:
            text = f"{warning}。{text}"

        return ConversationOutput(
            text=text,
            speech_text=text,
            quote=quote,
            state=ConversationState.AWAITING_CONFIRM,
            needs_confirmation=True,
            suggested_actions=list(QUOTE_ACTIONS),
        )

    async def _check_corrected_price(self, session: SessionContext, item: QuoteItem) -> Optional[str]:
        if self.history is None:
            return None
        partner = session.current_partner
        partner_id = partner.partner_id if partner else None
        check = await self.history.is_price_reasonable(item.product_name, item.actual_price, partner_id)
        if not check.is_reasonable:
            await self._events.business(
                "改价偏离历史价格",
                {
                    "session_id": session.session_id,
                    "product": item.product_name,
                    "price": item.actual_price,
                    "deviation": round(check.deviation, 3),
                },
            )
        return check.suggestion

    def _add_turn(self, session: SessionContext, role: str, content: str, intent: Optional[IntentType] = None) -> None:
        session.history.append(ConversationTurn(role=role, content=content, timestamp=self._clock(), intent=intent))
        if len(session.history) > self.max_history:
            del session.history[:len(session.history) - self.max_history]

    async def cleanup_expired_sessions(self) -> int:
        """
        清理超时会话，正在处理中的会话跳过。

        Returns:
            清理的会话数
        """
        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_active_at > self.session_timeout
        ]
        removed = 0
        for session_id in expired:
            lock = self._locks.get(session_id)
            if lock is not None and lock.locked():
                continue
            self.clear_session(session_id)
            removed += 1

        if removed:
            self._logger.info(f"清理了 {removed} 个超时会话")
            await self._events.business("清理超时会话", {"count": removed})
        return removed


def _pick_price(prices: List[PriceEntity]) -> Optional[PriceEntity]:
    """多个价格时取上下文最长的那个"""
    if not prices:
        return None
    return max(prices, key=lambda p: len(p.context or ""))


def _pick_item(quote: QuoteResponse, result: NLUResult) -> Optional[QuoteItem]:
    """按商品名找到要改价的明细；没说商品且只有一项时就是这一项"""
    for product in result.products:
        for item in quote.items:
            if item.product_name.lower() == product.key:
                return item
    if not result.products and len(quote.items) == 1:
        return quote.items[0]
    return None

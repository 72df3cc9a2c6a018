"""
对话领域实体：会话状态机的状态、会话上下文以及对外输出。
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .nlu import IntentType, NLUContext, PartnerEntity, ProductEntity
from .pricing import QuoteResponse


class ConversationState(str, Enum):
    """会话状态"""
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    AWAITING_INPUT = "awaiting_input"
    AWAITING_CONFIRM = "awaiting_confirm"
    COMPLETED = "completed"
    ERROR = "error"


class ConfirmationType(str, Enum):
    """等待确认的内容"""
    QUOTE = "quote"
    PRICE_CORRECTION = "price_correction"
    TRANSACTION = "transaction"


@dataclass
class ConversationTurn:
    """历史中的一轮发言"""
    role: str  # user, assistant
    content: str
    timestamp: datetime
    intent: Optional[IntentType] = None


@dataclass
class SessionContext:
    """
    单个会话的可变状态。
    同一时刻最多持有一个待确认的报价。
    """
    session_id: str
    state: ConversationState = ConversationState.IDLE
    current_partner: Optional[PartnerEntity] = None
    cart_items: List[ProductEntity] = field(default_factory=list)
    current_quote: Optional[QuoteResponse] = None
    # 合并本次报价商品之前的购物车，否定报价时还原
    cart_before_quote: Optional[List[ProductEntity]] = None
    history: List[ConversationTurn] = field(default_factory=list)
    last_intent: Optional[IntentType] = None
    awaiting_confirmation: bool = False
    confirmation_type: Optional[ConfirmationType] = None
    last_raw_text: str = ""
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_active_at: datetime = field(default_factory=datetime.utcnow)

    def to_nlu_context(self) -> NLUContext:
        return NLUContext(
            current_partner=self.current_partner,
            cart_items=list(self.cart_items),
            last_intent=self.last_intent,
        )

    def merge_into_cart(self, products: List[ProductEntity]) -> None:
        """按小写名称合并商品，数量相加"""
        for product in products:
            existing = next((item for item in self.cart_items if item.key == product.key), None)
            if existing:
                existing.quantity += product.quantity
                if product.product_id and not existing.product_id:
                    existing.product_id = product.product_id
            else:
                self.cart_items.append(ProductEntity(
                    name=product.name,
                    quantity=product.quantity,
                    unit=product.unit,
                    confidence=product.confidence,
                    product_id=product.product_id,
                ))

    def stage_quote_products(self, products: List[ProductEntity]) -> None:
        """记下当前购物车再合并新商品"""
        self.cart_before_quote = [replace(item) for item in self.cart_items]
        self.merge_into_cart(products)

    def discard_quote(self) -> None:
        """否定报价：丢弃报价，购物车还原到报价之前"""
        if self.cart_before_quote is not None:
            self.cart_items = self.cart_before_quote
        self.cart_before_quote = None
        self.current_quote = None
        self.clear_confirmation()

    def clear_confirmation(self) -> None:
        self.awaiting_confirmation = False
        self.confirmation_type = None

    def reset_after_commit(self) -> None:
        """成交后清空购物车、报价与客户"""
        self.cart_items = []
        self.current_quote = None
        self.current_partner = None
        self.cart_before_quote = None
        self.clear_confirmation()


@dataclass
class ConversationInput:
    """传输层传入的一次输入"""
    session_id: str
    text: str
    partner_id: Optional[int] = None


@dataclass
class ConversationOutput:
    """返回给传输层的结果"""
    text: str
    state: ConversationState
    needs_confirmation: bool = False
    speech_text: Optional[str] = None
    quote: Optional[QuoteResponse] = None
    suggested_actions: Optional[List[str]] = None

# Domain entities - dataclasses for business objects
from .nlu import (
    IntentType, IntentResult, ProductEntity, PartnerEntity, PriceEntity,
    ExtractedEntities, NLUResult, NLUContext
)
from .pricing import (
    ScopeType, RoundingStrategy, PartnerLevel, PricingRule, ProductInfo, PartnerInfo,
    PricingContext, QuoteItem, QuoteResponse, PriceDistribution, PriceSample, PriceCheckResult,
    RecommendationType, RuleRecommendation
)
from .conversation import (
    ConversationState, ConfirmationType, ConversationTurn, SessionContext,
    ConversationInput, ConversationOutput
)
from .transaction import TransactionItem, CreateTransactionRequest

__all__ = [
    "IntentType",
    "IntentResult",
    "ProductEntity",
    "PartnerEntity",
    "PriceEntity",
    "ExtractedEntities",
    "NLUResult",
    "NLUContext",
    "ScopeType",
    "RoundingStrategy",
    "PartnerLevel",
    "PricingRule",
    "ProductInfo",
    "PartnerInfo",
    "PricingContext",
    "QuoteItem",
    "QuoteResponse",
    "PriceDistribution",
    "PriceSample",
    "PriceCheckResult",
    "RecommendationType",
    "RuleRecommendation",
    "ConversationState",
    "ConfirmationType",
    "ConversationTurn",
    "SessionContext",
    "ConversationInput",
    "ConversationOutput",
    "TransactionItem",
    "CreateTransactionRequest",
]

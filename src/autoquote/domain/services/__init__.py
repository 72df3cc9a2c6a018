"""
领域服务：NLU、定价、历史价格学习、成交与对话管理。
"""
from .intent_classifier import IntentClassifier, IntentRule, default_intent_rules
from .entity_extractor import EntityExtractor, NameDictionary, parse_chinese_number, is_likely_product
from .hotword_service import HotwordService
from .nlu_service import NLUService
from .formula import compile_formula, evaluate, apply_rounding
from .history_learning import HistoryLearningService
from .pricing_engine import PricingEngine, default_rules
from .pricing_service import PricingService
from .rule_recommendation import RuleRecommendationService
from .transaction_service import TransactionService
from .conversation_manager import ConversationManager

__all__ = [
    # NLU
    "IntentClassifier",
    "IntentRule",
    "default_intent_rules",
    "EntityExtractor",
    "NameDictionary",
    "parse_chinese_number",
    "is_likely_product",
    "HotwordService",
    "NLUService",

    # 定价
    "compile_formula",
    "evaluate",
    "apply_rounding",
    "HistoryLearningService",
    "PricingEngine",
    "default_rules",
    "PricingService",
    "RuleRecommendationService",

    # 成交与对话
    "TransactionService",
    "ConversationManager",
]

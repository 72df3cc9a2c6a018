"""
公共 fixtures
"""
import pytest

from autoquote.domain.entities.pricing import PartnerInfo, ProductInfo
from autoquote.domain.services.conversation_manager import ConversationManager
from autoquote.domain.services.entity_extractor import EntityExtractor, NameDictionary
from autoquote.domain.services.history_learning import HistoryLearningService
from autoquote.domain.services.intent_classifier import IntentClassifier
from autoquote.domain.services.nlu_service import NLUService
from autoquote.domain.services.pricing_engine import PricingEngine, default_rules
from autoquote.domain.services.pricing_service import PricingService
from autoquote.domain.services.transaction_service import TransactionService

from tests.mocks.ai_mock import (
    FakeClock, InMemoryPartnerDirectory, InMemoryProductCatalog, InMemoryRuleStore,
    InMemoryTransactionStore, MockAIProvider, RecordingLogger
)

PRODUCTS = [
    ProductInfo(id=1, name="可乐", base_cost=2.5, category="饮料", unit="瓶", aliases=["可口可乐"]),
    ProductInfo(id=2, name="纸巾", base_cost=2.0, category="日用品", unit="包"),
    ProductInfo(id=3, name="矿泉水", base_cost=1.0, category="饮料", unit="瓶"),
    ProductInfo(id=4, name="啤酒", base_cost=3.2, category="酒水", unit="瓶"),
]
PARTNERS = [
    PartnerInfo(id=1001, name="张三", level="regular"),
    PartnerInfo(id=1002, name="老王", level="big_customer"),
]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dictionary() -> NameDictionary:
    names = [p.name for p in PRODUCTS] + [alias for p in PRODUCTS for alias in p.aliases]
    return NameDictionary.build(products=names, partners=[p.name for p in PARTNERS], version=1)


@pytest.fixture
def classifier() -> IntentClassifier:
    return IntentClassifier()


@pytest.fixture
def extractor(dictionary) -> EntityExtractor:
    return EntityExtractor(dictionary)


@pytest.fixture
def mock_provider() -> MockAIProvider:
    return MockAIProvider()


@pytest.fixture
def nlu_service(classifier, extractor) -> NLUService:
    return NLUService(classifier=classifier, extractor=extractor, ai_provider=None)


@pytest.fixture
def rule_store() -> InMemoryRuleStore:
    return InMemoryRuleStore(default_rules())


@pytest.fixture
def catalog() -> InMemoryProductCatalog:
    return InMemoryProductCatalog(list(PRODUCTS))


@pytest.fixture
def partner_directory() -> InMemoryPartnerDirectory:
    return InMemoryPartnerDirectory(list(PARTNERS))


@pytest.fixture
def transaction_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def history(transaction_store, clock) -> HistoryLearningService:
    return HistoryLearningService(store=transaction_store, clock=clock)


@pytest.fixture
def engine(rule_store, catalog, history) -> PricingEngine:
    return PricingEngine(rule_store=rule_store, product_catalog=catalog, history=history)


@pytest.fixture
def pricing_service(engine, partner_directory) -> PricingService:
    return PricingService(engine, partner_directory)


@pytest.fixture
def transaction_service(transaction_store, history) -> TransactionService:
    return TransactionService(transaction_store, history)


@pytest.fixture
def event_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def manager(nlu_service, pricing_service, history, transaction_service, clock, event_logger) -> ConversationManager:
    return ConversationManager(
        nlu=nlu_service,
        pricing=pricing_service,
        history=history,
        transactions=transaction_service,
        clock=clock,
        event_logger=event_logger,
    )


def pytest_collection_modifyitems(config, items):
    """按路径自动加标记"""
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)

        if any(name in path for name in ("intent", "entity", "nlu", "hotword")):
            item.add_marker(pytest.mark.nlu)
        if any(name in path for name in ("pricing", "formula", "history", "transaction", "recommendation")):
            item.add_marker(pytest.mark.pricing)
        if "conversation" in path:
            item.add_marker(pytest.mark.conversation)
        if "ai_provider" in path or "llm" in path:
            item.add_marker(pytest.mark.llm)

"""
组装应用：按配置创建各服务并注入依赖，负责后台任务的启停。
"""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from .config.settings import Settings, settings as default_settings
from .domain.entities.conversation import ConversationInput, ConversationOutput
from .domain.entities.pricing import RoundingStrategy
from .domain.services.conversation_manager import ConversationManager
from .domain.services.history_learning import HistoryLearningService
from .domain.services.hotword_service import HotwordService
from .domain.services.nlu_service import NLUService
from .domain.services.pricing_engine import PricingEngine
from .domain.services.pricing_service import PricingService
from .domain.services.rule_recommendation import RuleRecommendationService
from .domain.services.transaction_service import TransactionService
from .infrastructure.database.repositories import (
    SqlHotwordSource, SqlPartnerDirectory, SqlProductCatalog, SqlRuleStore, SqlTransactionStore
)
from .infrastructure.llm.factory import AIProviderFactory
from .infrastructure.logging.hybrid_logger import hybrid_logger
from .infrastructure.tasks.distribution_refresh import DistributionRefreshTask, HotwordRefreshTask
from .infrastructure.tasks.periodic import PeriodicTask
from .infrastructure.tasks.session_cleanup import SessionCleanupTask

logger = logging.getLogger(__name__)


class AutoQuoteApp:
    """
    已组装好的应用。
    传输层只需调用 process_input()。
    """

    def __init__(
        self,
        config: Settings,
        hotwords: HotwordService,
        nlu: NLUService,
        engine: PricingEngine,
        history: HistoryLearningService,
        pricing: PricingService,
        transactions: TransactionService,
        conversation: ConversationManager,
        recommendations: RuleRecommendationService,
        ai_factory: AIProviderFactory,
        tasks: List[PeriodicTask],
    ) -> None:
        self.config = config
        self.hotwords = hotwords
        self.nlu = nlu
        self.engine = engine
        self.history = history
        self.pricing = pricing
        self.transactions = transactions
        self.conversation = conversation
        self.recommendations = recommendations
        self.ai_factory = ai_factory
        self.tasks = tasks
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self, run_tasks: bool = True) -> None:
        """加载词典与规则，启动后台任务"""
        if self._started:
            return
        await self.hotwords.refresh()
        await self.engine.refresh()
        if run_tasks:
            for task in self.tasks:
                await task.start()
        self._started = True
        await hybrid_logger.info(
            f"报价服务已启动（AI: {self.nlu.ai_status()['provider'] or '关闭'}，"
            f"规则 {len(self.engine.rules)} 条，词典 {self.hotwords.snapshot.size} 个词）"
        )

    async def stop(self) -> None:
        for task in self.tasks:
            await task.stop()
        await self.ai_factory.close_all()
        self._started = False
        await hybrid_logger.info("报价服务已停止")

    async def process_input(self, input_data: ConversationInput) -> ConversationOutput:
        return await self.conversation.process_input(input_data)


def build_application(
    config: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> AutoQuoteApp:
    """
    按配置组装应用。

    Args:
        config: 配置，默认使用全局 settings
        session_factory: 数据库会话工厂；为 None 时不使用持久化，
            定价使用内置规则，成交不落库

    Returns:
        AutoQuoteApp（尚未启动）
    """
    config = config or default_settings

    hybrid_logger.configure(
        session_factory=session_factory,
        log_to_database=config.log_to_database,
        level=config.log_level,
    )

    if session_factory is not None:
        rule_store = SqlRuleStore(session_factory)
        catalog = SqlProductCatalog(session_factory)
        partners = SqlPartnerDirectory(session_factory)
        transaction_store = SqlTransactionStore(session_factory)
        hotword_source = SqlHotwordSource(session_factory)
    else:
        logger.warning("未配置数据库，使用内置定价规则且成交不落库")
        rule_store = catalog = partners = transaction_store = hotword_source = None

    history = HistoryLearningService(
        store=transaction_store,
        half_life_days=config.history_half_life_days,
        min_sample_size=config.history_min_sample_size,
        window_days=config.history_window_days,
        volatility_threshold=config.history_volatility_threshold,
        cache_ttl_minutes=config.distribution_cache_ttl_minutes,
    )
    engine = PricingEngine(
        rule_store=rule_store,
        product_catalog=catalog,
        history=history,
        default_margin=config.default_margin,
        historical_weight=config.historical_weight,
        enable_historical_learning=config.enable_historical_learning,
        default_rounding=RoundingStrategy.from_string(config.default_rounding),
    )

    ai_factory = AIProviderFactory(config)
    nlu = NLUService(
        ai_provider=ai_factory.create_default_provider(),
        confidence_threshold=config.rule_confidence_threshold,
        ai_timeout=config.ai_timeout_seconds,
        ai_enabled=config.ai_enabled,
    )

    hotwords = HotwordService(
        source=hotword_source,
        refresh_interval_minutes=config.hotword_refresh_minutes,
        extra_words=config.extra_hotwords_list,
    )
    hotwords.subscribe(nlu.set_dictionary)

    pricing = PricingService(engine, partners)
    transactions = TransactionService(transaction_store, history)
    recommendations = RuleRecommendationService(
        history=history,
        engine=engine,
        store=transaction_store,
        partner_directory=partners,
        rule_store=rule_store,
        days_to_analyze=config.recommendation_days,
        min_sample_size=config.recommendation_min_samples,
        min_confidence=config.recommendation_min_confidence,
    )
    conversation = ConversationManager(
        nlu=nlu,
        pricing=pricing,
        history=history,
        transactions=transactions,
        session_timeout_minutes=config.session_timeout_minutes,
        max_history=config.max_history_size,
    )

    tasks: List[PeriodicTask] = [
        SessionCleanupTask(conversation, config.session_cleanup_interval_minutes),
        DistributionRefreshTask(history, engine, config.distribution_cache_ttl_minutes),
        HotwordRefreshTask(hotwords, config.hotword_refresh_minutes),
    ]

    return AutoQuoteApp(
        config=config,
        hotwords=hotwords,
        nlu=nlu,
        engine=engine,
        history=history,
        pricing=pricing,
        transactions=transactions,
        conversation=conversation,
        recommendations=recommendations,
        ai_factory=ai_factory,
        tasks=tasks,
    )

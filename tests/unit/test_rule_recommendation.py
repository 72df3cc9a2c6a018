"""
规则推荐测试
"""
from datetime import timedelta

import pytest

from autoquote.domain.entities.pricing import (
    ProductInfo, RecommendationType, RoundingStrategy, ScopeType
)
from autoquote.domain.services.pricing_engine import PricingEngine
from autoquote.domain.services.rule_recommendation import RuleRecommendationService, price_stability

from tests.conftest import PARTNERS, PRODUCTS
from tests.fixtures.factories import PriceSampleFactory
from tests.mocks.ai_mock import InMemoryProductCatalog

SNACKS = [
    ProductInfo(id=11, name="薯片", base_cost=4.0, category="零食", unit="包"),
    ProductInfo(id=12, name="饼干", base_cost=2.0, category="零食", unit="包"),
    ProductInfo(id=13, name="瓜子", base_cost=5.0, category="零食", unit="包"),
    ProductInfo(id=14, name="花生", base_cost=3.0, category="零食", unit="包"),
]


@pytest.fixture
def service(history, engine, transaction_store, partner_directory, rule_store, event_logger, clock):
    return RuleRecommendationService(
        history=history,
        engine=engine,
        store=transaction_store,
        partner_directory=partner_directory,
        rule_store=rule_store,
        event_logger=event_logger,
        clock=clock,
    )


def add_partner_prices(store, clock, product, partner_id, prices):
    samples = [PriceSampleFactory(price=price, timestamp=clock.now - timedelta(days=1)) for price in prices]
    store.add_samples(product, samples, partner_id=partner_id)


class TestSpecialRules:

    async def test_stable_partner_price(self, service, transaction_store, clock):
        add_partner_prices(transaction_store, clock, "可乐", 1001, [3.5] * 8)

        recommendations = await service.generate_recommendations()

        assert len(recommendations) == 1
        recommendation = recommendations[0]
        assert recommendation.id == "special_1001_可乐"
        assert recommendation.type == RecommendationType.SPECIAL
        assert recommendation.current_price == 3.0
        assert recommendation.recommended_price == 3.5
        assert recommendation.estimated_profit_change == 4.0
        assert recommendation.confidence == pytest.approx(0.8)
        assert recommendation.reason == "张三 经常以 ¥3.5 购买 可乐，价格稳定（现规则 ¥3.0）"

        rule = recommendation.rule
        assert rule.scope_type == ScopeType.SPECIAL
        assert (rule.product_id, rule.partner_id) == (1, 1001)
        assert rule.formula == "3.5"
        assert rule.rounding == RoundingStrategy.NONE
        assert rule.enabled is False

    @pytest.mark.parametrize("prices", [
        [2.0, 5.0] * 4,     # 价格不稳定
        [3.0] * 8,          # 和现规则价一致
        [3.5] * 4,          # 样本不足
    ])
    async def test_no_recommendation(self, service, transaction_store, clock, prices):
        add_partner_prices(transaction_store, clock, "可乐", 1001, prices)
        assert await service.generate_recommendations() == []

    async def test_unknown_product_skipped(self, service, transaction_store, clock):
        add_partner_prices(transaction_store, clock, "雪碧", 1001, [3.5] * 8)
        assert await service.generate_recommendations() == []

    async def test_unknown_partner_named_by_id(self, service, transaction_store, clock):
        add_partner_prices(transaction_store, clock, "可乐", 1009, [3.5] * 8)

        recommendations = await service.generate_recommendations()

        assert recommendations[0].reason.startswith("客户1009 经常以 ¥3.5")

    async def test_old_samples_ignored(self, service, transaction_store, clock):
        samples = PriceSampleFactory.build_batch(8, price=3.5, timestamp=clock.now - timedelta(days=45))
        transaction_store.add_samples("可乐", samples, partner_id=1001)

        assert await service.generate_recommendations() == []


class TestCategoryRules:

    @pytest.fixture
    def snack_service(self, history, rule_store, transaction_store, clock):
        engine = PricingEngine(rule_store=rule_store, product_catalog=InMemoryProductCatalog(SNACKS))
        return RuleRecommendationService(history=history, engine=engine, store=transaction_store, clock=clock)

    def add_sales(self, store, clock, markup):
        for product in SNACKS:
            price = product.base_cost * markup
            store.add_samples(product.name, PriceSampleFactory.build_batch(5, price=price, timestamp=clock.now))

    async def test_uniform_markup(self, snack_service, transaction_store, clock):
        self.add_sales(transaction_store, clock, 1.5)

        recommendations = await snack_service.generate_recommendations()

        assert [r.id for r in recommendations] == ["category_零食"]
        recommendation = recommendations[0]
        assert recommendation.type == RecommendationType.CATEGORY
        assert recommendation.rule.formula == "cost * 1.50"
        assert recommendation.rule.scope_value == "零食"
        assert recommendation.rule.rounding == RoundingStrategy.ROUND_TO_HALF
        assert recommendation.reason == "零食 类商品平均加价 50%"
        assert recommendation.sample_count == 20
        assert recommendation.confidence == pytest.approx(0.8)
        # 全店规则 cost * 1.2 取整到元：5、2、6、4 → 6、3、7.5、4.5
        assert recommendation.estimated_profit_change == 20.0

    async def test_too_few_products(self, snack_service, transaction_store, clock):
        for product in SNACKS[:2]:
            transaction_store.add_samples(
                product.name, PriceSampleFactory.build_batch(5, price=product.base_cost * 1.5, timestamp=clock.now)
            )
        assert await snack_service.generate_recommendations() == []

    async def test_scattered_markups(self, snack_service, transaction_store, clock):
        # 加价率 25%、0、20%、33% 差异太大
        for product, price in zip(SNACKS, [5.0, 2.0, 6.0, 4.0]):
            transaction_store.add_samples(product.name, PriceSampleFactory.build_batch(5, price=price, timestamp=clock.now))
        assert await snack_service.generate_recommendations() == []


class TestApply:

    async def test_apply_special_rule(self, service, engine, rule_store, transaction_store, clock, event_logger):
        add_partner_prices(transaction_store, clock, "可乐", 1001, [3.5] * 8)

        rule = await service.apply_recommendation("special_1001_可乐")

        assert rule.enabled is True
        assert rule.id == 903
        assert rule_store.rules[-1] is rule
        assert engine.rule_price(PRODUCTS[0], PARTNERS[0].to_entity()) == 3.5
        assert engine.rule_price(PRODUCTS[0], PARTNERS[1].to_entity()) == 3.0
        assert event_logger.events("BUSINESS")[-1]["message"] == "应用推荐规则"
        assert await service.generate_recommendations() == []

    async def test_apply_unknown_id(self, service, engine):
        assert await service.apply_recommendation("special_1_missing") is None
        assert len(engine.rules) == 3

    async def test_rule_store_failure(self, service, engine, rule_store, transaction_store, clock):
        add_partner_prices(transaction_store, clock, "可乐", 1001, [3.5] * 8)
        await engine.initialize()
        rule_store.fail = True

        assert await service.apply_recommendation("special_1001_可乐") is None
        assert len(engine.rules) == 3


class TestRobustness:

    async def test_history_store_failure(self, service, transaction_store):
        transaction_store.fail_load = True
        assert await service.generate_recommendations() == []

    async def test_without_store(self, history, engine):
        assert await RuleRecommendationService(history, engine).generate_recommendations() == []

    def test_price_stability(self):
        assert price_stability(4.0, 1.0) == 0.75
        assert price_stability(0.0, 1.0) == 0.0

"""
定价引擎测试
"""
import pytest

from autoquote.domain.entities.nlu import PartnerEntity, ProductEntity
from autoquote.domain.entities.pricing import PricingContext, PricingRule, RoundingStrategy, ScopeType
from autoquote.domain.exceptions import FormulaError
from autoquote.domain.services.pricing_engine import (
    NOT_FOUND_PENALTY, PricingEngine, build_quote_message, default_rules, rounding_suggestion
)

from tests.fixtures.factories import PriceSampleFactory, PricingRuleFactory
from tests.mocks.ai_mock import InMemoryRuleStore

ZHANG_SAN = PartnerEntity(name="张三", confidence=0.95, partner_id=1001, level="regular")
LAO_WANG = PartnerEntity(name="老王", confidence=0.95, partner_id=1002, level="big_customer")


def products(*items):
    return [ProductEntity(name=name, quantity=qty, unit=unit, confidence=0.9) for name, qty, unit in items]


class TestQuote:

    async def test_example_quote(self, engine):
        quote = await engine.quote(PricingContext(
            products=products(("可乐", 2, "瓶"), ("纸巾", 3, "包")),
            partner=ZHANG_SAN,
        ))

        cola, tissue = quote.items
        # 饮料: 2.5 * 1.15 = 2.875 → 3.0
        assert cola.suggested_price == 3.0
        assert cola.subtotal == 6.0
        assert cola.rule_description == "饮料加价 15%"
        # 日用品: 2.0 * 1.25 = 2.5 → 3.0
        assert tissue.suggested_price == 3.0
        assert tissue.subtotal == 9.0
        assert quote.total_suggested_price == 15.0
        assert quote.message == "张三，2瓶可乐6块，3包纸巾9块，一共15块"
        assert quote.confidence == pytest.approx(0.9)
        assert quote.needs_confirmation is False
        assert quote.rounding_suggestion is None

    async def test_global_rule_for_other_category(self, engine):
        quote = await engine.quote(PricingContext(products=products(("啤酒", 1, "瓶"))))
        # 3.2 * 1.2 = 3.84 → 4.0
        assert quote.items[0].suggested_price == 4.0
        assert quote.message == "啤酒4块"

    async def test_alias_resolves_product(self, engine):
        quote = await engine.quote(PricingContext(products=products(("可口可乐", 1, "瓶"))))
        assert quote.items[0].base_cost == 2.5
        assert quote.items[0].product_id == 1

    async def test_unknown_product_penalized(self, engine):
        quote = await engine.quote(PricingContext(products=products(("雪碧", 1, "瓶"))))

        item = quote.items[0]
        assert item.base_cost == 0.0
        assert item.confidence == pytest.approx(0.9 * NOT_FOUND_PENALTY)
        assert quote.needs_confirmation is True

    async def test_empty_context(self, engine):
        quote = await engine.quote(PricingContext())
        assert quote.items == []
        assert quote.total_suggested_price == 0
        assert quote.confidence == 0.0

    async def test_catalog_failure_does_not_break_quote(self, engine, catalog):
        catalog.fail = True
        quote = await engine.quote(PricingContext(products=products(("可乐", 1, "瓶"))))
        assert quote.items[0].base_cost == 0.0


class TestRuleMatching:

    @pytest.fixture
    def scoped_engine(self, catalog):
        rules = default_rules() + [
            PricingRuleFactory.level("big_customer", "cost * 1.05", rounding=RoundingStrategy.NONE),
            PricingRuleFactory.special(1, 1002, "2.8", rounding=RoundingStrategy.NONE),
        ]
        return PricingEngine(rule_store=InMemoryRuleStore(rules), product_catalog=catalog)

    async def test_special_beats_level(self, scoped_engine):
        quote = await scoped_engine.quote(PricingContext(products=products(("可乐", 1, "瓶")), partner=LAO_WANG))
        assert quote.items[0].suggested_price == 2.8

    async def test_level_beats_category(self, scoped_engine):
        quote = await scoped_engine.quote(PricingContext(products=products(("纸巾", 1, "包")), partner=LAO_WANG))
        assert quote.items[0].suggested_price == pytest.approx(2.1)

    async def test_special_requires_matching_partner(self, scoped_engine):
        quote = await scoped_engine.quote(PricingContext(products=products(("可乐", 1, "瓶")), partner=ZHANG_SAN))
        assert quote.items[0].suggested_price == 3.0

    async def test_higher_priority_within_scope(self, catalog):
        rules = [
            PricingRuleFactory.category("饮料", "cost * 2", priority=50, rounding=RoundingStrategy.NONE),
            PricingRuleFactory.category("饮料", "cost * 1.1", priority=10, rounding=RoundingStrategy.NONE),
        ]
        engine = PricingEngine(rule_store=InMemoryRuleStore(rules), product_catalog=catalog)

        quote = await engine.quote(PricingContext(products=products(("可乐", 1, "瓶"))))

        assert quote.items[0].suggested_price == 5.0

    async def test_disabled_rule_ignored(self, catalog):
        rules = [
            PricingRuleFactory(formula="cost * 10", enabled=False),
            PricingRuleFactory(formula="cost * 2", rounding=RoundingStrategy.NONE),
        ]
        engine = PricingEngine(rule_store=InMemoryRuleStore(rules), product_catalog=catalog)

        quote = await engine.quote(PricingContext(products=products(("可乐", 1, "瓶"))))

        assert quote.items[0].suggested_price == 5.0

    async def test_invalid_formula_skipped(self, catalog):
        rules = [PricingRuleFactory(formula="cost ** 2"), PricingRuleFactory(formula="cost * 2")]
        engine = PricingEngine(rule_store=InMemoryRuleStore(rules), product_catalog=catalog)

        assert await engine.refresh() == 1

    async def test_no_rules_uses_default_margin(self, catalog):
        engine = PricingEngine(rule_store=InMemoryRuleStore([]), product_catalog=catalog)
        quote = await engine.quote(PricingContext(products=products(("可乐", 1, "瓶"))))
        # 2.5 * 1.2 = 3.0
        assert quote.items[0].suggested_price == 3.0
        assert quote.items[0].rule_id is None

    async def test_add_rule(self, engine):
        await engine.initialize()
        engine.add_rule(PricingRuleFactory.special(4, 1001, "5"))

        quote = await engine.quote(PricingContext(products=products(("啤酒", 1, "瓶")), partner=ZHANG_SAN))

        assert quote.items[0].suggested_price == 5.0

    def test_add_rule_rejects_bad_formula(self, engine):
        with pytest.raises(FormulaError):
            engine.add_rule(PricingRule(scope_type=ScopeType.GLOBAL, formula="import os"))


class TestRefresh:

    async def test_store_failure_on_first_load_uses_defaults(self, rule_store, catalog):
        rule_store.fail = True
        engine = PricingEngine(rule_store=rule_store, product_catalog=catalog)

        count = await engine.refresh()

        assert count == len(default_rules())

    async def test_store_failure_keeps_cache(self, catalog):
        store = InMemoryRuleStore([PricingRuleFactory(formula="cost * 2")])
        engine = PricingEngine(rule_store=store, product_catalog=catalog)
        await engine.refresh()

        store.fail = True
        count = await engine.refresh()

        assert count == 1
        assert engine.rules[0].formula == "cost * 2"

    async def test_no_store_uses_defaults(self, catalog):
        engine = PricingEngine(product_catalog=catalog)
        assert await engine.refresh() == len(default_rules())

    async def test_initialize_loads_once(self, engine, rule_store):
        await engine.initialize()
        await engine.initialize()
        assert rule_store.load_count == 1


class TestHistoricalBlend:

    async def test_blend_with_overall_history(self, engine, transaction_store, clock):
        transaction_store.add_samples("可乐", PriceSampleFactory.build_batch(3, price=5.0, timestamp=clock.now))

        quote = await engine.quote(PricingContext(products=products(("可乐", 1, "瓶"))))

        item = quote.items[0]
        assert item.historical_price == pytest.approx(5.0)
        # 2.875 * 0.7 + 5.0 * 0.3 = 3.5125 → 3.5
        assert item.suggested_price == 3.5

    async def test_partner_history_preferred(self, engine, transaction_store, clock):
        transaction_store.add_samples("可乐", PriceSampleFactory.build_batch(3, price=5.0, timestamp=clock.now))
        transaction_store.add_samples(
            "可乐", PriceSampleFactory.build_batch(3, price=6.0, timestamp=clock.now), partner_id=1001
        )

        quote = await engine.quote(PricingContext(products=products(("可乐", 1, "瓶")), partner=ZHANG_SAN))

        assert quote.items[0].historical_price == pytest.approx(6.0)
        # 2.875 * 0.7 + 6.0 * 0.3 = 3.8125 → 4.0
        assert quote.items[0].suggested_price == 4.0

    async def test_blend_disabled(self, engine, transaction_store, clock):
        transaction_store.add_samples("可乐", PriceSampleFactory.build_batch(3, price=5.0, timestamp=clock.now))
        engine.enable_historical_learning = False

        quote = await engine.quote(PricingContext(products=products(("可乐", 1, "瓶"))))

        assert quote.items[0].historical_price is None
        assert quote.items[0].suggested_price == 3.0

    async def test_history_failure_ignored(self, engine, transaction_store):
        transaction_store.fail_load = True
        quote = await engine.quote(PricingContext(products=products(("可乐", 1, "瓶"))))
        assert quote.items[0].suggested_price == 3.0


class TestQuoteText:

    @pytest.mark.parametrize("total,expected", [
        (15.0, None),
        (9.6, "取整到 10 元（多收 0.4 元）"),
        (9.3, "取整到 9 元（少收 0.3 元）"),
    ])
    def test_rounding_suggestion(self, total, expected):
        assert rounding_suggestion(total) == expected

    def test_message_without_partner(self):
        assert build_quote_message([], 0, None) == ""

"""
应用组装测试（不连数据库）
"""
import pytest

from autoquote import build_application
from autoquote.config.settings import Settings
from autoquote.domain.entities.conversation import ConversationInput, ConversationState


@pytest.fixture
def offline_settings() -> Settings:
    config = Settings()
    config.ai_enabled = False
    config.log_to_database = False
    config.extra_hotwords = "可乐,纸巾"
    return config


class TestBuildApplication:

    async def test_start_and_stop(self, offline_settings):
        app = build_application(offline_settings)

        await app.start()
        assert app.is_started
        assert all(task.is_running for task in app.tasks)
        assert len(app.engine.rules) == 3

        await app.stop()
        assert not app.is_started
        assert not any(task.is_running for task in app.tasks)

    async def test_quote_without_database(self, offline_settings):
        app = build_application(offline_settings)
        await app.start(run_tasks=False)

        output = await app.process_input(ConversationInput(session_id="s", text="两瓶可乐多少钱"))
        done = await app.process_input(ConversationInput(session_id="s", text="好的"))

        # 没有商品库时成本为 0
        assert output.state == ConversationState.AWAITING_CONFIRM
        assert output.quote.items[0].product_name == "可乐"
        assert done.state == ConversationState.COMPLETED
        assert done.text == "好嘞！还要别的吗？"
        await app.stop()

    def test_task_intervals_follow_settings(self, offline_settings):
        offline_settings.distribution_cache_ttl_minutes = 30
        offline_settings.session_cleanup_interval_minutes = 2
        offline_settings.hotword_refresh_minutes = 7

        app = build_application(offline_settings)

        assert {task.name: task.interval for task in app.tasks} == {
            "session_cleanup": 120,
            "distribution_refresh": 1800,
            "hotword_refresh": 420,
        }

    async def test_recommendations_without_database(self, offline_settings):
        offline_settings.recommendation_days = 14

        app = build_application(offline_settings)

        assert app.recommendations.days_to_analyze == 14
        assert await app.recommendations.generate_recommendations() == []

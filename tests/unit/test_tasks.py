"""
后台任务测试
"""
import asyncio

import pytest

from autoquote.domain.entities.conversation import ConversationInput
from autoquote.domain.services.hotword_service import HotwordService
from autoquote.infrastructure.tasks.distribution_refresh import DistributionRefreshTask, HotwordRefreshTask
from autoquote.infrastructure.tasks.periodic import PeriodicTask
from autoquote.infrastructure.tasks.session_cleanup import SessionCleanupTask

from tests.fixtures.factories import PriceSampleFactory
from tests.mocks.ai_mock import InMemoryHotwordSource


class CountingTask(PeriodicTask):
    name = "counting"

    def __init__(self, fail_first: bool = False):
        super().__init__(interval_minutes=0)
        self.runs = 0
        self.fail_first = fail_first

    async def run_once(self) -> None:
        self.runs += 1
        if self.fail_first and self.runs == 1:
            raise RuntimeError("第一次失败")


async def wait_for_runs(task: CountingTask, runs: int) -> None:
    for _ in range(100):
        if task.runs >= runs:
            return
        await asyncio.sleep(0.01)


class TestPeriodicTask:

    async def test_start_and_stop(self):
        task = CountingTask()
        await task.start()
        assert task.is_running

        await wait_for_runs(task, 2)
        await task.stop()

        assert not task.is_running
        assert task.runs >= 2

    async def test_error_does_not_stop_loop(self):
        task = CountingTask(fail_first=True)
        await task.start()
        await wait_for_runs(task, 3)
        await task.stop()

        assert task.runs >= 3

    async def test_stop_when_not_running(self):
        await CountingTask().stop()

    async def test_double_start(self):
        task = CountingTask()
        await task.start()
        first = task._task
        await task.start()

        assert task._task is first
        await task.stop()

    async def test_base_run_once_not_implemented(self):
        with pytest.raises(NotImplementedError):
            await PeriodicTask(1).run_once()


class TestJobs:

    async def test_session_cleanup(self, manager, clock):
        await manager.process_input(ConversationInput(session_id="s", text="可乐怎么卖"))
        clock.advance(minutes=31)

        task = SessionCleanupTask(manager)
        await task.run_once()

        assert task.last_removed == 1
        assert manager.active_session_count == 0

    async def test_distribution_refresh(self, history, engine, transaction_store, rule_store, clock):
        transaction_store.add_samples("可乐", PriceSampleFactory.build_batch(3, timestamp=clock.now))

        await DistributionRefreshTask(history, engine).run_once()

        assert rule_store.load_count == 1
        assert (await history.get_price_distribution("可乐")).sample_count == 3
        assert transaction_store.load_calls == 1

    async def test_hotword_refresh(self, clock):
        hotwords = HotwordService(source=InMemoryHotwordSource(products=["可乐"]), clock=clock)

        await HotwordRefreshTask(hotwords).run_once()

        assert hotwords.snapshot.products == ("可乐",)

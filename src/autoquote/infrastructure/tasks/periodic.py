"""
周期性后台任务的基础类。
"""
import asyncio
import logging
from typing import Optional

from ..logging.hybrid_logger import hybrid_logger


class PeriodicTask:
    """
    按固定间隔执行 run_once()。
    单次执行出错只记录日志，循环继续。
    """

    name = "periodic"

    def __init__(self, interval_minutes: float) -> None:
        self.interval = interval_minutes * 60  # 秒
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            await hybrid_logger.warning(f"后台任务 {self.name} 已在运行")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        await hybrid_logger.info(f"后台任务 {self.name} 已启动（每 {self.interval:g} 秒执行一次）")

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await hybrid_logger.info(f"后台任务 {self.name} 已停止")

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                await hybrid_logger.error(f"后台任务 {self.name} 执行失败: {e}")

    async def run_once(self) -> None:
        raise NotImplementedError

"""
定时清理超时会话。
"""
from .periodic import PeriodicTask
from ...domain.services.conversation_manager import ConversationManager


class SessionCleanupTask(PeriodicTask):
    """每 5 分钟清理一次不活跃的会话"""

    name = "session_cleanup"

    def __init__(self, manager: ConversationManager, interval_minutes: float = 5) -> None:
        super().__init__(interval_minutes)
        self.manager = manager
        self.last_removed = 0

    async def run_once(self) -> None:
        self.last_removed = await self.manager.cleanup_expired_sessions()
        if not self.last_removed:
            self._logger.debug("没有超时会话")

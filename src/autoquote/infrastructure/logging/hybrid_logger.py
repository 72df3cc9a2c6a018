"""
混合日志
- DEBUG/INFO → 控制台
- WARNING, ERROR → 控制台 + 数据库（开启 LOG_TO_DATABASE 时）
- CRITICAL → 控制台 + 数据库
- BUSINESS 事件（成交、异常价格、会话清理）→ 数据库，用于统计
"""
import json
import logging
import sys
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..database.models import SystemLog

DB_LEVELS = ("ERROR", "WARNING", "CRITICAL", "BUSINESS")


class HybridLogger:
    """混合日志"""

    def __init__(self, name: str = "autoquote"):
        self._session_factory: Optional[async_sessionmaker] = None
        self._log_to_database = False
        self._setup_console_logger(name)

    def _setup_console_logger(self, name: str) -> None:
        self.console_logger = logging.getLogger(name)
        self.console_logger.setLevel(logging.DEBUG)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

        if not self.console_logger.handlers:
            self.console_logger.addHandler(console_handler)

    def configure(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        log_to_database: bool = False,
        level: str = "INFO",
    ) -> None:
        """启动时注入会话工厂；未注入时只写控制台"""
        self._session_factory = session_factory
        self._log_to_database = log_to_database and session_factory is not None
        for handler in self.console_logger.handlers:
            handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    @property
    def writes_to_database(self) -> bool:
        return self._log_to_database

    async def log(
        self,
        level: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        level_upper = level.upper()

        log_level = getattr(logging, level_upper, logging.INFO)
        if metadata:
            self.console_logger.log(log_level, f"{message} {json.dumps(metadata, ensure_ascii=False, default=str)}")
        else:
            self.console_logger.log(log_level, message)

        if self._log_to_database and level_upper in DB_LEVELS:
            await self._save_to_db(level_upper, message, metadata)

    async def _save_to_db(
        self,
        level: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(SystemLog(
                    level=level,
                    message=message,
                    extra_data=json.dumps(metadata, ensure_ascii=False, default=str) if metadata else None
                ))
                await session.commit()
        except Exception as e:
            # 日志写库失败不影响业务
            self.console_logger.error(f"日志写入数据库失败: {e}")

    async def error(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self.log("ERROR", message, metadata)

    async def warning(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self.log("WARNING", message, metadata)

    async def critical(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self.log("CRITICAL", message, metadata)

    async def business(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """业务事件"""
        await self.log("BUSINESS", message, metadata)

    async def info(self, message: str) -> None:
        self.console_logger.info(message)

    async def debug(self, message: str) -> None:
        self.console_logger.debug(message)


hybrid_logger = HybridLogger()

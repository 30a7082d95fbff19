"""
同步引擎 - 核心协调器

按配置组装源数据提供者、接入端点客户端、持久化存储、审计日志、
单表同步器与调度器，对外提供手动同步、浏览与定时运行的入口。
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

from db_synker.core.replicator import TableReplicator
from db_synker.core.scheduler import CronScheduler
from db_synker.models.sync_config import (
    AppConfig,
    FixtureSourceConfig,
    MySQLSourceConfig,
    SQLiteSourceConfig,
    StorageBackend,
    StorageConfig,
)
from db_synker.models.sync_log import SyncLogEntry, SyncResult, SyncTrigger
from db_synker.sources.base import BaseSourceProvider
from db_synker.storage.audit_log import AuditLog
from db_synker.storage.document_store import (
    DocumentStore,
    JsonFileDocumentStore,
    SQLiteDocumentStore,
)
from db_synker.storage.filter_store import FilterStore
from db_synker.targets.ingestion_client import IngestionClient
from db_synker.utils.logging import get_logger

logger = get_logger(__name__)


def create_source(config: AppConfig) -> BaseSourceProvider:
    """根据 source.type 创建源数据提供者"""
    source = config.source
    if isinstance(source, MySQLSourceConfig):
        from db_synker.sources.mysql_source import MySQLSource
        return MySQLSource(source)
    if isinstance(source, SQLiteSourceConfig):
        from db_synker.sources.sqlite_source import SQLiteSource
        return SQLiteSource(source.data_dir)
    if isinstance(source, FixtureSourceConfig):
        from db_synker.sources.fixture_source import FixtureSource
        return FixtureSource(source.path)
    raise ValueError(f"不支持的源类型: {source.type}")


def create_store(config: StorageConfig) -> DocumentStore:
    """根据 storage.backend 创建文档存储"""
    if config.backend == StorageBackend.SQLITE:
        return SQLiteDocumentStore(config.path)
    return JsonFileDocumentStore(Path(config.path))


class SyncEngine:
    """
    同步引擎

    手动同步与定时同步共用同一个单表同步器与审计日志。

    示例:
        >>> engine = SyncEngine(load_config("synker.yaml"))
        >>> result = await engine.sync_table("shop", "orders")
        >>> await engine.stop()
    """

    def __init__(
        self,
        config: AppConfig,
        source: Optional[BaseSourceProvider] = None,
        store: Optional[DocumentStore] = None,
        client: Optional[IngestionClient] = None
    ):
        """
        初始化同步引擎

        参数:
            config: 应用配置
            source: 源数据提供者（默认按配置创建）
            store: 文档存储（默认按配置创建）
            client: 接入端点客户端（默认按配置创建）
        """
        self.config = config
        self.source = source or create_source(config)
        self.store = store or create_store(config.storage)
        self.client = client or IngestionClient(config.ingestion)

        self.audit_log = AuditLog(self.store, config.max_log_entries)
        self.filter_store = FilterStore(self.store)
        self.replicator = TableReplicator(
            self.source,
            self.client,
            batch_size=config.effective_batch_size
        )
        self.scheduler = CronScheduler(
            self.replicator,
            self.audit_log,
            self.store,
            filter_store=self.filter_store,
            next_runs_count=config.scheduler.next_runs_count
        )

        self._running = False
        self._stop_event = asyncio.Event()

    # ========================================================================
    # 手动同步
    # ========================================================================

    async def sync_table(self, db_name: str, table_name: str) -> SyncResult:
        """
        手动同步单表

        使用该表已保存的过滤条件，结果写入审计日志（trigger=manual）。
        """
        filters = self.filter_store.get_filters(db_name, table_name)
        result = await self.replicator.replicate(db_name, table_name, filters)

        try:
            self.audit_log.append(
                result.to_log_entry(
                    (db_name or "").strip(),
                    (table_name or "").strip(),
                    SyncTrigger.MANUAL
                )
            )
        except Exception as e:
            logger.error("audit_log_append_failed", db=db_name, table=table_name, error=str(e))

        return result

    # ========================================================================
    # 浏览
    # ========================================================================

    async def list_databases(self) -> List[str]:
        return await self.source.list_databases()

    async def list_tables(self, db_name: str) -> List[str]:
        return await self.source.list_tables(db_name)

    async def preview(self, db_name: str, table_name: str, limit: int = 20) -> List[Dict[str, Any]]:
        """预览表的前 limit 行"""
        return await self.source.get_table_preview(db_name, table_name, limit)

    def recent_logs(self, limit: Optional[int] = None) -> List[SyncLogEntry]:
        """按时间倒序返回审计日志"""
        entries = self.audit_log.load_all()
        return entries[:limit] if limit else entries

    # ========================================================================
    # 生命周期
    # ========================================================================

    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """启动调度器（恢复已保存的计划）"""
        if self._running:
            raise RuntimeError("同步引擎已在运行")

        self._running = True
        self._stop_event.clear()
        logger.info(
            "sync_engine_start",
            source=self.config.source.type,
            endpoint=self.config.ingestion.url,
            batch_size=self.config.effective_batch_size
        )
        await self.scheduler.start()

    async def run_forever(self) -> None:
        """阻塞直到 stop() 被调用"""
        if not self._running:
            await self.start()
        await self._stop_event.wait()

    async def stop(self) -> None:
        """停止调度器并释放所有资源"""
        if self._running:
            await self.scheduler.shutdown()
        self._running = False
        self._stop_event.set()

        try:
            await self.client.close()
        except Exception as e:
            logger.warning("ingestion_client_close_failed", error=str(e))
        try:
            await self.source.close()
        except Exception as e:
            logger.warning("source_close_failed", error=str(e))
        self.store.close()

        logger.info("sync_engine_stopped")

"""
单表同步实现 - 校验、取结构、取数据、分批发送到接入端点
"""

from typing import Any, Dict, List, Optional, Sequence

from db_synker.core.schema_translator import ROW_SIZE_BUDGET, describe_schema, translate_schema
from db_synker.exceptions import (
    NotFoundError,
    SchemaError,
    SynkerError,
    TransportError,
    ValidationError,
)
from db_synker.models.filters import FilterPredicate, active_predicates
from db_synker.models.sync_log import SyncResult
from db_synker.models.table import TableSchema
from db_synker.sources.base import BaseSourceProvider
from db_synker.targets.ingestion_client import IngestionClient, build_payload
from db_synker.utils.logging import get_logger

logger = get_logger(__name__)


def chunk_rows(rows: List[Dict[str, Any]], batch_size: int) -> List[List[Dict[str, Any]]]:
    """
    按固定大小切分

    示例:
        >>> [len(c) for c in chunk_rows([{}] * 12, 5)]
        [5, 5, 2]
    """
    if batch_size < 1:
        raise ValueError("batch_size 必须大于 0")
    return [rows[i:i + batch_size] for i in range(0, len(rows), batch_size)]


class TableReplicator:
    """
    单表同步器

    把一张源表整表推送到接入端点。每一步都是独立的失败点，
    所有预期内的错误都转换为失败的 SyncResult 返回，不会抛出，
    因此一张表的失败不会影响同一轮中的其它表。

    批次严格串行发送，避免同时压垮源库与目标端。
    """

    def __init__(
        self,
        source: BaseSourceProvider,
        client: IngestionClient,
        batch_size: int = 5000,
        row_size_budget: int = ROW_SIZE_BUDGET
    ):
        """
        初始化同步器

        参数:
            source: 源数据提供者
            client: 接入端点客户端
            batch_size: 每次请求发送的行数
            row_size_budget: 目标端单行字节预算
        """
        if batch_size < 1:
            raise ValueError("batch_size 必须大于 0")
        self.source = source
        self.client = client
        self.batch_size = batch_size
        self.row_size_budget = row_size_budget

    async def replicate(
        self,
        db_name: Optional[str],
        table_name: Optional[str],
        filters: Optional[Sequence[FilterPredicate]] = None
    ) -> SyncResult:
        """
        同步单表

        参数:
            db_name: 数据库名
            table_name: 表名
            filters: 行过滤条件（可选）

        返回:
            SyncResult: 成功时包含同步行数与描述；失败时包含错误描述，
            以及失败前已被远端确认的行数
        """
        db = (db_name or "").strip()
        table = (table_name or "").strip()
        synced = 0
        batches = 0
        # 每次同步使用独立会话，关闭时不影响并发进行的其它同步
        source = self.source.session()

        try:
            self._validate(db, table)
            await self._ensure_exists(source, db, table)

            schema = await self._load_schema(source, db, table)
            effective_filters = active_predicates(list(filters or []))
            rows = await source.get_table_data(db, table, effective_filters or None)

            logger.info(
                "table_sync_start",
                db=db,
                table=table,
                rows=len(rows),
                filters=len(effective_filters),
                batch_size=self.batch_size,
                **describe_schema(schema)
            )

            # 空表也要发送一次，让远端按结构建表
            chunks = chunk_rows(rows, self.batch_size) or [[]]
            for chunk in chunks:
                synced += await self._send_batch(table, schema, chunk)
                batches += 1

        except TransportError as e:
            error = str(e)
            logger.error(
                "table_sync_failed",
                db=db,
                table=table,
                error=error,
                status=e.status,
                remote=e.remote_message,
                synced=synced,
                batches=batches
            )
            return SyncResult(success=False, synced_count=synced, batches=batches, error=error)
        except SynkerError as e:
            logger.warning("table_sync_rejected", db=db, table=table, error=str(e))
            return SyncResult(success=False, synced_count=synced, batches=batches, error=str(e))
        except Exception as e:
            logger.error("table_sync_error", db=db, table=table, error=str(e), exc_info=True)
            return SyncResult(
                success=False,
                synced_count=synced,
                batches=batches,
                error=str(e) or type(e).__name__
            )
        finally:
            await self._release(source)

        message = f'表 "{table}" 已同步 {synced} 行'
        logger.info("table_sync_complete", db=db, table=table, synced=synced, batches=batches)
        return SyncResult(success=True, synced_count=synced, batches=batches, message=message)

    @staticmethod
    def _validate(db: str, table: str) -> None:
        if not db:
            raise ValidationError("数据库名不能为空")
        if not table:
            raise ValidationError("表名不能为空")

    @staticmethod
    async def _ensure_exists(source: BaseSourceProvider, db: str, table: str) -> None:
        if not await source.database_exists(db):
            raise NotFoundError(f'数据库 "{db}" 不存在')
        if not await source.table_exists(db, table):
            raise NotFoundError(f'表 "{table}" 不存在于数据库 "{db}"')

    async def _load_schema(self, source: BaseSourceProvider, db: str, table: str) -> TableSchema:
        source_schema = await source.get_table_schema(db, table)
        try:
            return translate_schema(source_schema, self.row_size_budget)
        except SchemaError as e:
            raise SchemaError(f'表 "{table}" 结构无效: {e}')

    async def _send_batch(
        self,
        table: str,
        schema: TableSchema,
        chunk: List[Dict[str, Any]]
    ) -> int:
        """发送一批，返回远端确认的行数（远端未返回时按本批行数计）"""
        result = await self.client.sync_table(build_payload(table, schema, chunk))
        rows = result.get("rows")
        if isinstance(rows, int) and not isinstance(rows, bool):
            return rows
        return len(chunk)

    @staticmethod
    async def _release(source: BaseSourceProvider) -> None:
        try:
            await source.close()
        except Exception as e:
            logger.warning("source_close_failed", error=str(e))

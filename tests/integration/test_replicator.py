"""
TableReplicator 集成测试 (unittest)

使用夹具数据源与进程内 aiohttp 模拟接入端点。
"""

import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock

from db_synker.core.replicator import TableReplicator, chunk_rows
from db_synker.models.filters import FilterPredicate
from db_synker.models.sync_config import IngestionConfig
from db_synker.sources.fixture_source import FixtureSource
from db_synker.sources.sqlite_source import SQLiteSource
from db_synker.targets.ingestion_client import IngestionClient
from tests.conftest import FakeIngestionEndpoint, create_sqlite_database, write_fixture_file


class TestChunkRows(unittest.TestCase):
    """分批测试"""

    def test_chunks(self):
        self.assertEqual([len(c) for c in chunk_rows([{}] * 12, 5)], [5, 5, 2])
        self.assertEqual(chunk_rows([], 5), [])
        with self.assertRaises(ValueError):
            chunk_rows([{}], 0)


class TestTableReplicator(IsolatedAsyncioTestCase):
    """单表同步集成测试"""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.temp_dir = Path(self._tmp.name)
        self.source = FixtureSource(write_fixture_file(self.temp_dir, row_count=12))
        self.endpoint = None
        self.client = None

    async def asyncTearDown(self):
        if self.client is not None:
            await self.client.close()
        if self.endpoint is not None:
            await self.endpoint.close()
        self._tmp.cleanup()

    async def _replicator(self, batch_size: int = 5, **endpoint_kwargs) -> TableReplicator:
        self.endpoint = FakeIngestionEndpoint(**endpoint_kwargs)
        base_url = await self.endpoint.start()
        self.client = IngestionClient(IngestionConfig(base_url=base_url, timeout_seconds=5))
        return TableReplicator(self.source, self.client, batch_size=batch_size)

    async def test_batches_sent_sequentially(self):
        """12 行、批量 5：发送 5、5、2 三批"""
        replicator = await self._replicator(batch_size=5)

        result = await replicator.replicate("shop", "orders")

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.synced_count, 12)
        self.assertEqual(result.batches, 3)
        self.assertEqual(result.message, '表 "orders" 已同步 12 行')
        self.assertEqual(self.endpoint.batch_sizes, [5, 5, 2])

        ids = [row["id"] for p in self.endpoint.payloads for row in p["table_items"]]
        self.assertEqual(ids, list(range(1, 13)))

    async def test_payload_shape(self):
        """请求体包含表名、列定义与唯一键"""
        replicator = await self._replicator(batch_size=100)
        await replicator.replicate("shop", "orders")

        payload = self.endpoint.payloads[0]
        self.assertEqual(payload["table_name"], "orders")
        self.assertEqual(payload["unique_keys"], ["id"])
        first = payload["table_config"][0]
        self.assertEqual(first["name"], "id")
        self.assertTrue(first["primaryKey"])
        self.assertTrue(first["autoIncrement"])
        self.assertFalse(first["nullable"])
        self.assertEqual(
            [c["type"] for c in payload["table_config"]],
            ["INT", "VARCHAR(20)", "DECIMAL(10,2)", "DATETIME"]
        )

    async def test_fallback_unique_key(self):
        """没有主键的表以第一列作为唯一键"""
        replicator = await self._replicator()
        result = await replicator.replicate("shop", "customers")

        self.assertTrue(result.success)
        self.assertEqual(self.endpoint.payloads[0]["unique_keys"], ["code"])

    async def test_filters_applied(self):
        """只发送满足过滤条件的行"""
        replicator = await self._replicator(batch_size=100)
        filters = [
            FilterPredicate(column="status", operator="eq", value="paid"),
            FilterPredicate(column="created_at", operator="range", value=["2024-01-03", "2024-01-07"]),
            FilterPredicate(column="total", operator="gt", value=""),
        ]

        result = await replicator.replicate("shop", "orders", filters)

        self.assertEqual(result.synced_count, 3)
        ids = [row["id"] for row in self.endpoint.payloads[0]["table_items"]]
        self.assertEqual(ids, [3, 5, 7])

    async def test_unknown_filter_column_sends_schema_only(self):
        """过滤条件引用不存在的列时没有行被发送"""
        replicator = await self._replicator()
        filters = [FilterPredicate(column="nope", operator="eq", value="nope")]

        result = await replicator.replicate("shop", "orders", filters)

        self.assertTrue(result.success)
        self.assertEqual(result.synced_count, 0)
        self.assertEqual(self.endpoint.batch_sizes, [0])

    async def test_failed_batch_keeps_partial_count(self):
        """第二批失败：结果为失败且保留第一批的行数，后续批次不再发送"""
        replicator = await self._replicator(batch_size=5, fail_on_batch=2)

        result = await replicator.replicate("shop", "orders")

        self.assertFalse(result.success)
        self.assertEqual(result.synced_count, 5)
        self.assertEqual(result.batches, 1)
        self.assertIn("500", result.error)
        self.assertIn("目标库写入失败", result.error)
        self.assertEqual(len(self.endpoint.payloads), 2)

    async def test_empty_table_sends_schema(self):
        """空表也发送一次（只带结构）"""
        source = FixtureSource(write_fixture_file(self.temp_dir, row_count=0))
        self.endpoint = FakeIngestionEndpoint()
        base_url = await self.endpoint.start()
        self.client = IngestionClient(IngestionConfig(base_url=base_url))
        replicator = TableReplicator(source, self.client, batch_size=5)

        result = await replicator.replicate("shop", "orders")

        self.assertTrue(result.success)
        self.assertEqual(result.synced_count, 0)
        self.assertEqual(self.endpoint.batch_sizes, [0])

    async def test_validation_and_lookup_errors(self):
        """空标识与不存在的库表不发送任何请求"""
        replicator = await self._replicator()

        result = await replicator.replicate("  ", "orders")
        self.assertFalse(result.success)
        self.assertEqual(result.error, "数据库名不能为空")

        result = await replicator.replicate("shop", None)
        self.assertEqual(result.error, "表名不能为空")

        result = await replicator.replicate("nope", "orders")
        self.assertIn("不存在", result.error)

        result = await replicator.replicate("shop", "nope")
        self.assertIn("不存在", result.error)

        self.assertEqual(self.endpoint.payloads, [])

    async def test_unreachable_endpoint(self):
        """网络失败转换为失败结果"""
        self.client = IngestionClient(IngestionConfig(base_url="http://127.0.0.1:9", timeout_seconds=2))
        replicator = TableReplicator(self.source, self.client, batch_size=5)

        result = await replicator.replicate("shop", "orders")

        self.assertFalse(result.success)
        self.assertEqual(result.synced_count, 0)
        self.assertIn("接入端点", result.error)

    async def test_unexpected_error_is_contained(self):
        """源端意外异常不会逃逸"""
        replicator = await self._replicator()
        self.source.get_table_data = AsyncMock(side_effect=RuntimeError("连接中断"))

        result = await replicator.replicate("shop", "orders")

        self.assertFalse(result.success)
        self.assertEqual(result.error, "连接中断")

    async def test_remote_row_count_preferred(self):
        """远端返回的 rows 优先于本批行数"""
        replicator = await self._replicator()
        self.client.sync_table = AsyncMock(return_value={"code": 200, "rows": 1})

        result = await replicator.replicate("shop", "orders")

        self.assertEqual(result.synced_count, 3)
        self.assertEqual(result.batches, 3)

    async def test_concurrent_replications_on_one_source(self):
        """共用一个 SQLite 数据源的两次同步同时进行，互不关闭对方的连接"""
        create_sqlite_database(self.temp_dir, "shop")
        create_sqlite_database(self.temp_dir, "shop2")
        source = SQLiteSource(self.temp_dir)
        self.endpoint = FakeIngestionEndpoint(delay_seconds=0.05)
        base_url = await self.endpoint.start()
        self.client = IngestionClient(IngestionConfig(base_url=base_url))
        replicator = TableReplicator(source, self.client, batch_size=2)

        first, second = await asyncio.gather(
            replicator.replicate("shop", "orders"),
            replicator.replicate("shop2", "orders"),
        )

        self.assertTrue(first.success, first.error)
        self.assertTrue(second.success, second.error)
        self.assertEqual((first.synced_count, second.synced_count), (6, 6))
        self.assertEqual(len(self.endpoint.payloads), 6)
        self.assertIsNone(source._conn)


if __name__ == "__main__":
    unittest.main()

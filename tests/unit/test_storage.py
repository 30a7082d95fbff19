"""
持久化存储单元测试 (unittest)
"""

import tempfile
import unittest
from pathlib import Path

from db_synker.exceptions import PersistenceError
from db_synker.models.filters import FilterPredicate
from db_synker.models.sync_log import SyncLogEntry, SyncStatus, SyncTrigger
from db_synker.storage.audit_log import LOGS_KEY, AuditLog
from db_synker.storage.document_store import JsonFileDocumentStore, SQLiteDocumentStore
from db_synker.storage.filter_store import FILTERS_KEY, FilterStore, filter_key


def _entry(table_name: str, status: SyncStatus = SyncStatus.SUCCESS) -> SyncLogEntry:
    return SyncLogEntry(db_name="shop", table_name=table_name, status=status, message="m")


class DocumentStoreContract:
    """两种文档存储共用的行为测试"""

    def create_store(self):
        raise NotImplementedError

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.temp_dir = Path(self._tmp.name)
        self.store = self.create_store()

    def tearDown(self):
        self.store.close()
        self._tmp.cleanup()

    def test_put_read_delete(self):
        """整文档读写与删除"""
        self.assertIsNone(self.store.read("schedule"))
        self.store.put("schedule", {"cronExpression": "* * * * *", "paused": False})
        self.assertEqual(self.store.read("schedule"), {"cronExpression": "* * * * *", "paused": False})

        self.store.put("schedule", {"paused": True})
        self.assertEqual(self.store.get("schedule"), {"paused": True})

        self.store.delete("schedule")
        self.assertIsNone(self.store.read("schedule"))
        self.store.delete("schedule")

    def test_get_default(self):
        """不存在时返回默认值"""
        self.assertEqual(self.store.get("logs", default=[]), [])

    def test_unicode(self):
        """中文内容原样保存"""
        self.store.put("logs", [{"message": '表 "订单" 已同步 3 行'}])
        self.assertEqual(self.store.read("logs")[0]["message"], '表 "订单" 已同步 3 行')


class TestJsonFileDocumentStore(DocumentStoreContract, unittest.TestCase):
    """JSON 文件存储测试"""

    def create_store(self):
        return JsonFileDocumentStore(self.temp_dir / "state")

    def test_corrupt_document_reads_as_absent(self):
        """损坏的文件读为不存在"""
        (self.temp_dir / "state" / "schedule.json").write_text("{not json", encoding="utf-8")
        with self.assertRaises(PersistenceError):
            self.store.read("schedule")
        self.assertIsNone(self.store.get("schedule"))

    def test_no_temp_files_left(self):
        """写入后不留下临时文件"""
        self.store.put("logs", [1, 2, 3])
        self.assertEqual(sorted(p.name for p in (self.temp_dir / "state").iterdir()), ["logs.json"])

    def test_invalid_key(self):
        """非法键被拒绝"""
        with self.assertRaises(ValueError):
            self.store.put("../escape", {})


class TestSQLiteDocumentStore(DocumentStoreContract, unittest.TestCase):
    """SQLite 文档存储测试"""

    def create_store(self):
        return SQLiteDocumentStore(self.temp_dir / "nested" / "synker.db")

    def test_persists_across_instances(self):
        """重新打开后数据仍在"""
        self.store.put("filters", {"shop_orders": []})
        reopened = SQLiteDocumentStore(self.temp_dir / "nested" / "synker.db")
        self.assertEqual(reopened.read("filters"), {"shop_orders": []})


class TestAuditLog(unittest.TestCase):
    """审计日志测试"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = JsonFileDocumentStore(self._tmp.name)
        self.audit_log = AuditLog(self.store, max_entries=3)

    def tearDown(self):
        self._tmp.cleanup()

    def test_append_assigns_id_and_timestamp(self):
        """追加时分配 id 与 UTC 时间戳"""
        stored = self.audit_log.append(_entry("orders"))
        self.assertEqual(len(stored.id), 32)
        self.assertTrue(stored.timestamp.endswith("+00:00"))

        other = self.audit_log.append(_entry("orders"))
        self.assertNotEqual(stored.id, other.id)

    def test_newest_first_and_capped(self):
        """最新的在前，超出上限时丢弃最旧的"""
        for name in ("t1", "t2", "t3", "t4"):
            self.audit_log.append(_entry(name))

        entries = self.audit_log.load_all()
        self.assertEqual([e.table_name for e in entries], ["t4", "t3", "t2"])

    def test_persisted_format(self):
        """持久化使用别名且省略空字段"""
        self.audit_log.append(
            SyncLogEntry(
                db_name="shop",
                table_name="orders",
                status=SyncStatus.SUCCESS,
                synced_count=12,
                trigger=SyncTrigger.SCHEDULED,
            )
        )
        raw = self.store.read(LOGS_KEY)[0]
        self.assertEqual(raw["dbName"], "shop")
        self.assertEqual(raw["synced"], 12)
        self.assertEqual(raw["trigger"], "scheduled")
        self.assertNotIn("message", raw)

    def test_malformed_entries_skipped(self):
        """无法解析的条目被跳过"""
        self.store.put(LOGS_KEY, [{"garbage": True}, {"dbName": "a", "tableName": "b", "status": "error"}])
        entries = self.audit_log.load_all()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].status, SyncStatus.ERROR)

    def test_malformed_document(self):
        """文档不是数组时视为空"""
        self.store.put(LOGS_KEY, {"oops": 1})
        self.assertEqual(self.audit_log.load_all(), [])
        self.audit_log.append(_entry("orders"))
        self.assertEqual(len(self.audit_log.load_all()), 1)

    def test_clear(self):
        """清空日志"""
        self.audit_log.append(_entry("orders"))
        self.audit_log.clear()
        self.assertEqual(self.audit_log.load_all(), [])

    def test_invalid_max_entries(self):
        with self.assertRaises(ValueError):
            AuditLog(self.store, max_entries=0)


class TestFilterStore(unittest.TestCase):
    """过滤条件存储测试"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = JsonFileDocumentStore(self._tmp.name)
        self.filters = FilterStore(self.store)

    def tearDown(self):
        self._tmp.cleanup()

    def test_key_format(self):
        """键为 库名_表名"""
        self.assertEqual(filter_key(" shop ", "orders "), "shop_orders")

    def test_set_and_get(self):
        """保存并读取"""
        predicates = [
            FilterPredicate(column="status", operator="eq", value="paid"),
            FilterPredicate(column="created_at", operator="range", value=["2024-01-01", "2024-01-31"]),
        ]
        saved = self.filters.set_filters("shop", "orders", predicates)

        self.assertEqual(saved, predicates)
        self.assertEqual(self.filters.get_filters("shop", "orders"), predicates)
        self.assertEqual(list(self.store.read(FILTERS_KEY)), ["shop_orders"])
        self.assertEqual(self.filters.get_filters("shop", "customers"), [])

    def test_empty_list_deletes(self):
        """空列表删除该表的条目"""
        self.filters.set_filters("shop", "orders", [FilterPredicate(column="a", operator="gt", value=1)])
        self.filters.set_filters("shop", "orders", [])
        self.assertEqual(self.filters.load_all(), {})

    def test_blank_identifiers_ignored(self):
        """库名与表名都为空时不保存"""
        self.filters.set_filters(" ", "", [FilterPredicate(column="a", operator="gt", value=1)])
        self.assertIsNone(self.store.read(FILTERS_KEY))

    def test_malformed_predicates_skipped(self):
        """无法解析的条件被跳过"""
        self.store.put(FILTERS_KEY, {
            "shop_orders": [{"column": "a", "operator": "like", "value": 1}, {"column": "b", "operator": "eq", "value": 2}],
            "shop_bad": "not a list",
        })
        self.assertEqual(len(self.filters.get_filters("shop", "orders")), 1)
        self.assertEqual(self.filters.get_filters("shop", "bad"), [])


if __name__ == "__main__":
    unittest.main()

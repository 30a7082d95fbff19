"""
测试配置和共享工具 (unittest 兼容)
"""

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

from aiohttp import web
from aiohttp.test_utils import TestServer


# ============================================================================
# 夹具数据工厂函数
# ============================================================================

def get_sample_order_rows(count: int = 12) -> List[Dict[str, Any]]:
    """返回样本订单行：id 从 1 开始，status 交替 paid / pending"""
    return [
        {
            "id": i,
            "status": "paid" if i % 2 else "pending",
            "total": i * 10,
            "created_at": f"2024-01-{i:02d} 10:00:00",
        }
        for i in range(1, count + 1)
    ]


def get_sample_order_columns() -> List[Dict[str, Any]]:
    """返回样本订单表的列元数据"""
    return [
        {"name": "id", "data_type": "int", "nullable": False, "is_identity": True},
        {"name": "status", "data_type": "nvarchar", "max_length": 20},
        {"name": "total", "data_type": "decimal", "precision": 10, "scale": 2},
        {"name": "created_at", "data_type": "datetime2"},
    ]


def create_fixture_dict(row_count: int = 12) -> Dict[str, Any]:
    """返回夹具文件内容：shop 库含 orders / customers 两张表，archive 库为空"""
    return {
        "databases": {
            "shop": {
                "tables": {
                    "orders": {
                        "columns": get_sample_order_columns(),
                        "primary_keys": ["id"],
                        "rows": get_sample_order_rows(row_count),
                    },
                    "customers": {
                        "columns": [
                            {"name": "code", "data_type": "varchar", "max_length": 10},
                            {"name": "name", "data_type": "nvarchar", "max_length": 100},
                        ],
                        "primary_keys": [],
                        "rows": [
                            {"code": "C1", "name": "张三"},
                            {"code": "C2", "name": "李四"},
                        ],
                    },
                },
            },
            "archive": {"tables": {}},
        }
    }


def write_fixture_file(directory: Path, row_count: int = 12) -> Path:
    """把夹具写入 directory/fixture.json 并返回路径"""
    path = Path(directory) / "fixture.json"
    path.write_text(json.dumps(create_fixture_dict(row_count), ensure_ascii=False), encoding="utf-8")
    return path


# ============================================================================
# SQLite 数据库工具
# ============================================================================

def create_sqlite_database(data_dir: Path, db_name: str = "shop") -> Path:
    """在 data_dir 下创建 <db_name>.db，含 orders 表与样本数据"""
    path = Path(data_dir) / f"{db_name}.db"
    conn = sqlite3.connect(str(path))
    try:
        conn.execute("""
            CREATE TABLE orders (
                id INTEGER PRIMARY KEY,
                status VARCHAR(20) NOT NULL,
                total DECIMAL(10,2),
                created_at DATETIME,
                note TEXT
            )
        """)
        conn.executemany(
            "INSERT INTO orders (id, status, total, created_at, note) VALUES (?, ?, ?, ?, ?)",
            [
                (1, "paid", 10, "2024-01-01 10:00:00", "first"),
                (2, "pending", 25.5, "2024-01-02 09:30:00", None),
                (3, "paid", 7, "2024-01-03 18:45:00", "third"),
                (4, "refunded", 100, "2024-02-01 08:00:00", "fourth"),
                (5, "paid", 3, "2023-12-31 23:59:59", "fifth"),
                (6, "pending", "n/a", "not a date", "sixth"),
            ]
        )
        conn.execute("""
            CREATE TABLE order_items (
                order_id INTEGER NOT NULL,
                line_no INTEGER NOT NULL,
                sku NVARCHAR(40),
                PRIMARY KEY (order_id, line_no)
            )
        """)
        conn.commit()
    finally:
        conn.close()
    return path


# ============================================================================
# 接入端点模拟
# ============================================================================

class FakeIngestionEndpoint:
    """
    进程内 aiohttp.web 模拟接入端点

    记录每次收到的请求体；fail_on_batch 指定的批次（从 1 开始）返回 500，
    delay_seconds 让每个请求先等待一段时间再响应。
    """

    def __init__(
        self,
        sync_path: str = "/gofrugal-synker/sync",
        fail_on_batch: Optional[int] = None,
        fail_status: int = 500,
        fail_body: Optional[Dict[str, Any]] = None,
        delay_seconds: float = 0.0,
    ):
        self.sync_path = sync_path
        self.delay_seconds = delay_seconds
        self.fail_on_batch = fail_on_batch
        self.fail_status = fail_status
        self.fail_body = fail_body or {"code": fail_status, "msg": "目标库写入失败"}
        self.payloads: List[Dict[str, Any]] = []
        self.server: Optional[TestServer] = None

        self.app = web.Application()
        self.app.router.add_post(sync_path, self._handle)

    async def _handle(self, request: web.Request) -> web.Response:
        payload = await request.json()
        self.payloads.append(payload)
        batch_no = len(self.payloads)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_on_batch is not None and batch_no == self.fail_on_batch:
            return web.json_response(self.fail_body, status=self.fail_status)
        return web.json_response({
            "code": 200,
            "msg": "ok",
            "table": payload.get("table_name"),
            "rows": len(payload.get("table_items") or []),
        })

    async def start(self) -> str:
        """启动服务并返回 base_url"""
        self.server = TestServer(self.app)
        await self.server.start_server()
        return str(self.server.make_url("")).rstrip("/")

    async def close(self) -> None:
        if self.server is not None:
            await self.server.close()

    @property
    def batch_sizes(self) -> List[int]:
        return [len(p.get("table_items") or []) for p in self.payloads]


# ============================================================================
# 配置工厂函数
# ============================================================================

def create_test_config_dict(
    fixture_path: Path,
    base_url: str = "http://localhost:9000",
    storage_path: Optional[Path] = None,
    batch_size: int = 5,
) -> Dict[str, Any]:
    """返回测试配置字典（夹具数据源 + JSON 存储）"""
    return {
        "source": {"type": "fixture", "path": str(fixture_path)},
        "ingestion": {"base_url": base_url, "timeout_seconds": 5},
        "storage": {
            "backend": "json",
            "path": str(storage_path or Path(fixture_path).parent / "state"),
        },
        "batch_size": batch_size,
        "log_level": "DEBUG",
    }


def create_test_config_yaml(fixture_path: Path) -> str:
    """返回测试配置 YAML 字符串"""
    return f"""
source:
  type: "fixture"
  path: "{fixture_path}"

ingestion:
  base_url: "http://localhost:9000/"
  timeout_seconds: 30

storage:
  backend: "sqlite"
  path: "{Path(fixture_path).parent / 'synker.db'}"

batch_size: 100
max_log_entries: 50
log_level: "DEBUG"
"""


# ============================================================================
# Mock 工厂函数
# ============================================================================

def create_mock_replicator(results: Optional[Dict[str, Any]] = None) -> MagicMock:
    """
    创建 Mock TableReplicator

    results 按表名给出 replicate 的返回值；值为异常实例时抛出该异常。
    未列出的表返回成功结果。
    """
    from db_synker.models.sync_log import SyncResult

    results = results or {}

    async def replicate(db_name: str, table_name: str, filters: Any = None) -> SyncResult:
        outcome = results.get(table_name)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is not None:
            return outcome
        return SyncResult(success=True, synced_count=1, batches=1, message=f'表 "{table_name}" 已同步 1 行')

    replicator = MagicMock()
    replicator.replicate = AsyncMock(side_effect=replicate)
    return replicator


def setup_logging() -> None:
    """设置测试日志级别"""
    from db_synker.utils.logging import configure_logging
    configure_logging(log_level="DEBUG", json_format=False)

"""
SQLite 数据源 - 数据目录下每个 <库名>.db 文件对应一个数据库
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite

from db_synker.core.filter_evaluator import SQLITE, build_where_clause, sqlite_regexp, unknown_columns
from db_synker.models.filters import FilterPredicate
from db_synker.models.table import SourceColumn, SourceTableSchema
from db_synker.sources.base import BaseSourceProvider
from db_synker.utils.logging import get_logger
from db_synker.utils.values import normalize_row

logger = get_logger(__name__)

# 解析 VARCHAR(100) / DECIMAL(10,2) 这类声明类型
_DECLARED_TYPE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z ]*?)\s*(?:\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\))?\s*$")

_CHAR_TYPES = {"char", "varchar", "nchar", "nvarchar", "character", "character varying", "varying character"}


def parse_declared_type(declared: str) -> Tuple[str, Optional[int], Optional[int], Optional[int]]:
    """
    解析 SQLite 声明类型

    返回:
        (类型名小写, 字符长度, 精度, 小数位)

    示例:
        >>> parse_declared_type("VARCHAR(100)")
        ('varchar', 100, None, None)
        >>> parse_declared_type("DECIMAL(10,2)")
        ('decimal', None, 10, 2)
    """
    match = _DECLARED_TYPE_RE.match(declared or "")
    if not match:
        return (declared or "").strip().lower(), None, None, None

    type_name = match.group(1).strip().lower()
    first = int(match.group(2)) if match.group(2) else None
    second = int(match.group(3)) if match.group(3) else None

    if type_name in _CHAR_TYPES:
        return type_name, first, None, None
    return type_name, None, first, second


class SQLiteSource(BaseSourceProvider):
    """
    SQLite 数据源

    使用 aiosqlite 以只读方式打开数据库文件，每个实例同一时刻只保持一个连接，
    切换数据库时关闭旧连接；并发的同步各自通过 session() 取得独立实例。过滤条件在 SQL 中完成，连接上注册了
    REGEXP 函数以支持与内存求值一致的取值解析。
    """

    name = "sqlite"

    def __init__(self, data_dir: str | Path):
        """
        参数:
            data_dir: 数据目录
        """
        self.data_dir = Path(data_dir)
        self._conn: Optional[aiosqlite.Connection] = None
        self._conn_db: Optional[str] = None

    def _db_path(self, db_name: str) -> Optional[Path]:
        if not db_name or "/" in db_name or "\\" in db_name or db_name.startswith("."):
            return None
        return self.data_dir / f"{db_name}.db"

    async def _get_connection(self, db_name: str) -> aiosqlite.Connection:
        """获取指定数据库的连接，必要时切换"""
        if self._conn is not None and self._conn_db == db_name:
            return self._conn
        await self.close()

        path = self._db_path(db_name)
        if path is None:
            raise ValueError(f"非法的数据库名: {db_name}")

        conn = await aiosqlite.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
        await conn.create_function("REGEXP", 2, sqlite_regexp, deterministic=True)
        self._conn, self._conn_db = conn, db_name
        logger.debug("sqlite_connected", db=db_name, path=str(path))
        return conn

    async def _fetch_all(
        self,
        db_name: str,
        sql: str,
        params: Sequence[Any] = ()
    ) -> List[Dict[str, Any]]:
        conn = await self._get_connection(db_name)
        async with conn.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
            if not rows:
                return []
            columns = [description[0] for description in cursor.description]
            return [dict(zip(columns, row)) for row in rows]

    async def list_databases(self) -> List[str]:
        if not self.data_dir.is_dir():
            return []
        return sorted(p.stem for p in self.data_dir.glob("*.db") if p.is_file())

    async def list_tables(self, db_name: str) -> List[str]:
        if not await self.database_exists(db_name):
            return []
        rows = await self._fetch_all(
            db_name,
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [r["name"] for r in rows]

    async def database_exists(self, db_name: str) -> bool:
        path = self._db_path(db_name)
        return path is not None and path.is_file()

    async def table_exists(self, db_name: str, table_name: str) -> bool:
        rows = await self._fetch_all(
            db_name,
            "SELECT 1 AS ok FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table_name,)
        )
        return len(rows) > 0

    async def get_table_schema(self, db_name: str, table_name: str) -> SourceTableSchema:
        # row: (cid, name, type, notnull, dflt_value, pk)
        info = await self._fetch_all(
            db_name, f"PRAGMA table_info({SQLITE.quote(table_name)})"
        )

        pk_rows = sorted((r for r in info if r["pk"]), key=lambda r: r["pk"])
        primary_keys = [r["name"] for r in pk_rows]

        columns: List[SourceColumn] = []
        for row in info:
            type_name, length, precision, scale = parse_declared_type(row["type"])
            # INTEGER PRIMARY KEY 是 rowid 别名，插入时自动生成
            is_identity = type_name == "integer" and primary_keys == [row["name"]]
            columns.append(SourceColumn(
                name=row["name"],
                data_type=type_name,
                max_length=length,
                precision=precision,
                scale=scale,
                nullable=not row["notnull"] and not row["pk"],
                is_identity=is_identity,
            ))

        return SourceTableSchema(columns=columns, primary_keys=primary_keys)

    async def get_table_data(
        self,
        db_name: str,
        table_name: str,
        filters: Optional[Sequence[FilterPredicate]] = None
    ) -> List[Dict[str, Any]]:
        sql = f"SELECT * FROM {SQLITE.quote(table_name)}"
        where, params = build_where_clause(filters, SQLITE)
        if where:
            info = await self._fetch_all(
                db_name, f"PRAGMA table_info({SQLITE.quote(table_name)})"
            )
            missing = unknown_columns(filters, [r["name"] for r in info])
            if missing:
                logger.warning("filter_unknown_columns", db=db_name, table=table_name, columns=missing)
                return []
            sql = f"{sql} WHERE {where}"
        rows = await self._fetch_all(db_name, sql, params)
        return [normalize_row(r) for r in rows]

    async def get_table_preview(
        self,
        db_name: str,
        table_name: str,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        rows = await self._fetch_all(
            db_name,
            f"SELECT * FROM {SQLITE.quote(table_name)} LIMIT ?",
            (limit,)
        )
        return [normalize_row(r) for r in rows]

    def session(self) -> "SQLiteSource":
        return SQLiteSource(self.data_dir)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            logger.debug("sqlite_closed", db=self._conn_db)
        self._conn, self._conn_db = None, None

"""
MySQL 数据源实现
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import aiomysql

from db_synker.core.filter_evaluator import MYSQL, build_where_clause, unknown_columns
from db_synker.models.filters import FilterPredicate
from db_synker.models.sync_config import MySQLSourceConfig
from db_synker.models.table import SourceColumn, SourceTableSchema
from db_synker.sources.base import BaseSourceProvider
from db_synker.utils.logging import get_logger
from db_synker.utils.values import normalize_row

logger = get_logger(__name__)


class MySQLSource(BaseSourceProvider):
    """
    MySQL 数据源

    使用 aiomysql 连接池，表结构取自 information_schema。
    连接池在首次查询时创建，close() 后下次查询会重新创建。
    过滤条件通过 build_where_clause 下推到 SQL。

    session() 返回共享同一连接池的会话，每次查询各自从池中取连接，
    关闭会话不会关闭连接池。
    """

    name = "mysql"

    def __init__(self, config: MySQLSourceConfig, pool_owner: Optional["MySQLSource"] = None):
        """
        参数:
            config: MySQL 数据源配置
            pool_owner: 连接池所属的数据源（会话使用）
        """
        self.config = config
        self._pool: Optional[aiomysql.Pool] = None
        self._pool_owner = pool_owner
        self._pool_lock = asyncio.Lock()

    def session(self) -> "MySQLSource":
        return MySQLSource(self.config, pool_owner=self._pool_owner or self)

    async def _get_pool(self) -> aiomysql.Pool:
        """获取连接池（延迟创建）"""
        if self._pool_owner is not None:
            return await self._pool_owner._get_pool()
        async with self._pool_lock:
            if self._pool is not None:
                return self._pool
            try:
                self._pool = await aiomysql.create_pool(
                    host=self.config.host,
                    port=self.config.port,
                    user=self.config.username,
                    password=self.config.password,
                    charset=self.config.charset,
                    minsize=1,
                    maxsize=self.config.pool_size,
                    autocommit=True,
                )
                logger.info("mysql_connected", host=self.config.host, port=self.config.port)
            except Exception as e:
                logger.error("mysql_connect_failed", host=self.config.host, error=str(e))
                raise
            return self._pool

    async def _fetch_all(
        self,
        sql: str,
        params: Sequence[Any] = ()
    ) -> List[Dict[str, Any]]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(sql, tuple(params) or None)
                rows = await cursor.fetchall()
                return [dict(r) for r in rows]

    def _qualified(self, db_name: str, table_name: str) -> str:
        return f"{MYSQL.quote(db_name)}.{MYSQL.quote(table_name)}"

    async def list_databases(self) -> List[str]:
        rows = await self._fetch_all(
            "SELECT SCHEMA_NAME AS name FROM information_schema.SCHEMATA ORDER BY SCHEMA_NAME"
        )
        excluded = {d.lower() for d in self.config.system_databases}
        return [r["name"] for r in rows if r["name"].lower() not in excluded]

    async def list_tables(self, db_name: str) -> List[str]:
        rows = await self._fetch_all(
            """
            SELECT TABLE_NAME AS name
            FROM information_schema.TABLES
            WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'
            ORDER BY TABLE_NAME
            """,
            (db_name,)
        )
        return [r["name"] for r in rows]

    async def database_exists(self, db_name: str) -> bool:
        rows = await self._fetch_all(
            "SELECT 1 AS ok FROM information_schema.SCHEMATA WHERE SCHEMA_NAME = %s",
            (db_name,)
        )
        return len(rows) > 0

    async def table_exists(self, db_name: str, table_name: str) -> bool:
        rows = await self._fetch_all(
            """
            SELECT 1 AS ok
            FROM information_schema.TABLES
            WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND TABLE_TYPE = 'BASE TABLE'
            """,
            (db_name, table_name)
        )
        return len(rows) > 0

    async def get_table_schema(self, db_name: str, table_name: str) -> SourceTableSchema:
        column_rows = await self._fetch_all(
            """
            SELECT
                COLUMN_NAME,
                DATA_TYPE,
                CHARACTER_MAXIMUM_LENGTH,
                NUMERIC_PRECISION,
                NUMERIC_SCALE,
                IS_NULLABLE,
                EXTRA
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
            ORDER BY ORDINAL_POSITION
            """,
            (db_name, table_name)
        )
        key_rows = await self._fetch_all(
            """
            SELECT COLUMN_NAME
            FROM information_schema.KEY_COLUMN_USAGE
            WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND CONSTRAINT_NAME = 'PRIMARY'
            ORDER BY ORDINAL_POSITION
            """,
            (db_name, table_name)
        )

        columns = [
            SourceColumn(
                name=row["COLUMN_NAME"],
                data_type=row["DATA_TYPE"] or "",
                max_length=_to_int(row["CHARACTER_MAXIMUM_LENGTH"]),
                precision=_to_int(row["NUMERIC_PRECISION"]),
                scale=_to_int(row["NUMERIC_SCALE"]),
                nullable=row["IS_NULLABLE"] == "YES",
                is_identity="auto_increment" in (row["EXTRA"] or "").lower(),
            )
            for row in column_rows
        ]
        return SourceTableSchema(
            columns=columns,
            primary_keys=[r["COLUMN_NAME"] for r in key_rows]
        )

    async def get_table_data(
        self,
        db_name: str,
        table_name: str,
        filters: Optional[Sequence[FilterPredicate]] = None
    ) -> List[Dict[str, Any]]:
        sql = f"SELECT * FROM {self._qualified(db_name, table_name)}"
        where, params = build_where_clause(filters, MYSQL)
        if where:
            column_rows = await self._fetch_all(
                """
                SELECT COLUMN_NAME
                FROM information_schema.COLUMNS
                WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
                """,
                (db_name, table_name)
            )
            missing = unknown_columns(filters, [r["COLUMN_NAME"] for r in column_rows])
            if missing:
                logger.warning("filter_unknown_columns", db=db_name, table=table_name, columns=missing)
                return []
            sql = f"{sql} WHERE {where}"
        rows = await self._fetch_all(sql, params)
        return [normalize_row(r) for r in rows]

    async def get_table_preview(
        self,
        db_name: str,
        table_name: str,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        rows = await self._fetch_all(
            f"SELECT * FROM {self._qualified(db_name, table_name)} LIMIT %s",
            (int(limit),)
        )
        return [normalize_row(r) for r in rows]

    async def close(self) -> None:
        """关闭连接池；会话上调用时什么也不做"""
        if self._pool_owner is not None:
            return
        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None
            logger.info("mysql_disconnected", host=self.config.host)


def _to_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None
